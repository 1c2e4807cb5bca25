"""
LLM routing layer — providers, selection, fallback streaming.

Provides a unified interface over interchangeable completion backends
(Anthropic, OpenAI, Ollama, host-bundled, mock) with ordered fallback
and cost tracking.

Modules:
- types: messages, options, stream chunks, selection and cost records
- cancellation: CancellationToken threaded through provider streams
- providers: LLMProvider contract and backend implementations
- factory: ProviderFactory — name-keyed provider construction
- model_manager: ModelManager — selection, fallback streaming, costs
- streaming: StreamHandler — callback-style session lifecycle
"""
