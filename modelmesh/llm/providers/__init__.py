"""
Provider implementations.

- base: LLMProvider contract + PricedProvider cost-table helper
- anthropic: Claude via the anthropic SDK
- openai: GPT via the openai SDK
- gemini: Google Gemini over httpx (SSE)
- ollama: local models over httpx
- host: host-bundled models through an injected bridge
- mock: deterministic offline stream
"""

from modelmesh.llm.providers.base import LLMProvider, PricedProvider

__all__ = ["LLMProvider", "PricedProvider"]
