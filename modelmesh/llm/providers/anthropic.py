"""
Anthropic (Claude) provider.

Streams through the official SDK's Messages stream helper. The client
is created on first use so constructing the provider never touches the
network.
"""

from __future__ import annotations

import logging
from typing import Any, AsyncIterator, Optional, Sequence

from modelmesh.config.schema import ModelInfo, PricedModelInfo
from modelmesh.exceptions import (
    ProviderRuntimeError,
    StreamCancelledError,
)
from modelmesh.llm.cancellation import CancellationToken, check_cancelled
from modelmesh.llm.providers.base import PricedProvider
from modelmesh.llm.types import (
    LLMMessage,
    LLMOptions,
    StreamChunk,
    split_system_messages,
)

logger = logging.getLogger(__name__)

DEFAULT_ANTHROPIC_MODEL = "claude-3-5-sonnet-20241022"

ANTHROPIC_MODELS: tuple[PricedModelInfo, ...] = (
    PricedModelInfo(
        id="claude-sonnet-4-20250514",
        name="Claude Sonnet 4",
        max_tokens=8192,
        context_window=200000,
        input_cost_per_1k=0.003,
        output_cost_per_1k=0.015,
    ),
    PricedModelInfo(
        id="claude-3-5-sonnet-20241022",
        name="Claude 3.5 Sonnet",
        max_tokens=8192,
        context_window=200000,
        input_cost_per_1k=0.003,
        output_cost_per_1k=0.015,
    ),
    PricedModelInfo(
        id="claude-3-5-haiku-20241022",
        name="Claude 3.5 Haiku",
        max_tokens=4096,
        context_window=200000,
        input_cost_per_1k=0.001,
        output_cost_per_1k=0.005,
    ),
    PricedModelInfo(
        id="claude-3-opus-20240229",
        name="Claude 3 Opus",
        max_tokens=4096,
        context_window=200000,
        input_cost_per_1k=0.015,
        output_cost_per_1k=0.075,
    ),
)


class AnthropicProvider(PricedProvider):
    """Claude models via anthropic.AsyncAnthropic."""

    name = "anthropic"
    DEFAULT_MODELS = ANTHROPIC_MODELS

    def __init__(
        self,
        api_key: str,
        *,
        base_url: Optional[str] = None,
        models: Optional[Sequence[ModelInfo]] = None,
        client: Any = None,
    ):
        super().__init__(models)
        self._api_key = api_key
        self._base_url = base_url
        self._client = client

    async def is_available(self) -> bool:
        return bool(self._api_key)

    def _get_client(self) -> Any:
        if self._client is None:
            from anthropic import AsyncAnthropic

            kwargs: dict[str, Any] = {"api_key": self._api_key}
            if self._base_url:
                kwargs["base_url"] = self._base_url
            self._client = AsyncAnthropic(**kwargs)
        return self._client

    def _build_params(
        self, messages: list[LLMMessage], options: LLMOptions
    ) -> dict[str, Any]:
        system_prompt, turns = split_system_messages(messages)
        pricing = self.get_pricing(options.model or "")
        default_max = pricing.max_tokens if pricing and pricing.max_tokens else 4096

        params: dict[str, Any] = {
            "model": options.model or DEFAULT_ANTHROPIC_MODEL,
            "max_tokens": options.max_tokens or default_max,
            "messages": [
                {"role": m.role.value, "content": m.content} for m in turns
            ],
        }
        if system_prompt:
            params["system"] = system_prompt
        if options.temperature is not None:
            params["temperature"] = options.temperature
        if options.stop_sequences:
            params["stop_sequences"] = list(options.stop_sequences)
        if options.top_p is not None:
            params["top_p"] = options.top_p
        if options.top_k is not None:
            params["top_k"] = options.top_k
        return params

    async def stream_completion(
        self,
        messages: list[LLMMessage],
        options: Optional[LLMOptions] = None,
        *,
        cancel_token: Optional[CancellationToken] = None,
    ) -> AsyncIterator[StreamChunk]:
        options = options or LLMOptions()
        params = self._build_params(messages, options)
        check_cancelled(cancel_token)

        try:
            client = self._get_client()
            async with client.messages.stream(**params) as stream:
                async for text in stream.text_stream:
                    check_cancelled(cancel_token)
                    if text:
                        yield StreamChunk(text=text)

                output_tokens = None
                final_message = await stream.get_final_message()
                usage = getattr(final_message, "usage", None)
                if usage is not None:
                    output_tokens = getattr(usage, "output_tokens", None)

            yield StreamChunk(text="", done=True, tokens=output_tokens)

        except (StreamCancelledError, ProviderRuntimeError):
            raise
        except Exception as e:
            raise ProviderRuntimeError(
                f"Anthropic API error: {e}",
                provider=self.name,
                model=params["model"],
            ) from e
