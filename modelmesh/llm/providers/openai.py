"""
OpenAI (GPT) provider.

Uses the Chat Completions streaming API. System entries are collapsed
into one leading system message; the remaining turns keep their order.
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

DEFAULT_OPENAI_MODEL = "gpt-4o"

OPENAI_MODELS: tuple[PricedModelInfo, ...] = (
    PricedModelInfo(
        id="gpt-4o",
        name="GPT-4o",
        max_tokens=4096,
        context_window=128000,
        input_cost_per_1k=0.005,
        output_cost_per_1k=0.015,
    ),
    PricedModelInfo(
        id="gpt-4o-mini",
        name="GPT-4o mini",
        max_tokens=4096,
        context_window=128000,
        input_cost_per_1k=0.00015,
        output_cost_per_1k=0.0006,
    ),
)


class OpenAIProvider(PricedProvider):
    """GPT models via openai.AsyncOpenAI."""

    name = "openai"
    DEFAULT_MODELS = OPENAI_MODELS

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
            from openai import AsyncOpenAI

            kwargs: dict[str, Any] = {"api_key": self._api_key}
            if self._base_url:
                kwargs["base_url"] = self._base_url
            self._client = AsyncOpenAI(**kwargs)
        return self._client

    def _build_params(
        self, messages: list[LLMMessage], options: LLMOptions
    ) -> dict[str, Any]:
        system_prompt, turns = split_system_messages(messages)
        wire_messages: list[dict[str, str]] = []
        if system_prompt:
            wire_messages.append({"role": "system", "content": system_prompt})
        wire_messages.extend(
            {"role": m.role.value, "content": m.content} for m in turns
        )

        params: dict[str, Any] = {
            "model": options.model or DEFAULT_OPENAI_MODEL,
            "messages": wire_messages,
            "stream": True,
            "stream_options": {"include_usage": True},
        }
        if options.max_tokens:
            params["max_tokens"] = options.max_tokens
        if options.temperature is not None:
            params["temperature"] = options.temperature
        if options.stop_sequences:
            params["stop"] = list(options.stop_sequences)
        if options.top_p is not None:
            params["top_p"] = options.top_p
        # top_k has no Chat Completions equivalent
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
            response_stream = await client.chat.completions.create(**params)
            output_tokens = None

            async with response_stream:
                async for chunk in response_stream:
                    check_cancelled(cancel_token)
                    if chunk.usage is not None:
                        output_tokens = chunk.usage.completion_tokens

                    if chunk.choices and chunk.choices[0].delta.content:
                        yield StreamChunk(text=chunk.choices[0].delta.content)

            yield StreamChunk(text="", done=True, tokens=output_tokens)

        except (StreamCancelledError, ProviderRuntimeError):
            raise
        except Exception as e:
            raise ProviderRuntimeError(
                f"OpenAI API error: {e}",
                provider=self.name,
                model=params["model"],
            ) from e
