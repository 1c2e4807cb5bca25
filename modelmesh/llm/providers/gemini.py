"""
Google Gemini provider.

Streams from the Generative Language REST API over httpx:
models/{id}:streamGenerateContent?alt=sse returns one JSON candidate
per `data:` line. The key travels in the x-goog-api-key header.
"""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator, Optional, Sequence

import httpx

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
    MessageRole,
    StreamChunk,
    split_system_messages,
)

logger = logging.getLogger(__name__)

DEFAULT_GEMINI_URL = "https://generativelanguage.googleapis.com/v1beta"
DEFAULT_GEMINI_MODEL = "gemini-2.0-flash"

# Billed at one flat rate per 1K tokens in either direction
GEMINI_MODELS: tuple[PricedModelInfo, ...] = (
    PricedModelInfo(
        id="gemini-2.5-pro",
        name="Gemini 2.5 Pro",
        max_tokens=8192,
        context_window=1000000,
        input_cost_per_1k=0.0035,
        output_cost_per_1k=0.0035,
    ),
    PricedModelInfo(
        id="gemini-2.0-flash",
        name="Gemini 2.0 Flash",
        max_tokens=8192,
        context_window=1000000,
        input_cost_per_1k=0.000075,
        output_cost_per_1k=0.000075,
    ),
    PricedModelInfo(
        id="gemini-1.5-pro",
        name="Gemini 1.5 Pro",
        max_tokens=8192,
        context_window=2000000,
        input_cost_per_1k=0.0035,
        output_cost_per_1k=0.0035,
    ),
    PricedModelInfo(
        id="gemini-1.5-flash",
        name="Gemini 1.5 Flash",
        max_tokens=8192,
        context_window=1000000,
        input_cost_per_1k=0.000075,
        output_cost_per_1k=0.000075,
    ),
)


def _candidate_text(data: dict[str, Any]) -> str:
    candidates = data.get("candidates") or []
    if not candidates:
        return ""
    parts = (candidates[0].get("content") or {}).get("parts") or []
    return "".join(part.get("text", "") for part in parts)


class GeminiProvider(PricedProvider):
    """Gemini models via the REST streaming endpoint."""

    name = "gemini"
    DEFAULT_MODELS = GEMINI_MODELS

    def __init__(
        self,
        api_key: str,
        *,
        base_url: Optional[str] = None,
        models: Optional[Sequence[ModelInfo]] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 120.0,
    ):
        super().__init__(models)
        self._api_key = api_key
        self._base_url = (base_url or DEFAULT_GEMINI_URL).rstrip("/")
        self._client = client
        self._timeout = timeout

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def is_available(self) -> bool:
        return bool(self._api_key)

    def _build_payload(
        self, messages: list[LLMMessage], options: LLMOptions
    ) -> dict[str, Any]:
        system_prompt, turns = split_system_messages(messages)
        payload: dict[str, Any] = {
            "contents": [
                {
                    "role": "model" if m.role == MessageRole.ASSISTANT else "user",
                    "parts": [{"text": m.content}],
                }
                for m in turns
            ],
        }
        if system_prompt:
            payload["systemInstruction"] = {"parts": [{"text": system_prompt}]}

        generation: dict[str, Any] = {}
        if options.temperature is not None:
            generation["temperature"] = options.temperature
        if options.max_tokens:
            generation["maxOutputTokens"] = options.max_tokens
        if options.top_p is not None:
            generation["topP"] = options.top_p
        if options.top_k is not None:
            generation["topK"] = options.top_k
        if options.stop_sequences:
            generation["stopSequences"] = list(options.stop_sequences)
        if generation:
            payload["generationConfig"] = generation
        return payload

    async def stream_completion(
        self,
        messages: list[LLMMessage],
        options: Optional[LLMOptions] = None,
        *,
        cancel_token: Optional[CancellationToken] = None,
    ) -> AsyncIterator[StreamChunk]:
        options = options or LLMOptions()
        model = options.model or DEFAULT_GEMINI_MODEL
        payload = self._build_payload(messages, options)
        check_cancelled(cancel_token)

        output_tokens: Optional[int] = None
        try:
            client = self._get_client()
            path = f"/models/{model}:streamGenerateContent"
            async with client.stream(
                "POST",
                path,
                params={"alt": "sse"},
                headers={"x-goog-api-key": self._api_key},
                json=payload,
            ) as response:
                response.raise_for_status()

                async for line in response.aiter_lines():
                    check_cancelled(cancel_token)
                    if not line.startswith("data:"):
                        continue
                    data = json.loads(line[len("data:"):].strip())
                    error = data.get("error")
                    if error:
                        message = error.get("message", error) if isinstance(error, dict) else error
                        raise ProviderRuntimeError(
                            f"Gemini error: {message}",
                            provider=self.name,
                            model=model,
                        )

                    usage = data.get("usageMetadata") or {}
                    output_tokens = usage.get("candidatesTokenCount", output_tokens)

                    text = _candidate_text(data)
                    if text:
                        yield StreamChunk(text=text)

            yield StreamChunk(text="", done=True, tokens=output_tokens)

        except (StreamCancelledError, ProviderRuntimeError):
            raise
        except Exception as e:
            raise ProviderRuntimeError(
                f"Gemini API error: {e}",
                provider=self.name,
                model=model,
            ) from e
