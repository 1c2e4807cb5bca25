"""
Ollama (local) provider.

Talks to a local Ollama server over httpx: /api/tags for the
availability probe and /api/chat for NDJSON token streaming. Local
models are free, so estimate_cost() is always 0.0.
"""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator, Optional, Sequence

import httpx

from modelmesh.config.schema import ModelInfo
from modelmesh.exceptions import (
    ProviderRuntimeError,
    StreamCancelledError,
)
from modelmesh.llm.cancellation import CancellationToken, check_cancelled
from modelmesh.llm.providers.base import LLMProvider
from modelmesh.llm.types import (
    LLMMessage,
    LLMOptions,
    StreamChunk,
    split_system_messages,
)

logger = logging.getLogger(__name__)

DEFAULT_OLLAMA_URL = "http://localhost:11434"
DEFAULT_OLLAMA_MODEL = "llama3.1:8b"

OLLAMA_MODELS: tuple[ModelInfo, ...] = (
    ModelInfo(id="llama3.1:8b", name="Llama 3.1 8B", max_tokens=4096, context_length=128000),
    ModelInfo(id="qwen2.5-coder:7b", name="Qwen 2.5 Coder 7B", max_tokens=4096, context_length=32768),
)


class OllamaProvider(LLMProvider):
    """Local models served by Ollama."""

    name = "ollama"
    DEFAULT_MODELS = OLLAMA_MODELS

    def __init__(
        self,
        base_url: Optional[str] = None,
        *,
        models: Optional[Sequence[ModelInfo]] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 120.0,
    ):
        super().__init__(models)
        self._base_url = (base_url or DEFAULT_OLLAMA_URL).rstrip("/")
        self._client = client
        self._timeout = timeout

    @property
    def base_url(self) -> str:
        return self._base_url

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url, timeout=self._timeout
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def is_available(self) -> bool:
        try:
            resp = await self._get_client().get("/api/tags", timeout=5.0)
        except httpx.HTTPError as e:
            logger.debug(
                "ollama_unreachable",
                extra={"base_url": self._base_url, "error": str(e)[:200]},
            )
            return False
        return resp.status_code == 200

    def estimate_cost(self, messages: list[LLMMessage], model_id: str) -> float:
        return 0.0

    def _build_payload(
        self, messages: list[LLMMessage], options: LLMOptions
    ) -> dict[str, Any]:
        system_prompt, turns = split_system_messages(messages)
        wire_messages: list[dict[str, str]] = []
        if system_prompt:
            wire_messages.append({"role": "system", "content": system_prompt})
        wire_messages.extend(
            {"role": m.role.value, "content": m.content} for m in turns
        )

        model_options: dict[str, Any] = {}
        if options.temperature is not None:
            model_options["temperature"] = options.temperature
        if options.max_tokens:
            model_options["num_predict"] = options.max_tokens
        if options.stop_sequences:
            model_options["stop"] = list(options.stop_sequences)
        if options.top_p is not None:
            model_options["top_p"] = options.top_p
        if options.top_k is not None:
            model_options["top_k"] = options.top_k

        payload: dict[str, Any] = {
            "model": options.model or DEFAULT_OLLAMA_MODEL,
            "messages": wire_messages,
            "stream": True,
        }
        if model_options:
            payload["options"] = model_options
        return payload

    async def stream_completion(
        self,
        messages: list[LLMMessage],
        options: Optional[LLMOptions] = None,
        *,
        cancel_token: Optional[CancellationToken] = None,
    ) -> AsyncIterator[StreamChunk]:
        options = options or LLMOptions()
        payload = self._build_payload(messages, options)
        check_cancelled(cancel_token)

        try:
            client = self._get_client()
            async with client.stream("POST", "/api/chat", json=payload) as response:
                response.raise_for_status()

                async for line in response.aiter_lines():
                    check_cancelled(cancel_token)
                    if not line.strip():
                        continue
                    data = json.loads(line)
                    if data.get("error"):
                        raise ProviderRuntimeError(
                            f"Ollama error: {data['error']}",
                            provider=self.name,
                            model=payload["model"],
                        )

                    text = data.get("message", {}).get("content", "")
                    if data.get("done", False):
                        yield StreamChunk(
                            text=text, done=True, tokens=data.get("eval_count")
                        )
                        return
                    if text:
                        yield StreamChunk(text=text)

        except (StreamCancelledError, ProviderRuntimeError):
            raise
        except Exception as e:
            raise ProviderRuntimeError(
                f"Ollama API error: {e}",
                provider=self.name,
                model=payload["model"],
            ) from e
