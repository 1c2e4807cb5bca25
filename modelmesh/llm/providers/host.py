"""
Host-bundled provider.

Some hosts (an editor extension, a desktop shell) ship their own
language model access and expose it to embedded code as a single
"complete this conversation" call. This provider reaches that call
through an injected HostBridge and is available only when one was
supplied. Usage is covered by the host, so it is always free.

The host returns the whole response at once; it is re-chunked into
fixed-size slices so callers see the same streaming shape as every
other backend.
"""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Optional, Sequence, Union

from modelmesh.config.schema import ModelInfo
from modelmesh.exceptions import (
    ProviderRuntimeError,
    StreamCancelledError,
)
from modelmesh.llm.cancellation import CancellationToken, check_cancelled
from modelmesh.llm.providers.base import LLMProvider
from modelmesh.llm.types import LLMMessage, LLMOptions, StreamChunk

logger = logging.getLogger(__name__)

DEFAULT_HOST_MODEL = "default"
HOST_CHUNK_SIZE = 50

HOST_MODELS: tuple[ModelInfo, ...] = (
    ModelInfo(id="default", name="Host default model"),
    ModelInfo(id="claude-3.5-sonnet", name="Claude 3.5 Sonnet (host)"),
    ModelInfo(id="gpt-4", name="GPT-4 (host)"),
)


@dataclass
class HostRequest:
    """What the provider hands to the host bridge."""

    messages: list[dict[str, str]]
    model: str
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None


@dataclass
class HostResponse:
    """What the host bridge returns."""

    content: str
    model: str = ""
    tokens_used: int = 0


HostBridge = Callable[[HostRequest], Union[Awaitable[Any], Any]]


class HostProvider(LLMProvider):
    """Completions served by the embedding host."""

    name = "host"
    DEFAULT_MODELS = HOST_MODELS

    def __init__(
        self,
        bridge: Optional[HostBridge] = None,
        *,
        models: Optional[Sequence[ModelInfo]] = None,
        chunk_size: int = HOST_CHUNK_SIZE,
    ):
        super().__init__(models)
        self._bridge = bridge
        self._chunk_size = max(1, chunk_size)

    async def is_available(self) -> bool:
        return self._bridge is not None

    def estimate_cost(self, messages: list[LLMMessage], model_id: str) -> float:
        return 0.0

    async def _call_host(self, request: HostRequest) -> HostResponse:
        if self._bridge is None:
            raise ProviderRuntimeError(
                "Host LLM API not available", provider=self.name, model=request.model
            )
        result = self._bridge(request)
        if inspect.isawaitable(result):
            result = await result
        if isinstance(result, HostResponse):
            return result
        if isinstance(result, dict):
            return HostResponse(
                content=str(result.get("content", "")),
                model=str(result.get("model", request.model)),
                tokens_used=int(result.get("tokens_used", 0)),
            )
        return HostResponse(content=str(result), model=request.model)

    async def stream_completion(
        self,
        messages: list[LLMMessage],
        options: Optional[LLMOptions] = None,
        *,
        cancel_token: Optional[CancellationToken] = None,
    ) -> AsyncIterator[StreamChunk]:
        options = options or LLMOptions()
        request = HostRequest(
            messages=[m.to_dict() for m in messages],
            model=options.model or DEFAULT_HOST_MODEL,
            temperature=options.temperature,
            max_tokens=options.max_tokens,
        )
        check_cancelled(cancel_token)

        try:
            response = await self._call_host(request)
            content = response.content
            if not content:
                yield StreamChunk(text="", done=True, tokens=response.tokens_used)
                return

            size = self._chunk_size
            slices = [content[i:i + size] for i in range(0, len(content), size)]
            for index, piece in enumerate(slices):
                check_cancelled(cancel_token)
                yield StreamChunk(
                    text=piece,
                    done=index == len(slices) - 1,
                    tokens=response.tokens_used,
                )

        except (StreamCancelledError, ProviderRuntimeError):
            raise
        except Exception as e:
            raise ProviderRuntimeError(
                f"Host LLM API error: {e}",
                provider=self.name,
                model=request.model,
            ) from e
