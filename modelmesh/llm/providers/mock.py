"""
Mock provider — deterministic, offline, free.

Streams a fixed token sequence (or an echo of the last user message)
without any network I/O. Used for smoke runs of the CLI and as a
predictable fallback target in tests.
"""

from __future__ import annotations

import asyncio
from typing import AsyncIterator, Optional, Sequence

from modelmesh.config.schema import ModelInfo
from modelmesh.llm.cancellation import CancellationToken, check_cancelled
from modelmesh.llm.providers.base import LLMProvider
from modelmesh.llm.types import LLMMessage, LLMOptions, MessageRole, StreamChunk

MOCK_MODELS: tuple[ModelInfo, ...] = (
    ModelInfo(id="mock-stream", name="Mock Stream", max_tokens=4096),
    ModelInfo(id="mock-echo", name="Mock Echo", max_tokens=4096),
)

MOCK_TOKENS: tuple[str, ...] = (
    "Hello", ", ", "world", "!\n", "This ", "is ", "a ", "mock ", "stream.\n",
)


class MockProvider(LLMProvider):
    """Always-available provider with a predictable stream."""

    name = "mock"
    DEFAULT_MODELS = MOCK_MODELS

    def __init__(
        self,
        *,
        models: Optional[Sequence[ModelInfo]] = None,
        delay_seconds: float = 0.0,
    ):
        super().__init__(models)
        self._delay = delay_seconds

    async def is_available(self) -> bool:
        return True

    def estimate_cost(self, messages: list[LLMMessage], model_id: str) -> float:
        return 0.0

    def _tokens_for(self, messages: list[LLMMessage], model: str) -> list[str]:
        if model == "mock-echo":
            last_user = next(
                (m.content for m in reversed(messages) if m.role == MessageRole.USER),
                "",
            )
            return [f"mock: {word} " for word in last_user.split()] or ["mock:"]
        return list(MOCK_TOKENS)

    async def stream_completion(
        self,
        messages: list[LLMMessage],
        options: Optional[LLMOptions] = None,
        *,
        cancel_token: Optional[CancellationToken] = None,
    ) -> AsyncIterator[StreamChunk]:
        options = options or LLMOptions()
        tokens = self._tokens_for(messages, options.model or "mock-stream")

        emitted = 0
        for token in tokens:
            check_cancelled(cancel_token)
            if self._delay:
                await asyncio.sleep(self._delay)
            emitted += 1
            yield StreamChunk(text=token, tokens=emitted)

        yield StreamChunk(text="", done=True, tokens=emitted)
