"""
Stream Handler — callback-style consumption of a token stream.

Wraps one named streaming session and turns the async iterator into
callbacks, for UI code that would rather be told about tokens than
iterate them:

    handler = StreamHandler()
    token = CancellationToken()

    state = await handler.start_stream(
        "chat-1",
        manager.stream_completion(messages, cancel_token=token),
        StreamCallbacks(
            on_token=lambda t: print(t, end="", flush=True),
            on_complete=lambda text: print(f"\\n[{len(text)} chars]"),
            on_error=lambda e: print(f"\\n[failed: {e}]"),
        ),
        cancel_token=token,
    )

Lifecycle per session: idle -> streaming -> completed | error. Exactly
one of on_complete / on_error fires, after zero or more on_token and
on_progress calls. Terminal session ids are retired and cannot be
started again.

Accepts streams of StreamChunk (straight from a provider) or of plain
str (from ModelManager.stream_completion). A stream that runs out
without a done chunk is treated as complete.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, AsyncIterator, Callable, Optional, Union

from modelmesh.exceptions import StreamCancelledError
from modelmesh.llm.cancellation import CancellationToken
from modelmesh.llm.types import StreamChunk

logger = logging.getLogger(__name__)


class StreamStatus(str, Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    COMPLETED = "completed"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (StreamStatus.COMPLETED, StreamStatus.ERROR)


@dataclass
class StreamState:
    """Progress of one session."""

    status: StreamStatus = StreamStatus.IDLE
    current_token: int = 0
    total_tokens: int = 0
    accumulated_content: str = ""
    error: Optional[BaseException] = None


@dataclass
class StreamCallbacks:
    """Optional callbacks; each may be a plain function or a coroutine function."""

    on_token: Optional[Callable[[str], Any]] = None
    on_progress: Optional[Callable[[int, int], Any]] = None
    on_complete: Optional[Callable[[str], Any]] = None
    on_error: Optional[Callable[[BaseException], Any]] = None


@dataclass
class _Session:
    stream: AsyncIterator[Any]
    token: CancellationToken
    state: StreamState = field(default_factory=StreamState)


StreamSource = AsyncIterator[Union[StreamChunk, str]]


async def _invoke(callback: Optional[Callable[..., Any]], *args: Any) -> None:
    if callback is None:
        return
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


def _as_chunk(item: Union[StreamChunk, str]) -> StreamChunk:
    if isinstance(item, StreamChunk):
        return item
    return StreamChunk(text=str(item))


async def _close(stream: AsyncIterator[Any]) -> None:
    aclose = getattr(stream, "aclose", None)
    if aclose is not None:
        await aclose()


class StreamHandler:
    """
    Tracks streaming sessions by id and delivers their callbacks.

    Not thread-safe; sessions are driven from one event loop.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, _Session] = {}
        self._retired: set[str] = set()
        self._active_stream_id: Optional[str] = None

    async def start_stream(
        self,
        stream_id: str,
        stream: StreamSource,
        callbacks: Optional[StreamCallbacks] = None,
        *,
        cancel_token: Optional[CancellationToken] = None,
    ) -> StreamState:
        """
        Consume `stream` to its end, delivering callbacks along the way.

        Returns the final StreamState. Failures are reported through
        on_error and the returned state; they are not raised. Cancelling
        the task that awaits this still retires the session and fires
        on_error before the CancelledError propagates.

        Raises:
            ValueError: stream_id is already running or was retired.
            asyncio.CancelledError: the awaiting task was cancelled.
        """
        if stream_id in self._sessions or stream_id in self._retired:
            raise ValueError(f"Stream id already used: {stream_id}")

        callbacks = callbacks or StreamCallbacks()
        session = _Session(stream=stream, token=cancel_token or CancellationToken())
        state = session.state
        state.status = StreamStatus.STREAMING

        self._sessions[stream_id] = session
        self._active_stream_id = stream_id

        failure: Optional[BaseException] = None
        try:
            async for item in stream:
                session.token.raise_if_cancelled()
                chunk = _as_chunk(item)

                state.accumulated_content += chunk.text
                state.current_token += 1
                state.total_tokens = chunk.tokens or state.total_tokens

                await _invoke(callbacks.on_token, chunk.text)
                await _invoke(callbacks.on_progress, state.current_token, state.total_tokens)

                if chunk.done:
                    break
            session.token.raise_if_cancelled()

        except asyncio.CancelledError as e:
            # The consuming task itself was cancelled; report, then let it unwind
            failure = e
            raise
        except Exception as e:
            failure = e
        finally:
            self._end_stream(stream_id)
            await _close(stream)
            if failure is not None:
                state.status = StreamStatus.ERROR
                state.error = failure
                logger.warning(
                    "stream_failed",
                    extra={
                        "stream_id": stream_id,
                        "tokens": state.current_token,
                        "error": str(failure)[:200],
                        "cancelled": isinstance(
                            failure, (StreamCancelledError, asyncio.CancelledError)
                        ),
                    },
                )
                await _invoke(callbacks.on_error, failure)

        if failure is not None:
            return replace(state)

        state.status = StreamStatus.COMPLETED
        logger.debug(
            "stream_handler_completed",
            extra={"stream_id": stream_id, "tokens": state.current_token},
        )
        await _invoke(callbacks.on_complete, state.accumulated_content)
        return replace(state)

    def pause_stream(self, stream_id: str) -> None:
        """Unsupported: an async iterator can't be suspended from outside."""
        if stream_id in self._sessions:
            logger.warning(f"Stream {stream_id} cannot be paused")

    def resume_stream(self, stream_id: str) -> None:
        """Unsupported counterpart of pause_stream()."""
        if stream_id in self._sessions:
            logger.warning(f"Stream {stream_id} cannot be resumed")

    def cancel_stream(self, stream_id: str, reason: Optional[str] = None) -> bool:
        """
        Cancel a running session.

        Triggers the session's cancellation token and drops its
        bookkeeping. The consuming loop stops at the next chunk and
        reports StreamCancelledError through on_error; producers that
        share the token stop even earlier. Returns False for unknown ids.
        """
        session = self._sessions.get(stream_id)
        if session is None:
            return False
        session.token.cancel(reason)
        self._end_stream(stream_id)
        return True

    def _end_stream(self, stream_id: str) -> None:
        self._sessions.pop(stream_id, None)
        self._retired.add(stream_id)
        if self._active_stream_id == stream_id:
            self._active_stream_id = None

    def get_stream_state(self, stream_id: str) -> Optional[StreamState]:
        """Snapshot of a running session, or None once it has ended."""
        session = self._sessions.get(stream_id)
        if session is None:
            return None
        return replace(session.state)

    def get_active_stream_id(self) -> Optional[str]:
        return self._active_stream_id

    def get_all_stream_ids(self) -> list[str]:
        return list(self._sessions.keys())

    def cleanup(self) -> None:
        """Cancel every running session."""
        for stream_id in list(self._sessions.keys()):
            self.cancel_stream(stream_id, reason="cleanup")


async def collect_stream(stream: StreamSource) -> str:
    """
    Consume a full stream and return its text.

        text = await collect_stream(manager.stream_completion(messages))
    """
    collected: list[str] = []
    async for item in stream:
        chunk = _as_chunk(item)
        if chunk.text:
            collected.append(chunk.text)
        if chunk.done:
            break
    return "".join(collected)
