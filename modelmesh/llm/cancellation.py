"""
Cooperative cancellation for provider streams.

A CancellationToken is created by whoever owns a stream session and
handed to ModelManager.stream_completion(), which threads it into every
provider attempt. Providers check it between chunks and raise
StreamCancelledError, which unwinds their SDK/HTTP context managers and
releases the backend request.

Usage:
    token = CancellationToken()
    task = asyncio.create_task(consume(manager.stream_completion(msgs, cancel_token=token)))
    ...
    token.cancel("user pressed Esc")
"""

from __future__ import annotations

from typing import Optional

from modelmesh.exceptions import StreamCancelledError


class CancellationToken:
    """One-shot cancellation flag shared between a consumer and a producer."""

    def __init__(self) -> None:
        self._cancelled = False
        self._reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def cancel(self, reason: Optional[str] = None) -> None:
        """Trigger cancellation. Later calls keep the first reason."""
        if not self._cancelled:
            self._cancelled = True
            self._reason = reason

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            message = "Stream cancelled"
            if self._reason:
                message = f"Stream cancelled: {self._reason}"
            raise StreamCancelledError(message, reason=self._reason)


def check_cancelled(token: Optional[CancellationToken]) -> None:
    """raise_if_cancelled() that tolerates a missing token."""
    if token is not None:
        token.raise_if_cancelled()
