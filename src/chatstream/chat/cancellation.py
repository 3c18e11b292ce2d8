"""Cancellation token passed alongside a streaming call."""

from __future__ import annotations

import asyncio


class CancellationToken:
    """A one-shot cancellation signal for a single stream.

    The owner of a stream calls ``cancel()``; the producer and consumer check
    ``cancelled`` between chunks. A token is never reset;
    every new stream gets a new token.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    def __repr__(self) -> str:
        state = f"cancelled ({self.reason})" if self.cancelled else "active"
        return f"<CancellationToken {state}>"
