"""Cooperative cancellation tokens.

One token is created per top-level call (and per queued job attempt) and
handed down through the dispatcher, the retry policy and the adapters. Every
suspension point goes through :meth:`CancellationToken.sleep` or
:meth:`CancellationToken.run`, so a signaled token is noticed at the next
await rather than after the current HTTP call has finished.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable
from typing import Optional, TypeVar

from insight.errors import AbortedError

T = TypeVar("T")


class CancellationToken:
    """A one-shot cancellation signal."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    def __repr__(self) -> str:
        return f"<CancellationToken cancelled={self.cancelled}>"

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "Aborted") -> None:
        """Signal the token. Idempotent; the first reason wins."""
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise AbortedError(self.reason or "Aborted")

    async def sleep(self, delay: float) -> None:
        """Wait *delay* seconds, raising ``AbortedError`` as soon as cancelled."""
        self.raise_if_cancelled()
        try:
            await asyncio.wait_for(self._event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return
        self.raise_if_cancelled()

    async def run(self, awaitable: Awaitable[T]) -> T:
        """Await *awaitable*, abandoning it if the token fires first."""
        if self._event.is_set():
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            self.raise_if_cancelled()
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait(
                {task, waiter}, return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()

        if task in done:
            return task.result()

        task.cancel()
        # Let the abandoned call unwind; its outcome is discarded.
        await asyncio.gather(task, return_exceptions=True)
        raise AbortedError(self.reason or "Aborted")


def ensure_token(token: Optional[CancellationToken]) -> CancellationToken:
    """Return *token*, or a fresh token nobody will ever cancel."""
    return token if token is not None else CancellationToken()
