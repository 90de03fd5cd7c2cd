# src/pipeline/cancellation.py — v1
"""Cooperative cancellation token passed through every async stage.

Checkpoints call raise_if_cancelled(). Awaits that can take long (HTTP
calls, conversions) go through guard(), which runs the awaitable as a task
and cancels that task as soon as the token fires, the asyncio counterpart
of aborting an in-flight request.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, TypeVar

T = TypeVar("T")


class GenerationCancelled(Exception):
    """Raised at a checkpoint once the request's token has been cancelled.

    Not an error: callers suppress it from user-visible reporting.
    """


class CancellationToken:
    """One-shot cancellation flag with an awaitable event."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        """Fire the token. Subsequent calls keep the first reason."""
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise GenerationCancelled(self.reason or "cancelled")

    async def wait(self) -> None:
        await self._event.wait()

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """Await awaitable, aborting it if the token fires first.

        Raises:
            GenerationCancelled: If cancelled before or while awaiting.
        """
        if self.cancelled:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            self.raise_if_cancelled()
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()

        if task.done() and not self.cancelled:
            return task.result()

        task.cancel()
        # Late results and the aborted call's own failure are discarded.
        await asyncio.wait({task})
        if not task.cancelled():
            task.exception()
        raise GenerationCancelled(self.reason or "cancelled")
