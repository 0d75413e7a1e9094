"""Cooperative cancellation tokens.

A CancellationToken is handed to every long-running operation when it is
issued. Cancelling the token sets a flag and a reason, runs registered
callbacks, and interrupts any coroutine currently awaited through
``token.run()``. Operations surface cancellation as OperationCancelled so
callers can tell it apart from real failures.

Example:
    token = CancellationToken()
    try:
        data = await token.run(fetch_something())
    except OperationCancelled:
        return  # superseded, nothing to report
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, List, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class OperationCancelled(Exception):
    """Raised when an operation's token has been cancelled."""

    def __init__(self, reason: Optional[str] = None):
        self.reason = reason
        super().__init__(reason or "Operation was cancelled")


class CancellationToken:
    """Cancellation flag plus reason, shared between issuer and operation."""

    def __init__(self) -> None:
        self._cancelled = False
        self._reason: Optional[str] = None
        self._callbacks: List[Callable[[Optional[str]], Any]] = []

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def cancel(self, reason: Optional[str] = None) -> None:
        """Cancel the token. Cancelling twice keeps the first reason."""
        if self._cancelled:
            return
        self._cancelled = True
        self._reason = reason
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback(reason)
            except Exception as e:
                logger.warning(f"Cancellation callback failed: {e}")

    def add_callback(self, callback: Callable[[Optional[str]], Any]) -> None:
        """Register a callback run on cancel (immediately if already cancelled)."""
        if self._cancelled:
            callback(self._reason)
            return
        self._callbacks.append(callback)

    def remove_callback(self, callback: Callable[[Optional[str]], Any]) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise OperationCancelled(self._reason)

    async def run(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable``, interrupting it if the token is cancelled.

        Checks the token before starting and after resuming. Cancellation of
        the caller's own task is propagated as asyncio.CancelledError.
        """
        if self._cancelled:
            # Close a never-started coroutine so it does not warn
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise OperationCancelled(self._reason)

        task = asyncio.ensure_future(awaitable)

        def _interrupt(_reason: Optional[str]) -> None:
            task.cancel()

        self.add_callback(_interrupt)
        try:
            result = await task
        except asyncio.CancelledError:
            if self._cancelled:
                raise OperationCancelled(self._reason) from None
            raise
        finally:
            self.remove_callback(_interrupt)

        self.raise_if_cancelled()
        return result

    async def sleep(self, delay: float) -> None:
        """Sleep for ``delay`` seconds unless cancelled first."""
        await self.run(asyncio.sleep(delay))

    def __repr__(self) -> str:
        if self._cancelled:
            return f"CancellationToken(cancelled, reason={self._reason!r})"
        return "CancellationToken(active)"
