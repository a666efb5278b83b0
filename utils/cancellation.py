"""
Cancellation tokens backed by asyncio task cancellation.

A token owns the tasks started through `CancellationToken.run`. Cancelling
the token cancels those tasks, so the in-flight HTTP request is abandoned
rather than merely ignored. The caller awaiting `run` sees
`RequestCancelledError`; a CancelledError aimed at the caller itself is
propagated untouched.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, List, Optional, Set, TypeVar

from utils.errors import RequestCancelledError

logger = logging.getLogger("pokedex.cancellation")

T = TypeVar("T")


class CancellationToken:
    """Cancel a group of in-flight operations together."""

    def __init__(self, name: Optional[str] = None):
        self.name = name or "token"
        self.reason: Optional[str] = None
        self._cancelled = False
        self._tasks: Set[asyncio.Task] = set()
        self._callbacks: List[Callable[[], Any]] = []
        self._timer: Optional[asyncio.TimerHandle] = None

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled

    @classmethod
    def with_timeout(cls, seconds: float, name: Optional[str] = None) -> "CancellationToken":
        """Token that cancels itself after `seconds`. Must be created inside a running loop."""
        token = cls(name)
        loop = asyncio.get_running_loop()
        token._timer = loop.call_later(
            seconds, token.cancel, f"timed out after {seconds:g}s"
        )
        return token

    def linked(self, *others: "CancellationToken") -> "CancellationToken":
        """New token cancelled as soon as this token or any of `others` is."""
        child = CancellationToken(f"{self.name}+linked")
        for parent in (self, *others):
            parent.add_callback(lambda p=parent: child.cancel(p.reason))
        return child

    def add_callback(self, callback: Callable[[], Any]) -> None:
        """Run `callback` on cancellation, immediately if already cancelled."""
        if self._cancelled:
            callback()
        else:
            self._callbacks.append(callback)

    def cancel(self, reason: Optional[str] = None) -> None:
        """Cancel every task started through this token. Idempotent."""
        if self._cancelled:
            return

        self._cancelled = True
        self.reason = reason
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

        logger.debug(
            f"Cancelling token '{self.name}'",
            extra={"reason": reason, "tasks": len(self._tasks)},
        )

        for task in list(self._tasks):
            task.cancel(reason)

        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception as e:
                logger.error(f"Error in cancellation callback: {e}", exc_info=True)

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise RequestCancelledError(self._message())

    async def run(self, awaitable: Awaitable[T]) -> T:
        """
        Await `awaitable` as a task owned by this token.

        Raises:
            RequestCancelledError: If the token is (or becomes) cancelled.
        """
        if self._cancelled:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise RequestCancelledError(self._message())

        task = asyncio.ensure_future(awaitable)
        self._tasks.add(task)
        try:
            return await task
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if self._cancelled and (current is None or not current.cancelling()):
                raise RequestCancelledError(self._message()) from None
            raise
        finally:
            self._tasks.discard(task)

    def _message(self) -> str:
        if self.reason:
            return f"Request was cancelled ({self.reason})."
        return "Request was cancelled."

    def __repr__(self) -> str:
        return f"CancellationToken(name={self.name!r}, cancelled={self._cancelled})"


async def run_with_token(awaitable: Awaitable[T], token: Optional[CancellationToken]) -> T:
    """Await through `token` when one is given, directly otherwise."""
    if token is None:
        return await awaitable
    return await token.run(awaitable)
