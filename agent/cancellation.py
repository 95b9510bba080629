"""
Cooperative cancellation for a single run.

The token is only a flag; consumers check it at suspension points or race
their awaits against it with `guard`.
"""

import asyncio
from typing import Awaitable, TypeVar

from .errors import RunInterruptedError

T = TypeVar("T")


class CancellationToken:
    def __init__(self):
        self._cancelled = False
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise RunInterruptedError()

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """Await `awaitable`, abandoning it if the token is cancelled first.

        The wrapped task never outlives this call: it is cancelled on
        interruption and when the caller itself is cancelled.
        """
        self.raise_if_cancelled()
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
            if task.done():
                return task.result()
            raise RunInterruptedError()
        finally:
            waiter.cancel()
            if not task.done():
                task.cancel()
