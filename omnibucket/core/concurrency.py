"""
Bounded concurrency for async work.

ConcurrencyLimiter keeps at most ``limit`` thunks running at once. Waiters
queue FIFO; a released slot is handed straight to the oldest waiter, so a
queued thunk starts as soon as any slot frees.
"""

import asyncio
from collections import deque
from collections.abc import Awaitable, Callable, Iterable
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Deque, List, TypeVar

import structlog

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class ConcurrencyLimiter:
    """Counting limiter with a FIFO wait queue."""

    def __init__(self, limit: int):
        if limit < 1:
            raise ValueError("Concurrency limit must be at least 1")
        self.limit = limit
        self.running = 0
        self._waiters: Deque[asyncio.Future] = deque()

    @property
    def waiting(self) -> int:
        return len(self._waiters)

    async def acquire(self) -> None:
        if self.running < self.limit and not self._waiters:
            self.running += 1
            return

        future = asyncio.get_running_loop().create_future()
        self._waiters.append(future)
        try:
            # release() transfers its slot by resolving the future
            await future
        except asyncio.CancelledError:
            if future.done() and not future.cancelled():
                self.release()
            elif future in self._waiters:
                self._waiters.remove(future)
            raise

    def release(self) -> None:
        while self._waiters:
            future = self._waiters.popleft()
            if not future.done():
                future.set_result(None)
                return
        self.running -= 1

    @asynccontextmanager
    async def slot(self) -> AsyncIterator[None]:
        """Hold one slot for the duration of the block, released on any exit."""
        await self.acquire()
        try:
            yield
        finally:
            self.release()

    async def run(self, thunk: Callable[[], Awaitable[T]]) -> T:
        async with self.slot():
            return await thunk()

    async def run_all(self, thunks: Iterable[Callable[[], Awaitable[Any]]]) -> List[Any]:
        """
        Run every thunk under the limit and wait for all of them to settle.

        Returns:
            One entry per thunk in submission order: its result, or the
            exception it raised. One failure never cancels the others.
        """
        thunk_list = list(thunks)
        logger.debug("Running thunks under limit", count=len(thunk_list), limit=self.limit)
        return await asyncio.gather(*(self.run(thunk) for thunk in thunk_list), return_exceptions=True)
