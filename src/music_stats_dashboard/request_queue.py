"""Bounded-concurrency admission for outbound Spotify calls."""
from __future__ import annotations

import asyncio
from collections import deque
from typing import Awaitable, Callable, TypeVar

T = TypeVar("T")

DEFAULT_MAX_CONCURRENT = 3


class RequestQueue:
    """Runs at most ``max_concurrent`` work items at once, the rest in FIFO order.

    A work item is a zero-argument callable returning an awaitable. Its result
    or exception is delivered to whoever submitted it and never affects the
    other items.
    """

    def __init__(self, max_concurrent: int = DEFAULT_MAX_CONCURRENT) -> None:
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.max_concurrent = max_concurrent
        self._running = 0
        self._waiters: deque[asyncio.Future] = deque()

    @property
    def running(self) -> int:
        return self._running

    @property
    def waiting(self) -> int:
        return len(self._waiters)

    async def submit(self, work: Callable[[], Awaitable[T]]) -> T:
        await self._acquire()
        try:
            return await work()
        finally:
            self._release()

    async def _acquire(self) -> None:
        if self._running < self.max_concurrent and not self._waiters:
            self._running += 1
            return
        waiter = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        # The slot is handed over by _release, which increments _running for us.
        try:
            await waiter
        except asyncio.CancelledError:
            if waiter.done() and not waiter.cancelled():
                self._release()
            raise

    def _release(self) -> None:
        self._running -= 1
        while self._waiters and self._running < self.max_concurrent:
            waiter = self._waiters.popleft()
            if waiter.done():
                continue
            self._running += 1
            waiter.set_result(None)


_default_queue: RequestQueue | None = None


def default_queue(max_concurrent: int = DEFAULT_MAX_CONCURRENT) -> RequestQueue:
    """Return the process-wide queue used by services built without one."""
    global _default_queue
    if _default_queue is None:
        _default_queue = RequestQueue(max_concurrent)
    return _default_queue
