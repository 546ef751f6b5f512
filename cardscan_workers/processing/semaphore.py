"""
Counting semaphore with a FIFO wait queue.

Used to bound simultaneous remote operations per stage class (object-storage
writes, vision extraction). `release()` hands the permit straight to the
longest-waiting caller instead of returning it to the pool, so a late
`acquire()` can never overtake a waiter.
"""

import asyncio
import logging
from collections import deque
from typing import Deque, Optional

logger = logging.getLogger(__name__)


class PermitSemaphore:
    """
    Async counting semaphore with fair (arrival-order) hand-off.

    Usage:
        uploads = PermitSemaphore(5, name="upload")

        async with uploads:
            await put_object(...)
    """

    def __init__(self, capacity: int, name: Optional[str] = None):
        if capacity < 1:
            raise ValueError(f"Semaphore capacity must be >= 1, got {capacity}")
        self.capacity = capacity
        self.name = name or "semaphore"
        self._permits = capacity
        self._waiters: Deque[asyncio.Future] = deque()

    @property
    def available(self) -> int:
        return self._permits

    @property
    def waiting(self) -> int:
        return sum(1 for waiter in self._waiters if not waiter.done())

    @property
    def in_use(self) -> int:
        return self.capacity - self._permits

    async def acquire(self) -> None:
        """Take a permit, suspending until one is handed over if none are free."""
        if self._permits > 0 and not self._waiters:
            self._permits -= 1
            return

        waiter = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        logger.debug(f"[{self.name}] waiting for permit ({len(self._waiters)} queued)")
        try:
            await waiter
        except asyncio.CancelledError:
            if waiter.done() and not waiter.cancelled():
                # permit was handed to us just before cancellation; pass it on
                self.release()
            else:
                try:
                    self._waiters.remove(waiter)
                except ValueError:
                    pass
            raise

    def release(self) -> None:
        """Hand the permit to the oldest live waiter, or return it to the pool."""
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.set_result(None)
                return

        if self._permits >= self.capacity:
            raise ValueError(f"[{self.name}] released more permits than acquired")
        self._permits += 1

    async def __aenter__(self) -> "PermitSemaphore":
        await self.acquire()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.release()

    def get_stats(self) -> dict:
        return {
            "name": self.name,
            "capacity": self.capacity,
            "available": self.available,
            "in_use": self.in_use,
            "waiting": self.waiting,
        }
