"""
Rate limiters for calls to external services.

The batch embedding job awaits ``acquire()`` before every item and before
every batch after the first.  Both limiters take an injectable ``sleep``
(and, for the bucket, ``clock``) so tests can run without wall-clock delays.
"""
from __future__ import annotations

import asyncio
import time
from abc import ABC, abstractmethod
from typing import Awaitable, Callable

SleepFn = Callable[[float], Awaitable[None]]


class RateLimiter(ABC):
    """Something that can be awaited before issuing one unit of work."""

    @abstractmethod
    async def acquire(self) -> None:
        ...


class FixedDelay(RateLimiter):
    """Wait a fixed number of seconds on each acquire. A delay of 0 never sleeps."""

    def __init__(self, delay: float, sleep: SleepFn = asyncio.sleep) -> None:
        if delay < 0:
            raise ValueError("delay must be >= 0")
        self.delay = delay
        self._sleep = sleep

    async def acquire(self) -> None:
        if self.delay > 0:
            await self._sleep(self.delay)


class TokenBucket(RateLimiter):
    """
    Token bucket allowing bursts of up to *capacity* acquisitions and a
    sustained *rate* of acquisitions per second.
    """

    def __init__(
        self,
        rate: float,
        capacity: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        if rate <= 0:
            raise ValueError("rate must be > 0")
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.rate = rate
        self.capacity = capacity
        self._clock = clock
        self._sleep = sleep
        self._tokens = capacity
        self._updated = clock()
        self._lock = asyncio.Lock()

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self._updated)
        self._tokens = min(self.capacity, self._tokens + elapsed * self.rate)
        self._updated = now

    async def acquire(self) -> None:
        async with self._lock:
            self._refill()
            if self._tokens < 1:
                wait = (1 - self._tokens) / self.rate
                await self._sleep(wait)
                self._refill()
                # A fake clock that did not advance still pays for the wait
                self._tokens = max(self._tokens, 1.0)
            self._tokens -= 1
