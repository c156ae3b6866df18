"""Sliding-window request limiter for quota-bound APIs."""

import asyncio
import time
import logging
from typing import Callable, List, Optional, Protocol

from .base_scraper import SleepFunc

logger = logging.getLogger(__name__)

# Slack added after the oldest call leaves the window
WINDOW_PADDING_SECONDS = 0.1


class WindowStore(Protocol):
    """Where call timestamps live.

    The in-memory store keeps the window per process. Running several
    workers against one API key needs a store backed by something they all
    see (a shared counter service or database table) implementing the same
    three methods.
    """

    def timestamps(self) -> List[float]:
        ...

    def prune(self, cutoff: float) -> None:
        ...

    def record(self, timestamp: float) -> None:
        ...


class InMemoryWindowStore:
    """Process-local timestamp list."""

    def __init__(self):
        self._timestamps: List[float] = []

    def timestamps(self) -> List[float]:
        return list(self._timestamps)

    def prune(self, cutoff: float) -> None:
        self._timestamps = [t for t in self._timestamps if t > cutoff]

    def record(self, timestamp: float) -> None:
        self._timestamps.append(timestamp)


class SlidingWindowRateLimiter:
    """Allow at most ``max_requests`` calls per rolling ``window_seconds``.

    ``acquire`` waits instead of failing when the window is full. Clock and
    sleep are injectable so tests can drive it with a fake clock.
    """

    def __init__(self, max_requests: int, window_seconds: float,
                 clock: Optional[Callable[[], float]] = None,
                 sleep: Optional[SleepFunc] = None,
                 store: Optional[WindowStore] = None):
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.clock = clock or time.monotonic
        self.sleep: SleepFunc = sleep or asyncio.sleep
        self.store: WindowStore = store or InMemoryWindowStore()
        self._lock = asyncio.Lock()

    async def acquire(self) -> float:
        """Block until a call is allowed, then record it.

        Returns:
            float: Seconds spent waiting
        """
        async with self._lock:
            return await self._acquire()

    async def _acquire(self) -> float:
        waited = 0.0
        now = self.clock()
        self.store.prune(now - self.window_seconds)

        timestamps = self.store.timestamps()
        if len(timestamps) >= self.max_requests:
            oldest = min(timestamps)
            wait = oldest + self.window_seconds - now + WINDOW_PADDING_SECONDS
            if wait > 0:
                logger.info(f"Rate limit window full, waiting {wait:.2f} seconds")
                await self.sleep(wait)
                waited = wait
            now = self.clock()
            self.store.prune(now - self.window_seconds)

        self.store.record(now)
        return waited
