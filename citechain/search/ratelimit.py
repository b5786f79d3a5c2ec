"""Per-provider request scheduler: bounded concurrency plus a minimum start interval."""

import asyncio
import logging
import time
from contextlib import asynccontextmanager

logger = logging.getLogger(__name__)


class RateLimiter:
    """Schedule outbound requests for one provider.

    At most ``max_concurrent`` requests are in flight, and consecutive
    request starts are at least ``min_interval`` seconds apart. Scheduling
    decisions are serialized under a lock, so one instance can be shared
    by every concurrent caller of that provider in the process. Build it
    inside the event loop that will use it.
    """

    def __init__(self, name: str, max_concurrent: int, min_interval: float):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        if min_interval < 0:
            raise ValueError("min_interval must be non-negative")
        self.name = name
        self.max_concurrent = max_concurrent
        self.min_interval = min_interval
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._lock = asyncio.Lock()
        self._next_start = 0.0
        self.requests_started = 0

    @classmethod
    def from_settings(cls, name: str, settings) -> "RateLimiter":
        return cls(name, settings.max_concurrent, settings.min_interval)

    @asynccontextmanager
    async def slot(self):
        """Hold one request slot for the duration of the ``async with`` block."""
        async with self._semaphore:
            async with self._lock:
                now = time.monotonic()
                wait = self._next_start - now
                if wait > 0:
                    logger.debug("%s limiter: waiting %.3fs", self.name, wait)
                    await asyncio.sleep(wait)
                    now = time.monotonic()
                self._next_start = now + self.min_interval
                self.requests_started += 1
            yield

    async def run(self, func, *args, **kwargs):
        """Await ``func(*args, **kwargs)`` inside a request slot."""
        async with self.slot():
            return await func(*args, **kwargs)
