"""Per-host request pacing."""

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Awaitable, Callable, Optional
from urllib.parse import urlsplit

logger = logging.getLogger(__name__)


class PerHostRateLimiter:
    """
    Caps concurrent requests per host and spaces them out.

    Different hosts never wait on each other. With the default delay of 0
    only the concurrency cap applies.

    Example:
        limiter = PerHostRateLimiter(default_delay=0.5, default_concurrent=3)

        async with limiter.limit("https://api.github.com/repos/a/b/issues/1"):
            await session.get(...)
    """

    def __init__(
        self,
        default_delay: float = 0.0,
        default_concurrent: int = 5,
        host_delays: Optional[dict[str, float]] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Args:
            default_delay: Minimum seconds between request starts on one host
            default_concurrent: Maximum in-flight requests per host
            host_delays: Per-host delay overrides, e.g. {"api.github.com": 1.0}
            clock: Monotonic clock
            sleep: Sleep coroutine
        """
        self.default_delay = default_delay
        self.default_concurrent = default_concurrent
        self.host_delays = {host.lower(): delay for host, delay in (host_delays or {}).items()}
        self._clock = clock
        self._sleep = sleep

        self._semaphores: dict[str, asyncio.Semaphore] = {}
        self._next_slot: dict[str, float] = {}
        self._lock = asyncio.Lock()

    @staticmethod
    def host_of(url: str) -> str:
        return (urlsplit(url).hostname or "").lower()

    def delay_for(self, host: str) -> float:
        return self.host_delays.get(host, self.default_delay)

    def _semaphore(self, host: str) -> asyncio.Semaphore:
        sem = self._semaphores.get(host)
        if sem is None:
            sem = self._semaphores[host] = asyncio.Semaphore(self.default_concurrent)
        return sem

    async def _reserve_slot(self, host: str) -> float:
        """Claim the next start time for ``host``; returns seconds to wait."""
        async with self._lock:
            now = self._clock()
            start = max(now, self._next_slot.get(host, now))
            self._next_slot[host] = start + self.delay_for(host)
            return start - now

    @asynccontextmanager
    async def limit(self, url: str) -> AsyncIterator[None]:
        """
        Hold a request slot for ``url``'s host for the duration of the block.
        """
        host = self.host_of(url)
        async with self._semaphore(host):
            wait_time = await self._reserve_slot(host)
            if wait_time > 0:
                logger.debug(f"Pacing {host}: waiting {wait_time:.2f}s")
                await self._sleep(wait_time)
            yield

    def get_stats(self) -> dict:
        """Get rate limiter statistics."""
        return {
            "hosts_tracked": len(self._semaphores),
            "custom_delays": len(self.host_delays),
        }
