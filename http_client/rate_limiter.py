"""
Token bucket rate limiter for outbound calls.

Permits are refilled in whole cycles of ``limit_refresh_period``. A caller
that finds the bucket empty reserves a permit from a future cycle when the
wait fits within ``timeout_duration``; otherwise it is rejected at once
instead of sleeping into a failure.
"""

import asyncio
import threading
import time
from typing import Any, Awaitable, Callable, Dict, Optional

from shared.errors import RateLimitedError
from shared.logging import get_logger
from shared.metrics import MetricsCollector


class RateLimiter:
    """Per-destination token bucket."""

    def __init__(self,
                 name: str,
                 limit_for_period: int = 100,
                 limit_refresh_period: float = 60.0,
                 timeout_duration: float = 5.0,
                 metrics: Optional[MetricsCollector] = None,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep):
        if limit_for_period < 1:
            raise ValueError("limit_for_period must be at least 1")
        if limit_refresh_period <= 0:
            raise ValueError("limit_refresh_period must be positive")
        self.name = name
        self.limit_for_period = limit_for_period
        self.limit_refresh_period = limit_refresh_period
        self.timeout_duration = timeout_duration
        self.metrics = metrics
        self.logger = get_logger(f"rate_limiter.{name}")
        self._clock = clock
        self._sleep = sleep

        self._lock = threading.Lock()
        self._started_at = clock()
        self._cycle = 0
        # Negative when permits from future cycles are reserved
        self._permits = limit_for_period

    def _refill(self, now: float) -> int:
        cycle = int((now - self._started_at) // self.limit_refresh_period)
        if cycle > self._cycle:
            elapsed = cycle - self._cycle
            self._permits = min(self._permits + elapsed * self.limit_for_period, self.limit_for_period)
            self._cycle = cycle
        return cycle

    def reserve(self) -> Optional[float]:
        """Take a permit. Returns seconds to wait before using it, or None if rejected."""
        with self._lock:
            now = self._clock()
            cycle = self._refill(now)
            if self._permits > 0:
                self._permits -= 1
                return 0.0

            wait = self._started_at + (cycle + 1) * self.limit_refresh_period - now
            wait += (-self._permits // self.limit_for_period) * self.limit_refresh_period
            if wait > self.timeout_duration:
                return None
            self._permits -= 1
            return wait

    async def acquire(self) -> None:
        """Wait for a permit or raise RateLimitedError."""
        wait = self.reserve()
        if wait is None:
            self.logger.warning(
                "Rate limit exceeded",
                limit_for_period=self.limit_for_period,
                timeout=self.timeout_duration
            )
            if self.metrics:
                self.metrics.increment_counter("rate_limit_rejections_total", service=self.name)
            raise RateLimitedError(self.name, {"limit_for_period": self.limit_for_period})
        if wait > 0:
            self.logger.debug("Waiting for rate limiter permit", wait=wait)
            try:
                await self._sleep(wait)
            except asyncio.CancelledError:
                self._release()
                raise

    def _release(self) -> None:
        """Hand back a reserved permit that will not be used."""
        with self._lock:
            self._refill(self._clock())
            self._permits = min(self._permits + 1, self.limit_for_period)
        self.logger.debug("Released rate limiter permit after cancellation")

    async def call(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        await self.acquire()
        return await func(*args, **kwargs)

    def get_state(self) -> Dict[str, Any]:
        with self._lock:
            self._refill(self._clock())
            return {
                "name": self.name,
                "available_permits": max(0, self._permits),
                "waiting_reservations": max(0, -self._permits),
                "limit_for_period": self.limit_for_period,
                "limit_refresh_period": self.limit_refresh_period,
            }
