"""
Retry mechanism for resilient operations.
"""

import asyncio
from typing import Any, Awaitable, Callable, Optional

from shared.logging import get_logger
from shared.metrics import MetricsCollector
from .failures import is_recordable_failure


class Retry:
    """Fixed-wait retry on connection errors, timeouts and 5xx responses.

    When every attempt fails the last exception is re-raised as is, so an
    outer circuit breaker classifies the call by its final outcome.
    """

    def __init__(self,
                 name: str,
                 max_attempts: int = 3,
                 wait_duration: float = 1.0,
                 retry_on: Callable[[BaseException], bool] = is_recordable_failure,
                 metrics: Optional[MetricsCollector] = None,
                 sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.name = name
        self.max_attempts = max_attempts
        self.wait_duration = wait_duration
        self.retry_on = retry_on
        self.metrics = metrics
        self.logger = get_logger(f"retry.{name}")
        self._sleep = sleep

    async def call(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        for attempt in range(1, self.max_attempts + 1):
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                if not self.retry_on(e):
                    raise

                if attempt == self.max_attempts:
                    self.logger.error(
                        "All retry attempts exhausted",
                        attempt=attempt,
                        max_attempts=self.max_attempts,
                        error=str(e)
                    )
                    raise

                self.logger.warning(
                    "Retry attempt failed, waiting before next attempt",
                    attempt=attempt,
                    delay=self.wait_duration,
                    error=str(e)
                )
                if self.metrics:
                    self.metrics.increment_counter("retry_attempts_total", service=self.name)
                await self._sleep(self.wait_duration)
                continue

            if attempt > 1:
                self.logger.info("Retry succeeded", attempt=attempt)
            return result
