"""
Repeating background task bound to an owner's lifecycle.
"""

import asyncio
from contextlib import suppress
from typing import Any, Awaitable, Callable, Optional

from shared.logging import get_logger


class PeriodicTask:
    """Run a coroutine function on a fixed delay until stopped.

    A failing tick is logged and the schedule continues.
    """

    def __init__(self, name: str, interval: float, func: Callable[[], Awaitable[Any]]):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.name = name
        self.interval = interval
        self.func = func
        self.logger = get_logger(f"periodic.{name}")
        self._task: Optional[asyncio.Task] = None
        self.ticks = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start ticking. Must be called from a running event loop."""
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name=f"periodic-{self.name}")
        self.logger.info("Periodic task started", interval=self.interval)

    async def stop(self) -> None:
        """Cancel the schedule and wait for the current tick to unwind."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task
        self.logger.info("Periodic task stopped", ticks=self.ticks)

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            self.ticks += 1
            try:
                await self.func()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.logger.error("Periodic task tick failed", error=str(e), tick=self.ticks)
