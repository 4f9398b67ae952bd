"""
Tests for PeriodicTask.
"""

import asyncio

import pytest

from shared.periodic import PeriodicTask


class TestPeriodicTask:
    """Tests for PeriodicTask scheduling."""

    @pytest.mark.asyncio
    async def test_failing_tick_does_not_stop_schedule(self):
        calls = []

        async def tick():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("identity service down")

        task = PeriodicTask("test", 0.01, tick)
        task.start()
        await asyncio.sleep(0.1)
        await task.stop()

        assert len(calls) >= 2
        assert task.ticks == len(calls)
        assert not task.running

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self):
        async def tick():
            pass

        task = PeriodicTask("test", 60, tick)
        task.start()
        first = task._task
        task.start()

        assert task._task is first
        await task.stop()

    @pytest.mark.asyncio
    async def test_stop_without_start(self):
        async def tick():
            pass

        task = PeriodicTask("test", 60, tick)
        await task.stop()

        assert not task.running

    def test_rejects_non_positive_interval(self):
        async def tick():
            pass

        with pytest.raises(ValueError):
            PeriodicTask("test", 0, tick)
