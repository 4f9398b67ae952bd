"""
Tests for the token bucket rate limiter.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from http_client.rate_limiter import RateLimiter
from shared.errors import RateLimitedError


class TestRateLimiter:
    """Tests for RateLimiter."""

    @pytest.fixture
    def sleep(self):
        return AsyncMock()

    @pytest.mark.asyncio
    async def test_rejects_when_no_permit_within_timeout(self, clock, sleep, metrics):
        """One permit per minute: the second immediate call is rejected."""
        limiter = RateLimiter(
            "identity-service",
            limit_for_period=1,
            limit_refresh_period=60.0,
            timeout_duration=5.0,
            metrics=metrics,
            clock=clock,
            sleep=sleep,
        )
        func = AsyncMock(return_value="ok")

        assert await limiter.call(func) == "ok"
        with pytest.raises(RateLimitedError) as exc_info:
            await limiter.call(func)

        assert exc_info.value.status_code == 429
        assert func.await_count == 1
        sleep.assert_not_awaited()
        assert metrics.sample("rate_limit_rejections_total", service="identity-service") == 1

    def test_reserves_future_permits_within_timeout(self, clock, sleep):
        limiter = RateLimiter(
            "identity-service",
            limit_for_period=1,
            limit_refresh_period=2.0,
            timeout_duration=5.0,
            clock=clock,
            sleep=sleep,
        )

        assert limiter.reserve() == 0.0
        assert limiter.reserve() == pytest.approx(2.0)
        assert limiter.reserve() == pytest.approx(4.0)
        assert limiter.reserve() is None

    @pytest.mark.asyncio
    async def test_waits_for_reserved_permit(self, clock, sleep):
        limiter = RateLimiter(
            "identity-service",
            limit_for_period=1,
            limit_refresh_period=2.0,
            timeout_duration=5.0,
            clock=clock,
            sleep=sleep,
        )

        await limiter.acquire()
        clock.advance(0.5)
        await limiter.acquire()

        sleep.assert_awaited_once()
        assert sleep.await_args.args[0] == pytest.approx(1.5)

    def test_permits_refill_each_period(self, clock, sleep):
        limiter = RateLimiter(
            "identity-service",
            limit_for_period=2,
            limit_refresh_period=60.0,
            timeout_duration=0.0,
            clock=clock,
            sleep=sleep,
        )

        assert limiter.reserve() == 0.0
        assert limiter.reserve() == 0.0
        assert limiter.reserve() is None

        clock.advance(60)
        assert limiter.get_state()["available_permits"] == 2
        assert limiter.reserve() == 0.0

    def test_unused_permits_do_not_accumulate(self, clock, sleep):
        limiter = RateLimiter(
            "identity-service",
            limit_for_period=2,
            limit_refresh_period=1.0,
            timeout_duration=0.0,
            clock=clock,
            sleep=sleep,
        )

        clock.advance(10)
        assert limiter.get_state()["available_permits"] == 2

    def test_rejects_invalid_limits(self):
        with pytest.raises(ValueError):
            RateLimiter("identity-service", limit_for_period=0)
        with pytest.raises(ValueError):
            RateLimiter("identity-service", limit_refresh_period=0)

    @pytest.mark.asyncio
    async def test_cancelled_wait_returns_reserved_permit(self, clock):
        limiter = RateLimiter(
            "identity-service",
            limit_for_period=1,
            limit_refresh_period=2.0,
            timeout_duration=5.0,
            clock=clock,
            sleep=AsyncMock(side_effect=asyncio.CancelledError()),
        )

        await limiter.acquire()
        with pytest.raises(asyncio.CancelledError):
            await limiter.acquire()

        assert limiter.get_state()["waiting_reservations"] == 0
        assert limiter.reserve() == pytest.approx(2.0)
