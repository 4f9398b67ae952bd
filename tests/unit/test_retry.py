"""
Tests for the fixed-wait retry control.
"""

from unittest.mock import AsyncMock

import httpx
import pytest

from http_client.retry import Retry
from shared.errors import RateLimitedError


def http_status_error(status_code: int) -> httpx.HTTPStatusError:
    request = httpx.Request("GET", "http://downstream/resource")
    response = httpx.Response(status_code, request=request)
    return httpx.HTTPStatusError(f"status {status_code}", request=request, response=response)


class TestRetry:
    """Tests for Retry."""

    @pytest.fixture
    def sleep(self):
        return AsyncMock()

    @pytest.fixture
    def retry(self, sleep, metrics):
        return Retry("identity-service", max_attempts=3, wait_duration=1.0, metrics=metrics, sleep=sleep)

    @pytest.mark.asyncio
    async def test_retries_server_errors_until_success(self, retry, sleep, metrics):
        """503, 503, 200 takes exactly three attempts."""
        func = AsyncMock(side_effect=[http_status_error(503), http_status_error(503), "ok"])

        result = await retry.call(func)

        assert result == "ok"
        assert func.await_count == 3
        assert sleep.await_count == 2
        sleep.assert_awaited_with(1.0)
        assert metrics.sample("retry_attempts_total", service="identity-service") == 2

    @pytest.mark.asyncio
    async def test_reraises_last_error_when_exhausted(self, retry):
        last_error = httpx.ConnectError("still down")
        func = AsyncMock(side_effect=[httpx.ConnectError("down"), httpx.ConnectError("down"), last_error])

        with pytest.raises(httpx.ConnectError) as exc_info:
            await retry.call(func)

        assert exc_info.value is last_error
        assert func.await_count == 3

    @pytest.mark.asyncio
    async def test_does_not_retry_client_errors(self, retry, sleep):
        func = AsyncMock(side_effect=http_status_error(404))

        with pytest.raises(httpx.HTTPStatusError):
            await retry.call(func)

        assert func.await_count == 1
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_does_not_retry_resilience_rejections(self, retry):
        func = AsyncMock(side_effect=RateLimitedError("identity-service"))

        with pytest.raises(RateLimitedError):
            await retry.call(func)

        assert func.await_count == 1

    @pytest.mark.asyncio
    async def test_passes_arguments_through(self, retry):
        func = AsyncMock(return_value="ok")

        assert await retry.call(func, "a", key="b") == "ok"
        func.assert_awaited_once_with("a", key="b")

    def test_rejects_zero_attempts(self):
        with pytest.raises(ValueError):
            Retry("identity-service", max_attempts=0)
