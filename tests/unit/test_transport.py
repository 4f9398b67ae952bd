"""
Tests for resilient HTTP clients.
"""

import asyncio
import gzip
from datetime import timedelta

import httpx
import pytest

from http_client.registry import ResilienceRegistry
from http_client.transport import ResilientTransport
from shared.config import (
    CircuitBreakerSettings,
    HttpClientSettings,
    RetrySettings,
    ServiceOverrides,
)
from shared.errors import CircuitOpenError, ResponseTooLargeError


class Downstream:
    """Scripted downstream that replays status codes, then answers 200."""

    def __init__(self, statuses=(), body=b'{"status": "ok"}', delay=0.0, headers=None):
        self.statuses = list(statuses)
        self.body = body
        self.delay = delay
        self.headers = {"content-type": "application/json", **(headers or {})}
        self.requests = []

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        status = self.statuses.pop(0) if self.statuses else 200
        return httpx.Response(status, content=self.body, headers=self.headers)


def build_transport(handler, settings, metrics) -> ResilientTransport:
    return ResilientTransport(
        settings,
        ResilienceRegistry(settings, metrics),
        transport=httpx.MockTransport(handler),
    )


class TestResilientTransport:
    """Tests for ResilientTransport and ResilienceInterceptor."""

    @pytest.mark.asyncio
    async def test_successful_request(self, http_settings, metrics):
        downstream = Downstream()
        transport = build_transport(downstream, http_settings, metrics)
        client = transport.client("identity-service", "http://identity")

        response = await client.get("/status")

        assert response.status_code == 200
        assert response.json() == {"status": "ok"}
        assert str(downstream.requests[0].url) == "http://identity/status"
        assert metrics.sample("outbound_request_duration_seconds_count", service="identity-service") == 1
        await transport.aclose()

    @pytest.mark.asyncio
    async def test_server_errors_are_retried(self, http_settings, metrics):
        downstream = Downstream(statuses=[503, 503])
        transport = build_transport(downstream, http_settings, metrics)
        client = transport.client("identity-service", "http://identity")

        response = await client.get("/status")

        assert response.status_code == 200
        assert len(downstream.requests) == 3
        await transport.aclose()

    @pytest.mark.asyncio
    async def test_persistent_server_error_is_raised(self, http_settings, metrics):
        downstream = Downstream(statuses=[500, 500, 500])
        transport = build_transport(downstream, http_settings, metrics)
        client = transport.client("identity-service", "http://identity")

        with pytest.raises(httpx.HTTPStatusError) as exc_info:
            await client.get("/status")

        assert exc_info.value.response.status_code == 500
        assert len(downstream.requests) == 3
        await transport.aclose()

    @pytest.mark.asyncio
    async def test_client_errors_are_returned_without_retry(self, http_settings, metrics):
        downstream = Downstream(statuses=[404])
        transport = build_transport(downstream, http_settings, metrics)
        client = transport.client("identity-service", "http://identity")

        response = await client.get("/missing")

        assert response.status_code == 404
        assert len(downstream.requests) == 1
        await transport.aclose()

    @pytest.mark.asyncio
    async def test_oversized_response_is_rejected(self, metrics):
        settings = HttpClientSettings(max_response_bytes=16, retry=RetrySettings(enabled=False))
        downstream = Downstream(body=b"x" * 100)
        transport = build_transport(downstream, settings, metrics)
        client = transport.client("identity-service", "http://identity")

        with pytest.raises(ResponseTooLargeError) as exc_info:
            await client.get("/big")

        assert exc_info.value.details["limit"] == 16
        await transport.aclose()

    @pytest.mark.asyncio
    async def test_compressed_response_is_limited_by_decoded_size(self, metrics):
        settings = HttpClientSettings(max_response_bytes=100_000, retry=RetrySettings(enabled=False))
        downstream = Downstream(body=gzip.compress(b"\0" * 2_000_000), headers={"content-encoding": "gzip"})
        transport = build_transport(downstream, settings, metrics)
        client = transport.client("identity-service", "http://identity")

        with pytest.raises(ResponseTooLargeError):
            await client.get("/big")

        await transport.aclose()

    @pytest.mark.asyncio
    async def test_compressed_response_is_returned_decoded(self, http_settings, metrics):
        body = b'{"status": "ok"}'
        downstream = Downstream(body=gzip.compress(body), headers={"content-encoding": "gzip"})
        transport = build_transport(downstream, http_settings, metrics)
        client = transport.client("identity-service", "http://identity")

        response = await client.get("/status")

        assert response.json() == {"status": "ok"}
        assert "content-encoding" not in response.headers
        assert response.headers["content-length"] == str(len(body))
        await transport.aclose()

    @pytest.mark.asyncio
    async def test_slow_response_times_out(self, metrics):
        settings = HttpClientSettings(
            retry=RetrySettings(enabled=False),
            services={"identity-service": ServiceOverrides(timeout=timedelta(milliseconds=50))},
        )
        downstream = Downstream(delay=1.0)
        transport = build_transport(downstream, settings, metrics)
        client = transport.client("identity-service", "http://identity")

        with pytest.raises(httpx.ReadTimeout):
            await client.get("/slow")
        await transport.aclose()

    @pytest.mark.asyncio
    async def test_open_circuit_fails_fast(self, metrics):
        settings = HttpClientSettings(
            retry=RetrySettings(enabled=False),
            circuit_breaker=CircuitBreakerSettings(sliding_window_size=2),
        )
        downstream = Downstream(statuses=[500, 500, 500])
        transport = build_transport(downstream, settings, metrics)
        client = transport.client("identity-service", "http://identity")

        for _ in range(2):
            with pytest.raises(httpx.HTTPStatusError):
                await client.get("/status")
        with pytest.raises(CircuitOpenError):
            await client.get("/status")

        assert len(downstream.requests) == 2
        await transport.aclose()

    @pytest.mark.asyncio
    async def test_client_is_cached_per_destination(self, http_settings, metrics):
        transport = build_transport(Downstream(), http_settings, metrics)

        client = transport.client("identity-service", "http://identity")

        assert transport.client("identity-service") is client
        assert transport.client("billing-service", "http://billing") is not client
        await transport.aclose()
        assert transport.clients == {}

    def test_timeouts_come_from_settings(self, metrics):
        settings = HttpClientSettings(connect_timeout=timedelta(seconds=1), read_timeout=timedelta(seconds=7))
        transport = build_transport(Downstream(), settings, metrics)

        timeout = transport._timeout()

        assert timeout.connect == 1.0
        assert timeout.read == 7.0
        assert timeout.write == 5.0
        assert timeout.pool == 5.0
