"""
Resilient HTTP clients, one per destination service.

Each client is an ``httpx.AsyncClient`` whose transport is wrapped by a
``ResilienceInterceptor``: every request is dispatched through the
destination's resilience layer, bounded by a per-attempt response deadline,
and buffered up to ``max_response_bytes``.

Usage::

    transport = ResilientTransport(HttpClientSettings())
    client = transport.client("identity-service", "http://identity:8081")
    response = await client.get("/.well-known/jwks.json")
"""

import asyncio
from typing import Dict, Optional

import httpx

from shared.config import HttpClientSettings
from shared.errors import ResponseTooLargeError
from shared.logging import get_logger
from shared.metrics import MetricsCollector, get_metrics_collector
from .failures import is_server_error
from .registry import ResilienceLayer, ResilienceRegistry


class ResilienceInterceptor(httpx.AsyncBaseTransport):
    """Transport wrapper that runs each request through a ResilienceLayer.

    5xx responses are raised as ``httpx.HTTPStatusError`` so retry and the
    circuit breaker see them; any other status is returned to the caller.
    """

    def __init__(self,
                 service_name: str,
                 layer: ResilienceLayer,
                 transport: httpx.AsyncBaseTransport,
                 response_timeout: float,
                 max_response_bytes: int,
                 metrics: Optional[MetricsCollector] = None):
        self.service_name = service_name
        self.layer = layer
        self.response_timeout = response_timeout
        self.max_response_bytes = max_response_bytes
        self.metrics = metrics or get_metrics_collector()
        self._transport = transport

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        return await self.layer.execute(self._send, request)

    async def _send(self, request: httpx.Request) -> httpx.Response:
        try:
            with self.metrics.time_operation("outbound_request_duration_seconds", service=self.service_name):
                response = await asyncio.wait_for(self._send_buffered(request), timeout=self.response_timeout)
        except asyncio.TimeoutError as e:
            raise httpx.ReadTimeout(
                f"{self.service_name}: no response within {self.response_timeout}s",
                request=request,
            ) from e

        if is_server_error(response.status_code):
            raise httpx.HTTPStatusError(
                f"Server error '{response.status_code}' from {self.service_name} for url '{request.url}'",
                request=request,
                response=response,
            )
        return response

    async def _send_buffered(self, request: httpx.Request) -> httpx.Response:
        response = await self._transport.handle_async_request(request)
        response.request = request
        chunks = []
        size = 0
        try:
            # Decoded bytes, so a compressed body cannot expand past the limit
            async for chunk in response.aiter_bytes():
                size += len(chunk)
                if size > self.max_response_bytes:
                    raise ResponseTooLargeError(self.service_name, self.max_response_bytes)
                chunks.append(chunk)
        finally:
            await response.aclose()

        headers = httpx.Headers(response.headers)
        headers.pop("content-encoding", None)
        headers["content-length"] = str(size)
        return httpx.Response(
            status_code=response.status_code,
            headers=headers,
            stream=httpx.ByteStream(b"".join(chunks)),
            request=request,
            extensions=response.extensions,
        )

    async def aclose(self) -> None:
        await self._transport.aclose()


class ResilientTransport:
    """Builds and caches one resilient ``httpx.AsyncClient`` per destination."""

    def __init__(self,
                 settings: Optional[HttpClientSettings] = None,
                 registry: Optional[ResilienceRegistry] = None,
                 *,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.settings = settings or HttpClientSettings()
        self.registry = registry or ResilienceRegistry(self.settings)
        self.logger = get_logger("http_client.transport")
        self.clients: Dict[str, httpx.AsyncClient] = {}
        # Injected base transport (tests, custom TLS); a pooled HTTP transport otherwise
        self._base_transport = transport

    def _timeout(self) -> httpx.Timeout:
        return httpx.Timeout(
            self.settings.default_timeout.total_seconds(),
            connect=self.settings.connect_timeout.total_seconds(),
            read=self.settings.read_timeout.total_seconds(),
            write=self.settings.write_timeout.total_seconds(),
        )

    def client(self, service_name: str, base_url: str = "") -> httpx.AsyncClient:
        """Get or create the resilient client for a destination."""
        client = self.clients.get(service_name)
        if client is not None:
            if base_url and str(client.base_url).rstrip("/") != base_url.rstrip("/"):
                self.logger.warning(
                    "Ignoring base URL for existing client",
                    service=service_name,
                    base_url=base_url,
                    existing=str(client.base_url),
                )
            return client

        service_settings = self.settings.for_service(service_name)
        interceptor = ResilienceInterceptor(
            service_name,
            self.registry.get_layer(service_name),
            self._base_transport or httpx.AsyncHTTPTransport(),
            response_timeout=service_settings.response_timeout.total_seconds(),
            max_response_bytes=self.settings.max_response_bytes,
            metrics=self.registry.metrics,
        )
        client = httpx.AsyncClient(base_url=base_url, timeout=self._timeout(), transport=interceptor)
        self.clients[service_name] = client
        self.logger.info(
            "Created resilient HTTP client",
            service=service_name,
            base_url=base_url,
            response_timeout=interceptor.response_timeout,
        )
        return client

    async def aclose(self) -> None:
        """Close every client created by this transport."""
        clients, self.clients = self.clients, {}
        for client in clients.values():
            await client.aclose()
