"""
JWKS fetcher for the identity service.

Keeps a ``KeyRing`` fresh: one synchronous refresh on start, a periodic
refresh afterwards, and a forced refresh when a token names an unknown key.
A failed refresh leaves the current ring in place (serve stale).
"""

import asyncio
import json
import time
from typing import Any, Dict, List, Optional, Union

import httpx

from http_client.transport import ResilientTransport
from shared.config import JwtValidationSettings
from shared.errors import AccessGuardException, FetchError
from shared.logging import get_logger
from shared.metrics import MetricsCollector, get_metrics_collector
from shared.periodic import PeriodicTask
from .keys import KeyRing, VerificationKey

logger = get_logger("auth.jwks")


def extract_key_set(body: Union[str, bytes]) -> Dict[str, Any]:
    """Return the JWKS document from a response body.

    The identity service may wrap the key set in its standard envelope,
    ``{"success": true, "data": {"keys": [...]}}``; a raw ``{"keys": [...]}``
    document is accepted as is.
    """
    if not body or not body.strip():
        raise FetchError("Empty JWKS response")
    try:
        document = json.loads(body)
    except ValueError as e:
        raise FetchError("JWKS response is not valid JSON", {"error": str(e)}) from e

    if not isinstance(document, dict):
        raise FetchError("JWKS response is not a JSON object")

    data = document.get("data")
    if isinstance(data, dict) and "keys" in data:
        document = data

    if not isinstance(document.get("keys"), list):
        raise FetchError("JWKS response missing 'keys' array")
    return document


def decode_key_set(document: Dict[str, Any]) -> List[VerificationKey]:
    """Build verification keys, ignoring entries that are not asymmetric signing keys."""
    keys = []
    for entry in document["keys"]:
        if not isinstance(entry, dict):
            continue
        key = VerificationKey.from_jwk(entry)
        if key is not None:
            keys.append(key)
    return keys


class KeyFetcher:
    """Fetches the JWKS through the resilient transport and owns the KeyRing."""

    def __init__(self,
                 settings: JwtValidationSettings,
                 transport: ResilientTransport,
                 key_ring: Optional[KeyRing] = None,
                 metrics: Optional[MetricsCollector] = None):
        self.settings = settings
        self.transport = transport
        self.key_ring = key_ring or KeyRing()
        self.metrics = metrics or get_metrics_collector()
        self.last_error: Optional[FetchError] = None
        self._refresh_lock = asyncio.Lock()
        self._refresh_count = 0
        self._timer = PeriodicTask(
            "jwks-refresh",
            settings.jwks_cache_refresh_interval.total_seconds(),
            self.refresh,
        )

    @property
    def ready(self) -> bool:
        """True once at least one refresh has succeeded."""
        return self.key_ring.snapshot.generation > 0

    @property
    def jwks_url(self) -> str:
        return self.settings.identity_service_url.rstrip("/") + self.settings.jwks_endpoint

    def _client(self) -> httpx.AsyncClient:
        return self.transport.client(self.settings.identity_service_name, self.settings.identity_service_url)

    async def fetch_key_set(self) -> List[VerificationKey]:
        """Fetch and decode the current key set. Raises FetchError."""
        try:
            response = await self._client().get(self.settings.jwks_endpoint)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise FetchError(
                f"JWKS request failed with status {e.response.status_code}",
                {"url": self.jwks_url, "status": e.response.status_code},
            ) from e
        except (httpx.HTTPError, AccessGuardException) as e:
            raise FetchError("Failed to fetch JWKS from identity service",
                             {"url": self.jwks_url, "error": str(e)}) from e

        return decode_key_set(extract_key_set(response.content))

    async def refresh(self, force: bool = False) -> bool:
        """Replace the key ring with a freshly fetched key set.

        Returns False and keeps the current ring if the fetch fails.
        Callers that queued behind an in-flight refresh reuse its result
        unless ``force`` is set, in which case they fetch again once it ends.
        """
        observed = self._refresh_count
        async with self._refresh_lock:
            if not force and self._refresh_count != observed:
                return self.last_error is None

            start_time = time.monotonic()
            try:
                keys = await self.fetch_key_set()
            except FetchError as e:
                self.last_error = e
                logger.error("Failed to refresh JWKS, keeping current keys",
                             error=e.message, details=e.details, keys_cached=len(self.key_ring))
                self.metrics.record_jwks_refresh("error", time.monotonic() - start_time)
                return False
            finally:
                self._refresh_count += 1

            snapshot = self.key_ring.replace(keys)
            self.last_error = None
            self.metrics.record_jwks_refresh("success", time.monotonic() - start_time, len(snapshot.keys))
            if not snapshot.keys:
                logger.warning("JWKS refreshed with no usable signing keys")
            logger.info("JWKS cache refreshed", keys_cached=len(snapshot.keys),
                        generation=snapshot.generation)
            return True

    async def get_key(self, key_id: str) -> Optional[VerificationKey]:
        """Look up a key, refreshing once on a miss."""
        key = self.key_ring.lookup(key_id)
        if key is not None:
            return key

        logger.warning("JWK key not found in cache, refreshing", kid=key_id)
        # A refresh already in flight may have started before the key was published
        await self.refresh(force=True)
        return self.key_ring.lookup(key_id)

    async def start(self) -> None:
        """Load keys once, then keep them fresh in the background."""
        if not await self.refresh():
            logger.error("Initial JWKS load failed; tokens will be rejected until a refresh succeeds")
        self._timer.start()

    async def stop(self) -> None:
        await self._timer.stop()

    def get_cached_keys_count(self) -> int:
        return len(self.key_ring)
