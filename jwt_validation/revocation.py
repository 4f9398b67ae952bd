"""
Token revocation (blacklist) checks backed by Redis.
"""

import asyncio
import time
from typing import Any, Mapping, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from shared.logging import get_logger
from shared.metrics import MetricsCollector, get_metrics_collector

CACHE_ERRORS = (RedisError, OSError, asyncio.TimeoutError)


class RevocationChecker:
    """Looks up revocation markers stored under ``{prefix}{token_id}``.

    Cache failures are treated as "not revoked" (fail open). Deployments
    that need to reject tokens while the cache is down can override
    ``_on_cache_error``.
    """

    def __init__(self,
                 redis_client: redis.Redis,
                 prefix: str = "jwt:blacklist:",
                 metrics: Optional[MetricsCollector] = None):
        self.redis = redis_client
        self.prefix = prefix
        self.metrics = metrics or get_metrics_collector()
        self.logger = get_logger("auth.revocation")

    @classmethod
    def from_url(cls, redis_url: str, prefix: str = "jwt:blacklist:",
                 metrics: Optional[MetricsCollector] = None) -> "RevocationChecker":
        client = redis.from_url(
            redis_url,
            encoding="utf-8",
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
            retry_on_timeout=True,
            health_check_interval=30
        )
        return cls(client, prefix=prefix, metrics=metrics)

    async def aclose(self) -> None:
        await self.redis.aclose()

    def _key(self, token_id: str) -> str:
        return f"{self.prefix}{token_id}"

    async def is_revoked(self, token_id: Optional[str]) -> bool:
        """Return True if a revocation marker exists for ``token_id``."""
        if token_id is None or not token_id.strip():
            return False

        try:
            exists = await self.redis.exists(self._key(token_id))
        except CACHE_ERRORS as e:
            return self._on_cache_error(token_id, e)

        revoked = bool(exists)
        if revoked:
            self.logger.debug("Token is blacklisted", token_id=token_id)
        return revoked

    def _on_cache_error(self, token_id: str, error: BaseException) -> bool:
        self.logger.error(
            "Revocation cache unavailable, treating token as not revoked",
            token_id=token_id,
            error=str(error)
        )
        self.metrics.increment_counter("revocation_check_errors_total")
        return False

    async def revoke(self, token_id: Optional[str], ttl_seconds: int) -> bool:
        """Write a revocation marker that expires after ``ttl_seconds``."""
        if token_id is None or not token_id.strip():
            return False
        if ttl_seconds <= 0:
            self.logger.debug("Skipping revocation of already expired token", token_id=token_id)
            return False

        await self.redis.set(self._key(token_id), "revoked", ex=int(ttl_seconds))
        self.logger.info("Token blacklisted", token_id=token_id, expiry_seconds=ttl_seconds)
        return True

    async def revoke_claims(self, token_id: str, claims: Mapping[str, Any]) -> bool:
        """Revoke a token for the rest of its lifetime, taken from its ``exp`` claim."""
        expiry = claims.get("exp")
        if not isinstance(expiry, (int, float)) or isinstance(expiry, bool):
            return False
        return await self.revoke(token_id, int(expiry - time.time()))
