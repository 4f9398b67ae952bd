"""
Token verification service.

``TokenVerifier.verify`` runs the checks in a fixed order and stops at the
first failure:

1. parse the compact token
2. derive the token ID (``jti`` or a hash of the token)
3. revocation check, before any cryptography
4. key lookup by ``kid``, refreshing the JWKS once on a miss
5. signature verification
6. claims decode
7. expiry
8. issuer (logged, never rejected)
"""

import asyncio
import time
from typing import Any, Callable, Dict, Optional

from jose.exceptions import JOSEError
from pydantic import BaseModel

from shared.errors import (
    InvalidSignatureError,
    KeyNotFoundError,
    MalformedClaimsError,
    MissingKeyIdError,
    TokenExpiredError,
    TokenRevokedError,
    TokenVerificationError,
)
from shared.logging import get_logger
from shared.metrics import MetricsCollector, get_metrics_collector
from .jwks import KeyFetcher
from .parser import ParsedToken, extract_token_id, parse_token, strip_bearer
from .revocation import RevocationChecker


class TokenVerificationResponse(BaseModel):
    """Result object for callers that prefer not to handle exceptions."""
    valid: bool
    claims: Optional[Dict[str, Any]] = None
    code: Optional[str] = None
    error: Optional[str] = None


class TokenVerifier:
    """Verifies bearer tokens against the JWKS and the revocation cache."""

    def __init__(self,
                 key_fetcher: KeyFetcher,
                 revocation_checker: RevocationChecker,
                 issuer: Optional[str] = None,
                 metrics: Optional[MetricsCollector] = None,
                 clock: Callable[[], float] = time.time):
        self.key_fetcher = key_fetcher
        self.revocation_checker = revocation_checker
        self.issuer = issuer
        self.metrics = metrics or get_metrics_collector()
        self.logger = get_logger("auth.verifier")
        self._clock = clock

    async def start(self) -> None:
        """Load verification keys; the verifier is ready once this returns."""
        await self.key_fetcher.start()

    async def stop(self) -> None:
        await self.key_fetcher.stop()

    async def verify(self, token: str) -> Dict[str, Any]:
        """Verify ``token`` and return its claims, or raise TokenVerificationError."""
        try:
            claims = await self._verify(token)
        except TokenVerificationError as e:
            self.metrics.record_token_validation(e.code)
            raise
        self.metrics.record_token_validation("valid")
        return claims

    async def check(self, token: str) -> TokenVerificationResponse:
        try:
            claims = await self.verify(token)
        except TokenVerificationError as e:
            self.logger.warning("Token verification failed", code=e.code, error=e.message)
            return TokenVerificationResponse(valid=False, code=e.code, error=e.message)
        return TokenVerificationResponse(valid=True, claims=claims)

    async def _verify(self, token: str) -> Dict[str, Any]:
        parsed = parse_token(strip_bearer(token))

        token_id = extract_token_id(parsed)
        if await self.revocation_checker.is_revoked(token_id):
            self.logger.warning("Token is blacklisted (revoked)", token_id=token_id)
            raise TokenRevokedError(details={"token_id": token_id})

        key_id = parsed.header.key_id
        if key_id is None:
            raise MissingKeyIdError()

        key = await self.key_fetcher.get_key(key_id)
        if key is None:
            raise KeyNotFoundError(f"JWK key not found after refresh: {key_id}", {"kid": key_id})

        self._verify_signature(parsed, key)

        claims = parsed.claims()
        self._validate_expiry(claims)
        self._validate_issuer(claims)
        return claims

    def _verify_signature(self, parsed: ParsedToken, key) -> None:
        algorithm = parsed.header.algorithm
        if not key.accepts(algorithm):
            raise InvalidSignatureError(
                "JWT algorithm not allowed for key",
                {"kid": key.key_id, "alg": algorithm},
            )
        try:
            valid = key.verify(parsed.signing_input, parsed.signature(), algorithm)
        except (JOSEError, ValueError, TypeError) as e:
            self.logger.error("Error during signature verification", kid=key.key_id, error=str(e))
            raise InvalidSignatureError("JWT signature verification failed") from e
        if not valid:
            raise InvalidSignatureError()

    def _validate_expiry(self, claims: Dict[str, Any]) -> None:
        expiry = claims.get("exp")
        if expiry is None:
            return
        if isinstance(expiry, bool) or not isinstance(expiry, (int, float)):
            raise MalformedClaimsError("JWT exp claim must be numeric")
        if expiry <= self._clock():
            raise TokenExpiredError(details={"exp": expiry})

    def _validate_issuer(self, claims: Dict[str, Any]) -> None:
        if not self.issuer:
            return
        issuer = claims.get("iss")
        if issuer is not None and issuer != self.issuer:
            self.logger.warning("JWT token from unexpected issuer", expected=self.issuer, actual=issuer)


class BlockingTokenVerifier:
    """Synchronous facade for threaded callers.

    Runs the same ``TokenVerifier.verify`` coroutine on the event loop that
    owns the verifier and blocks the calling thread for the result. Must not
    be called from that loop's own thread.
    """

    def __init__(self, verifier: TokenVerifier, loop: asyncio.AbstractEventLoop,
                 timeout: Optional[float] = None):
        self.verifier = verifier
        self.loop = loop
        self.timeout = timeout

    def verify(self, token: str) -> Dict[str, Any]:
        future = asyncio.run_coroutine_threadsafe(self.verifier.verify(token), self.loop)
        return future.result(self.timeout)

    def check(self, token: str) -> TokenVerificationResponse:
        future = asyncio.run_coroutine_threadsafe(self.verifier.check(token), self.loop)
        return future.result(self.timeout)
