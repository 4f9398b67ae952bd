"""
Shared error handling for the Access Guard libraries.

Every failure raised by the token-verification and resilient-call pipelines
derives from ``AccessGuardException`` and carries a stable ``code`` plus the
HTTP status an error boundary should answer with.
"""

from typing import Dict, Any, Optional

from pydantic import BaseModel, Field

from shared.logging import get_logger


class ErrorResponse(BaseModel):
    """Standard error response format."""

    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class AccessGuardException(Exception):
    """Base exception for Access Guard components."""

    status_code = 500

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(code=self.code, message=self.message, details=self.details)


# Token verification failures

class TokenVerificationError(AccessGuardException):
    """A presented bearer token was rejected."""

    status_code = 401
    default_code = "TOKEN_INVALID"
    default_message = "Token verification failed"

    def __init__(self, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(self.default_code, message or self.default_message, details)


class MalformedTokenError(TokenVerificationError):
    default_code = "MALFORMED_TOKEN"
    default_message = "Invalid JWT token format"


class MissingKeyIdError(TokenVerificationError):
    default_code = "MISSING_KEY_ID"
    default_message = "JWT token missing Key ID (kid)"


class KeyNotFoundError(TokenVerificationError):
    default_code = "KEY_NOT_FOUND"
    default_message = "Signing key not found"


class InvalidSignatureError(TokenVerificationError):
    default_code = "INVALID_SIGNATURE"
    default_message = "Invalid JWT signature"


class MalformedClaimsError(TokenVerificationError):
    default_code = "MALFORMED_CLAIMS"
    default_message = "Invalid JWT claims format"


class TokenExpiredError(TokenVerificationError):
    default_code = "TOKEN_EXPIRED"
    default_message = "JWT token has expired"


class TokenRevokedError(TokenVerificationError):
    default_code = "TOKEN_REVOKED"
    default_message = "JWT token has been revoked"


class MissingUserIdError(TokenVerificationError):
    default_code = "MISSING_USER_ID"
    default_message = "JWT token missing user ID"


class MissingTenantIdError(TokenVerificationError):
    default_code = "MISSING_TENANT_ID"
    default_message = "JWT token missing tenant ID"


# Resilience failures

class ResilienceError(AccessGuardException):
    """A call was rejected by a resilience control before reaching the network."""

    status_code = 503

    def __init__(self, code: str, service: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.service = service
        super().__init__(code, message, {"service": service, **(details or {})})


class CircuitOpenError(ResilienceError):
    """Raised when the circuit breaker for a destination is open."""

    def __init__(self, service: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            "CIRCUIT_OPEN",
            service,
            f"Circuit breaker '{service}' is OPEN - blocking call",
            details,
        )


class RateLimitedError(ResilienceError):
    """Raised when no rate limiter permit became available in time."""

    status_code = 429

    def __init__(self, service: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            "RATE_LIMITED",
            service,
            f"Rate limit exceeded for '{service}'",
            details,
        )


# Downstream / key refresh failures

class FetchError(AccessGuardException):
    """Network or decode failure while refreshing the verification keys."""

    status_code = 502

    def __init__(self, message: str = "Failed to fetch JWKS", details: Optional[Dict[str, Any]] = None):
        super().__init__("JWKS_FETCH_FAILED", message, details)


class ResponseTooLargeError(AccessGuardException):
    """Downstream response exceeded the configured buffer size."""

    status_code = 502

    def __init__(self, service: str, limit: int):
        super().__init__(
            "RESPONSE_TOO_LARGE",
            f"{service}: response exceeded {limit} bytes",
            {"service": service, "limit": limit},
        )


def install_exception_handlers(app) -> None:
    """Register a handler that renders AccessGuardException as ErrorResponse."""
    from fastapi import Request
    from fastapi.responses import JSONResponse

    logger = get_logger("errors.handler")

    @app.exception_handler(AccessGuardException)
    async def access_guard_exception_handler(request: Request, exc: AccessGuardException):
        logger.warning(
            "Request rejected",
            code=exc.code,
            message=exc.message,
            path=request.url.path,
        )
        headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, TokenVerificationError) else None
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_response().model_dump(),
            headers=headers,
        )
