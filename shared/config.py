"""
Shared configuration management for the Access Guard libraries.
"""

from datetime import timedelta
from typing import Dict, Optional

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="ACCESS_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    env: str = "local"
    log_level: str = "info"
    service_name: str = "access-guard"


class CircuitBreakerSettings(BaseModel):
    """Circuit breaker settings for a destination."""

    enabled: bool = True
    # Circuit opens when the failure rate reaches this percentage
    failure_rate_threshold: float = Field(default=50.0, gt=0, le=100)
    wait_duration_in_open_state: timedelta = timedelta(seconds=60)
    sliding_window_size: int = Field(default=100, ge=1)
    # Defaults to sliding_window_size
    minimum_number_of_calls: Optional[int] = Field(default=None, ge=1)
    permitted_calls_in_half_open_state: int = Field(default=10, ge=1)

    @model_validator(mode="after")
    def check_minimum_calls(self) -> "CircuitBreakerSettings":
        if self.minimum_calls > self.sliding_window_size:
            raise ValueError(
                f"minimum_number_of_calls ({self.minimum_number_of_calls}) cannot exceed "
                f"sliding_window_size ({self.sliding_window_size})"
            )
        return self

    @property
    def minimum_calls(self) -> int:
        return self.minimum_number_of_calls or self.sliding_window_size


class RetrySettings(BaseModel):
    """Retry settings for a destination."""

    enabled: bool = True
    max_attempts: int = Field(default=3, ge=1)
    wait_duration: timedelta = timedelta(seconds=1)


class RateLimiterSettings(BaseModel):
    """Rate limiter settings for a destination."""

    enabled: bool = True
    limit_for_period: int = Field(default=100, ge=1)
    limit_refresh_period: timedelta = timedelta(minutes=1)
    # How long a caller may wait for a permit
    timeout_duration: timedelta = timedelta(seconds=5)


class ServiceOverrides(BaseModel):
    """Per-destination overrides. Each present section replaces the default one."""

    timeout: Optional[timedelta] = None
    circuit_breaker: Optional[CircuitBreakerSettings] = None
    retry: Optional[RetrySettings] = None
    rate_limiter: Optional[RateLimiterSettings] = None


class ServiceSettings(BaseModel):
    """Fully resolved settings for one destination."""

    name: str
    response_timeout: timedelta
    circuit_breaker: CircuitBreakerSettings
    retry: RetrySettings
    rate_limiter: RateLimiterSettings


class HttpClientSettings(BaseSettings):
    """Outbound HTTP client settings: timeouts and resilience controls.

    Durations accept seconds or ISO-8601 strings, e.g.::

        HTTP_CLIENT_CONNECT_TIMEOUT=PT2S
        HTTP_CLIENT_RETRY__MAX_ATTEMPTS=5
        HTTP_CLIENT_SERVICES='{"identity-service": {"retry": {"max_attempts": 2}}}'
    """

    model_config = SettingsConfigDict(
        env_prefix="HTTP_CLIENT_",
        env_nested_delimiter="__",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    default_timeout: timedelta = timedelta(seconds=5)
    connect_timeout: timedelta = timedelta(seconds=2)
    read_timeout: timedelta = timedelta(seconds=5)
    write_timeout: timedelta = timedelta(seconds=5)
    response_timeout: timedelta = timedelta(seconds=10)
    max_response_bytes: int = Field(default=1024 * 1024, ge=1)

    circuit_breaker: CircuitBreakerSettings = Field(default_factory=CircuitBreakerSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    rate_limiter: RateLimiterSettings = Field(default_factory=RateLimiterSettings)

    services: Dict[str, ServiceOverrides] = Field(default_factory=dict)

    def for_service(self, name: str) -> ServiceSettings:
        """Resolve the effective settings for a destination service."""
        overrides = self.services.get(name) or ServiceOverrides()
        return ServiceSettings(
            name=name,
            response_timeout=overrides.timeout or self.response_timeout,
            circuit_breaker=overrides.circuit_breaker or self.circuit_breaker,
            retry=overrides.retry or self.retry,
            rate_limiter=overrides.rate_limiter or self.rate_limiter,
        )


class JwtValidationSettings(BaseSettings):
    """JWT validation settings: JWKS source, refresh cadence, revocation cache."""

    model_config = SettingsConfigDict(
        env_prefix="JWT_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    identity_service_url: str = "http://localhost:8081"
    # Destination name used for resilience controls
    identity_service_name: str = "identity-service"
    jwks_endpoint: str = "/.well-known/jwks.json"
    jwks_cache_refresh_interval: timedelta = timedelta(minutes=5)

    # Issuer mismatches are logged, never rejected
    issuer: Optional[str] = None

    redis_url: str = "redis://localhost:6379/0"
    blacklist_prefix: str = "jwt:blacklist:"


def get_config() -> BaseConfig:
    """Get the base configuration."""
    return BaseConfig()


def get_http_client_settings() -> HttpClientSettings:
    """Get outbound HTTP client settings from the environment."""
    return HttpClientSettings()


def get_jwt_validation_settings() -> JwtValidationSettings:
    """Get JWT validation settings from the environment."""
    return JwtValidationSettings()
