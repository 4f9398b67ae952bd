"""
Resilient outbound HTTP calls: circuit breaker, retry and rate limiting per
destination service, attached to httpx clients.
"""

from .circuit_breaker import CircuitBreaker, CircuitBreakerState
from .failures import Outcome, classify, is_recordable_failure
from .rate_limiter import RateLimiter
from .registry import ResilienceLayer, ResilienceRegistry
from .retry import Retry
from .transport import ResilienceInterceptor, ResilientTransport

__all__ = [
    "CircuitBreaker",
    "CircuitBreakerState",
    "Outcome",
    "RateLimiter",
    "ResilienceInterceptor",
    "ResilienceLayer",
    "ResilienceRegistry",
    "ResilientTransport",
    "Retry",
    "classify",
    "is_recordable_failure",
]
