"""
Per-destination resilience layers.

A ``ResilienceLayer`` composes the three controls around a call in a fixed
order, outermost first::

    circuit breaker -> retry -> rate limiter -> network call

so every retry attempt re-enters the rate limiter and the breaker only sees
the final outcome of the retried call.
"""

import functools
import threading
from typing import Any, Awaitable, Callable, Dict, Optional

from shared.config import HttpClientSettings, ServiceSettings
from shared.logging import get_logger
from shared.metrics import MetricsCollector, get_metrics_collector
from .circuit_breaker import CircuitBreaker
from .rate_limiter import RateLimiter
from .retry import Retry


class ResilienceLayer:
    """Circuit breaker, retry and rate limiter for one destination.

    A control that is ``None`` is disabled and adds nothing to the call path.
    """

    def __init__(self,
                 name: str,
                 circuit_breaker: Optional[CircuitBreaker] = None,
                 retry: Optional[Retry] = None,
                 rate_limiter: Optional[RateLimiter] = None):
        self.name = name
        self.circuit_breaker = circuit_breaker
        self.retry = retry
        self.rate_limiter = rate_limiter

    @classmethod
    def from_settings(cls, settings: ServiceSettings, metrics: Optional[MetricsCollector] = None) -> "ResilienceLayer":
        name = settings.name
        cb_config = settings.circuit_breaker
        retry_config = settings.retry
        rl_config = settings.rate_limiter

        circuit_breaker = None
        if cb_config.enabled:
            circuit_breaker = CircuitBreaker(
                name,
                failure_rate_threshold=cb_config.failure_rate_threshold,
                wait_duration_in_open_state=cb_config.wait_duration_in_open_state.total_seconds(),
                sliding_window_size=cb_config.sliding_window_size,
                minimum_number_of_calls=cb_config.minimum_calls,
                permitted_calls_in_half_open_state=cb_config.permitted_calls_in_half_open_state,
                metrics=metrics,
            )

        retry = None
        if retry_config.enabled:
            retry = Retry(
                name,
                max_attempts=retry_config.max_attempts,
                wait_duration=retry_config.wait_duration.total_seconds(),
                metrics=metrics,
            )

        rate_limiter = None
        if rl_config.enabled:
            rate_limiter = RateLimiter(
                name,
                limit_for_period=rl_config.limit_for_period,
                limit_refresh_period=rl_config.limit_refresh_period.total_seconds(),
                timeout_duration=rl_config.timeout_duration.total_seconds(),
                metrics=metrics,
            )

        return cls(name, circuit_breaker=circuit_breaker, retry=retry, rate_limiter=rate_limiter)

    async def execute(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """Run ``func`` through the enabled controls."""
        call = functools.partial(func, *args, **kwargs)
        if self.rate_limiter is not None:
            call = functools.partial(self.rate_limiter.call, call)
        if self.retry is not None:
            call = functools.partial(self.retry.call, call)
        if self.circuit_breaker is not None:
            call = functools.partial(self.circuit_breaker.call, call)
        return await call()

    def get_state(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "circuit_breaker": self.circuit_breaker.get_state() if self.circuit_breaker else None,
            "retry": {"max_attempts": self.retry.max_attempts} if self.retry else None,
            "rate_limiter": self.rate_limiter.get_state() if self.rate_limiter else None,
        }


class ResilienceRegistry:
    """Owns one ResilienceLayer per destination name, created on first use."""

    def __init__(self,
                 settings: Optional[HttpClientSettings] = None,
                 metrics: Optional[MetricsCollector] = None):
        self.settings = settings or HttpClientSettings()
        self.metrics = metrics or get_metrics_collector()
        self.layers: Dict[str, ResilienceLayer] = {}
        self._lock = threading.Lock()
        self.logger = get_logger("resilience_registry")

    def get_layer(self, name: str) -> ResilienceLayer:
        """Get or create the resilience layer for a destination."""
        layer = self.layers.get(name)
        if layer is not None:
            return layer

        with self._lock:
            layer = self.layers.get(name)
            if layer is None:
                service_settings = self.settings.for_service(name)
                layer = ResilienceLayer.from_settings(service_settings, self.metrics)
                self.layers[name] = layer
                self.logger.info(
                    "Created resilience layer",
                    service=name,
                    circuit_breaker=layer.circuit_breaker is not None,
                    retry=layer.retry is not None,
                    rate_limiter=layer.rate_limiter is not None,
                )
        return layer

    def get_all_states(self) -> Dict[str, Dict[str, Any]]:
        """Get states of all resilience layers."""
        return {name: layer.get_state() for name, layer in list(self.layers.items())}
