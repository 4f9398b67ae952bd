"""
Shared metrics for the Access Guard libraries.
"""

from typing import Dict, Any, Optional
import threading
from contextlib import contextmanager
import time

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram


CIRCUIT_STATE_VALUES = {"closed": 0, "open": 1, "half_open": 2}


class MetricsCollector:
    """Prometheus metrics for token verification and resilient calls.

    Each collector owns its registry so several instances can coexist in one
    process (tests, embedded use) without duplicate registration errors.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry if registry is not None else CollectorRegistry()
        self._metrics: Dict[str, Any] = {}
        self._setup_metrics()

    def _setup_metrics(self):
        """Set up verification and resilience metrics."""
        self._setup_auth_metrics()
        self._setup_resilience_metrics()

    def _setup_auth_metrics(self):
        self._metrics["token_validations_total"] = Counter(
            "token_validations_total",
            "Total token validations",
            ["outcome"],
            registry=self.registry
        )

        self._metrics["jwks_refresh_total"] = Counter(
            "jwks_refresh_total",
            "Total JWKS refreshes",
            ["status"],
            registry=self.registry
        )

        self._metrics["jwks_refresh_duration_seconds"] = Histogram(
            "jwks_refresh_duration_seconds",
            "JWKS refresh duration in seconds",
            registry=self.registry
        )

        self._metrics["jwks_cached_keys"] = Gauge(
            "jwks_cached_keys",
            "Number of verification keys currently trusted",
            registry=self.registry
        )

        self._metrics["revocation_check_errors_total"] = Counter(
            "revocation_check_errors_total",
            "Revocation cache errors treated as not revoked",
            registry=self.registry
        )

    def _setup_resilience_metrics(self):
        self._metrics["circuit_breaker_state"] = Gauge(
            "circuit_breaker_state",
            "Circuit breaker state (0=closed, 1=open, 2=half_open)",
            ["service"],
            registry=self.registry
        )

        self._metrics["circuit_breaker_calls_total"] = Counter(
            "circuit_breaker_calls_total",
            "Calls observed by the circuit breaker",
            ["service", "outcome"],
            registry=self.registry
        )

        self._metrics["retry_attempts_total"] = Counter(
            "retry_attempts_total",
            "Retried attempts",
            ["service"],
            registry=self.registry
        )

        self._metrics["rate_limit_rejections_total"] = Counter(
            "rate_limit_rejections_total",
            "Calls rejected by the rate limiter",
            ["service"],
            registry=self.registry
        )

        self._metrics["outbound_request_duration_seconds"] = Histogram(
            "outbound_request_duration_seconds",
            "Outbound request attempt duration in seconds",
            ["service"],
            registry=self.registry
        )

    def get_metric(self, name: str):
        """Get a metric by name."""
        return self._metrics.get(name)

    def record_token_validation(self, outcome: str):
        self._metrics["token_validations_total"].labels(outcome=outcome).inc()

    def record_jwks_refresh(self, status: str, duration: float, keys_cached: Optional[int] = None):
        self._metrics["jwks_refresh_total"].labels(status=status).inc()
        self._metrics["jwks_refresh_duration_seconds"].observe(duration)
        if keys_cached is not None:
            self._metrics["jwks_cached_keys"].set(keys_cached)

    def record_circuit_state(self, service: str, state: str):
        self._metrics["circuit_breaker_state"].labels(service=service).set(CIRCUIT_STATE_VALUES[state])

    @contextmanager
    def time_operation(self, operation_name: str, **labels):
        """Context manager to time an operation."""
        start_time = time.time()
        try:
            yield
        finally:
            duration = time.time() - start_time
            if operation_name in self._metrics:
                metric = self._metrics[operation_name]
                (metric.labels(**labels) if labels else metric).observe(duration)

    def increment_counter(self, metric_name: str, **labels):
        """Increment a counter metric."""
        if metric_name in self._metrics:
            metric = self._metrics[metric_name]
            (metric.labels(**labels) if labels else metric).inc()

    def sample(self, metric_name: str, **labels) -> Optional[float]:
        """Read back the current value of a sample."""
        return self.registry.get_sample_value(metric_name, labels or None)


_default_collector: Optional[MetricsCollector] = None
_default_lock = threading.Lock()


def get_metrics_collector() -> MetricsCollector:
    """Get the process-wide metrics collector."""
    global _default_collector
    with _default_lock:
        if _default_collector is None:
            _default_collector = MetricsCollector()
        return _default_collector
