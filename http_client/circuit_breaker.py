"""
Circuit breaker pattern implementation for resilient service calls.

Count-based: the closed state evaluates the failure rate over the last N
recorded calls; the half-open state admits a fixed number of trial calls and
decides from their failure rate whether to close or reopen.
"""

import threading
import time
from collections import deque
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional

from shared.errors import CircuitOpenError
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from .failures import Outcome, classify


class CircuitBreakerState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"      # Normal operation
    OPEN = "open"          # Failing, requests blocked
    HALF_OPEN = "half_open"  # Testing if service recovered


class CircuitBreaker:
    """Circuit breaker for one destination."""

    def __init__(self,
                 name: str,
                 failure_rate_threshold: float = 50.0,
                 wait_duration_in_open_state: float = 60.0,
                 sliding_window_size: int = 100,
                 minimum_number_of_calls: Optional[int] = None,
                 permitted_calls_in_half_open_state: int = 10,
                 metrics: Optional[MetricsCollector] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.name = name
        self.failure_rate_threshold = failure_rate_threshold
        self.wait_duration_in_open_state = wait_duration_in_open_state
        self.sliding_window_size = sliding_window_size
        self.minimum_number_of_calls = min(minimum_number_of_calls or sliding_window_size, sliding_window_size)
        self.permitted_calls_in_half_open_state = permitted_calls_in_half_open_state
        self.metrics = metrics
        self.logger = get_logger(f"circuit_breaker.{name}")
        self._clock = clock

        self._lock = threading.Lock()
        self._state = CircuitBreakerState.CLOSED
        # Bumped on every transition; outcomes of calls admitted under an older
        # generation are dropped.
        self._generation = 0
        self._window: Deque[bool] = deque(maxlen=sliding_window_size)
        self._opened_at = 0.0
        self._half_open_issued = 0
        self._half_open_outcomes: List[bool] = []

        if self.metrics:
            self.metrics.record_circuit_state(self.name, self._state.value)

    @property
    def state(self) -> CircuitBreakerState:
        with self._lock:
            self._maybe_half_open()
            return self._state

    def _transition(self, state: CircuitBreakerState) -> None:
        previous = self._state
        self._state = state
        self._generation += 1
        if state == CircuitBreakerState.OPEN:
            self._opened_at = self._clock()
        elif state == CircuitBreakerState.HALF_OPEN:
            self._half_open_issued = 0
            self._half_open_outcomes = []
        elif state == CircuitBreakerState.CLOSED:
            self._window.clear()

        log = self.logger.warning if state == CircuitBreakerState.OPEN else self.logger.info
        log("Circuit breaker state transition", from_state=previous.value, to_state=state.value)
        if self.metrics:
            self.metrics.record_circuit_state(self.name, state.value)

    def _maybe_half_open(self) -> None:
        if (self._state == CircuitBreakerState.OPEN
                and self._clock() - self._opened_at >= self.wait_duration_in_open_state):
            self._transition(CircuitBreakerState.HALF_OPEN)

    def acquire_permission(self) -> int:
        """Admit a call or raise CircuitOpenError. Returns the admitting generation."""
        with self._lock:
            self._maybe_half_open()
            if self._state == CircuitBreakerState.CLOSED:
                return self._generation
            if (self._state == CircuitBreakerState.HALF_OPEN
                    and self._half_open_issued < self.permitted_calls_in_half_open_state):
                self._half_open_issued += 1
                return self._generation
            state = self._state

        if self.metrics:
            self.metrics.increment_counter("circuit_breaker_calls_total", service=self.name, outcome="rejected")
        raise CircuitOpenError(self.name, {"state": state.value})

    def on_result(self, generation: int, outcome: Outcome) -> None:
        """Record the final outcome of an admitted call."""
        if self.metrics:
            self.metrics.increment_counter("circuit_breaker_calls_total", service=self.name, outcome=outcome.value)

        with self._lock:
            if generation != self._generation:
                return

            if outcome == Outcome.IGNORED:
                if self._state == CircuitBreakerState.HALF_OPEN:
                    self._half_open_issued -= 1
                return

            failed = outcome == Outcome.FAILURE
            if self._state == CircuitBreakerState.CLOSED:
                self._window.append(failed)
                if len(self._window) >= self.minimum_number_of_calls:
                    if self._failure_rate(self._window) >= self.failure_rate_threshold:
                        self.logger.warning(
                            "Circuit breaker opened due to failure rate",
                            failure_rate=self._failure_rate(self._window),
                            threshold=self.failure_rate_threshold,
                            window=len(self._window),
                        )
                        self._transition(CircuitBreakerState.OPEN)
            elif self._state == CircuitBreakerState.HALF_OPEN:
                self._half_open_outcomes.append(failed)
                if len(self._half_open_outcomes) >= self.permitted_calls_in_half_open_state:
                    if self._failure_rate(self._half_open_outcomes) >= self.failure_rate_threshold:
                        self._transition(CircuitBreakerState.OPEN)
                    else:
                        self._transition(CircuitBreakerState.CLOSED)

    @staticmethod
    def _failure_rate(outcomes) -> float:
        if not outcomes:
            return 0.0
        return 100.0 * sum(1 for failed in outcomes if failed) / len(outcomes)

    async def call(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """Execute function with circuit breaker protection."""
        generation = self.acquire_permission()
        try:
            result = await func(*args, **kwargs)
        except BaseException as e:
            self.on_result(generation, classify(e) if isinstance(e, Exception) else Outcome.IGNORED)
            raise
        self.on_result(generation, Outcome.SUCCESS)
        return result

    def get_state(self) -> Dict[str, Any]:
        """Get current circuit breaker state."""
        with self._lock:
            self._maybe_half_open()
            window = list(self._window)
            return {
                "name": self.name,
                "state": self._state.value,
                "buffered_calls": len(window),
                "failed_calls": sum(1 for failed in window if failed),
                "failure_rate": self._failure_rate(window),
                "failure_rate_threshold": self.failure_rate_threshold,
                "wait_duration_in_open_state": self.wait_duration_in_open_state,
                "half_open_issued": self._half_open_issued,
            }

    def is_open(self) -> bool:
        """Check if circuit breaker is in OPEN state."""
        return self.state == CircuitBreakerState.OPEN
