"""
Tests for shared errors, metrics and logging context.
"""

import pytest

from shared.errors import (
    AccessGuardException,
    CircuitOpenError,
    FetchError,
    InvalidSignatureError,
    RateLimitedError,
    ResilienceError,
    ResponseTooLargeError,
    TokenRevokedError,
    TokenVerificationError,
)
from shared.logging import (
    add_correlation_context,
    clear_context,
    get_user_context,
    set_request_id,
    set_user_context,
)
from shared.metrics import MetricsCollector


class TestErrors:
    """Tests for the error taxonomy."""

    @pytest.mark.parametrize("error, status, code", [
        (InvalidSignatureError(), 401, "INVALID_SIGNATURE"),
        (TokenRevokedError(), 401, "TOKEN_REVOKED"),
        (CircuitOpenError("identity-service"), 503, "CIRCUIT_OPEN"),
        (RateLimitedError("identity-service"), 429, "RATE_LIMITED"),
        (FetchError(), 502, "JWKS_FETCH_FAILED"),
        (ResponseTooLargeError("identity-service", 10), 502, "RESPONSE_TOO_LARGE"),
    ])
    def test_status_and_code(self, error, status, code):
        assert isinstance(error, AccessGuardException)
        assert error.status_code == status
        assert error.code == code

    def test_resilience_errors_are_distinct_from_verification_errors(self):
        error = CircuitOpenError("identity-service", {"state": "open"})

        assert isinstance(error, ResilienceError)
        assert not isinstance(error, TokenVerificationError)
        assert error.details == {"service": "identity-service", "state": "open"}

    def test_to_response(self):
        response = InvalidSignatureError("bad", {"kid": "k1"}).to_response()

        assert response.model_dump() == {"code": "INVALID_SIGNATURE", "message": "bad", "details": {"kid": "k1"}}


class TestMetricsCollector:
    """Tests for MetricsCollector."""

    def test_collectors_are_independent(self):
        first = MetricsCollector()
        second = MetricsCollector()

        first.record_token_validation("valid")

        assert first.sample("token_validations_total", outcome="valid") == 1
        assert second.sample("token_validations_total", outcome="valid") is None

    def test_circuit_state_gauge(self):
        metrics = MetricsCollector()

        metrics.record_circuit_state("identity-service", "half_open")

        assert metrics.sample("circuit_breaker_state", service="identity-service") == 2

    def test_time_operation(self):
        metrics = MetricsCollector()

        with metrics.time_operation("outbound_request_duration_seconds", service="identity-service"):
            pass

        assert metrics.sample("outbound_request_duration_seconds_count", service="identity-service") == 1


class TestLoggingContext:
    """Tests for correlation context helpers."""

    def test_user_context_round_trip(self):
        set_request_id("req-1")
        set_user_context(user_id="user-1", tenant_id="tenant-1")

        assert get_user_context() == {"user_id": "user-1", "tenant_id": "tenant-1"}

        clear_context()
        assert get_user_context() == {"user_id": None, "tenant_id": None}

    def test_correlation_fields_added_to_events(self):
        set_request_id("req-1")
        set_user_context(user_id="user-1", tenant_id="tenant-1")

        event = add_correlation_context(None, "info", {"event": "Request authenticated"})

        assert event["request_id"] == "req-1"
        assert event["user_id"] == "user-1"
        assert event["tenant_id"] == "tenant-1"
        clear_context()
