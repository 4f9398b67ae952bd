"""
Shared fixtures.
"""

from datetime import timedelta

import pytest

from shared.config import HttpClientSettings, JwtValidationSettings, RetrySettings
from shared.metrics import MetricsCollector
from shared.test_helpers import generate_signing_key


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def metrics():
    """Fresh metrics collector with its own registry."""
    return MetricsCollector()


@pytest.fixture(scope="session")
def signing_key():
    """RSA key the fake identity service signs with."""
    return generate_signing_key("rsa-key-1")


@pytest.fixture(scope="session")
def second_signing_key():
    return generate_signing_key("rsa-key-2")


@pytest.fixture
def http_settings():
    """Client settings without retry waits."""
    return HttpClientSettings(retry=RetrySettings(wait_duration=timedelta(0)))


@pytest.fixture
def jwt_settings():
    return JwtValidationSettings(
        identity_service_url="http://identity",
        issuer="identity-service",
    )
