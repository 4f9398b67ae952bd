"""
Failure classification shared by the circuit breaker and retry controls.
"""

import asyncio
from enum import Enum

import httpx

from shared.errors import ResilienceError


class Outcome(Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    # Rejected by another resilience control, says nothing about the downstream
    IGNORED = "ignored"


def is_server_error(status_code: int) -> bool:
    return 500 <= status_code < 600


def is_recordable_failure(exc: BaseException) -> bool:
    """Connection errors, timeouts and 5xx responses count as failures; 4xx do not."""
    if isinstance(exc, httpx.HTTPStatusError):
        return is_server_error(exc.response.status_code)
    if isinstance(exc, (httpx.TransportError, asyncio.TimeoutError, ConnectionError, TimeoutError)):
        return True
    return False


def classify(exc: BaseException) -> Outcome:
    if isinstance(exc, ResilienceError):
        return Outcome.IGNORED
    if is_recordable_failure(exc):
        return Outcome.FAILURE
    return Outcome.SUCCESS
