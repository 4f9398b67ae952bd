"""
Shared utilities for the Access Guard libraries.

This package aggregates common building blocks consumed by ``http_client``
and ``jwt_validation``:

- config: Settings via pydantic-settings
- logging: Structured logging with request/user/tenant correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- periodic: Repeating background tasks

Do not import from ``http_client`` or ``jwt_validation`` into shared/.
"""
