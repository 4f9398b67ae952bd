"""
Shared logging configuration for the Access Guard libraries.

Log events are structlog dicts. Correlation fields (request, user, tenant)
live in context variables so every event emitted while handling a request
carries them without explicit binding.
"""

import sys
import structlog
import logging
import uuid
from typing import Any, Dict, Optional
from contextvars import ContextVar

# Context variables for correlation IDs
request_id_var: ContextVar[Optional[str]] = ContextVar('request_id', default=None)
user_id_var: ContextVar[Optional[str]] = ContextVar('user_id', default=None)
tenant_id_var: ContextVar[Optional[str]] = ContextVar('tenant_id', default=None)

_CORRELATION_VARS = {
    "request_id": request_id_var,
    "user_id": user_id_var,
    "tenant_id": tenant_id_var,
}


def configure_logging(service_name: str, log_level: str = "info", json_logs: bool = True) -> None:
    """Configure structured logging for a process embedding these libraries.

    ``json_logs=False`` switches to the human-readable console renderer for
    local development.
    """
    renderer = structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            _component_context(service_name),
            add_correlation_context,
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )


def configure_from_config(config) -> None:
    """Configure logging from a ``BaseConfig``; JSON everywhere but local."""
    configure_logging(config.service_name, config.log_level, json_logs=config.env != "local")


def _component_context(service_name: str):
    def add_component_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
        # "auth.jwks" -> component "auth"; "circuit_breaker.identity-service" -> "circuit_breaker"
        event_dict.setdefault("service", service_name)
        logger_name = event_dict.get("logger", "")
        if "." in logger_name:
            event_dict["component"] = logger_name.split(".")[0]
        return event_dict

    return add_component_context


def add_correlation_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Add request, user and tenant IDs bound to the current context."""
    for field, var in _CORRELATION_VARS.items():
        value = var.get()
        if value:
            event_dict.setdefault(field, value)
    return event_dict


def set_request_id(request_id: Optional[str] = None) -> str:
    """Set request ID in context."""
    if request_id is None:
        request_id = str(uuid.uuid4())
    request_id_var.set(request_id)
    return request_id


def set_user_context(user_id: Optional[str] = None, tenant_id: Optional[str] = None):
    """Bind the authenticated user and tenant to the current context."""
    if user_id:
        user_id_var.set(user_id)
    if tenant_id:
        tenant_id_var.set(tenant_id)


def get_user_context() -> Dict[str, Optional[str]]:
    return {"user_id": user_id_var.get(), "tenant_id": tenant_id_var.get()}


def clear_context():
    """Clear all context variables."""
    for var in _CORRELATION_VARS.values():
        var.set(None)


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)
