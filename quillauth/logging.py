"""
Structured logging configuration using structlog.

Standardized log format:
{
    "ts": "2026-10-19T04:30:00.123456Z",
    "level": "info",
    "service": "quillauth",
    "correlation_id": "uuid-v4",
    "user_id": "uuid-v4",
    "event": "auth.login.succeeded",
    "module": "quillauth.services.credentials.lifecycle",
    "function": "login",
    "line": 42,
    ...additional context...
}
"""
import structlog
import logging
from typing import Any

SENSITIVE_KEYS = ("password", "token", "secret", "authorization")

_service_name = "quillauth"


def add_service_name(logger: Any, method_name: str, event_dict: dict) -> dict:
    """Add service name to all log entries."""
    event_dict["service"] = _service_name
    return event_dict


def rename_callsite_keys(logger: Any, method_name: str, event_dict: dict) -> dict:
    """Rename structlog's call site keys to module/function/line."""
    if "func_name" in event_dict:
        event_dict["function"] = event_dict.pop("func_name")
    if "lineno" in event_dict:
        event_dict["line"] = event_dict.pop("lineno")
    return event_dict


def mask_secrets(logger: Any, method_name: str, event_dict: dict) -> dict:
    """Mask values whose key looks like a credential."""
    for key in list(event_dict.keys()):
        if key == "event":
            continue
        if any(marker in key.lower() for marker in SENSITIVE_KEYS):
            event_dict[key] = "***"
    return event_dict


def redact_email(email: str) -> str:
    """Shorten an email address for log output."""
    if "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


def setup_logging(json_output: bool = True, service_name: str = "quillauth", level: str = "INFO"):
    """
    Configure structured logging with standardized fields.

    Args:
        json_output: If True, output JSON logs. If False, use console format.
        service_name: Name of the service (for multi-service deployments).
        level: Minimum log level name.
    """
    global _service_name
    _service_name = service_name
    log_level = logging.getLevelName(level.upper())
    if not isinstance(log_level, int):
        log_level = logging.INFO

    shared_processors = [
        # correlation_id and user_id are bound by middleware / access gate
        structlog.contextvars.merge_contextvars,
        add_service_name,
        structlog.processors.TimeStamper(fmt="iso", key="ts"),
        structlog.processors.add_log_level,
        structlog.processors.CallsiteParameterAdder(
            [
                structlog.processors.CallsiteParameter.MODULE,
                structlog.processors.CallsiteParameter.FUNC_NAME,
                structlog.processors.CallsiteParameter.LINENO,
            ]
        ),
        rename_callsite_keys,
        mask_secrets,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if json_output:
        processors = shared_processors + [
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = shared_processors + [
            structlog.dev.ConsoleRenderer(),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        level=log_level,
    )

    # Silence uvicorn's default logging to avoid duplicate logs
    logging.getLogger("uvicorn.error").handlers = []
    logging.getLogger("uvicorn.access").handlers = []


def get_logger():
    """Get a configured structlog logger."""
    return structlog.get_logger()
