"""Structured logging: correlation ids plus a redaction pass for share secrets."""

from __future__ import annotations

import logging
import uuid
from contextvars import ContextVar
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from medishare.settings import Settings

__all__ = [
    "REDACTED",
    "configure_from_settings",
    "configure_logging",
    "correlation_id_var",
    "get_logger",
    "new_correlation_id",
    "redact_secrets",
]

REDACTED = "[redacted]"

# Keys that must never reach a log sink in clear
_SECRET_KEYS = frozenset(
    {"token", "raw_token", "token_hash", "ip", "user_agent", "session", "x-patient-session"}
)

correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="")


def new_correlation_id() -> str:
    """Generate and set a new correlation ID for the current context."""
    cid = str(uuid.uuid4())
    correlation_id_var.set(cid)
    return cid


def _add_correlation_id(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    cid = correlation_id_var.get("")
    if cid:
        event_dict["correlation_id"] = cid
    return event_dict


def redact_secrets(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Replace raw tokens, hashes and client identifiers with a marker."""
    for key in _SECRET_KEYS.intersection(event_dict):
        event_dict[key] = REDACTED
    return event_dict


def configure_logging(*, json_output: bool = True, level: str = "INFO") -> None:
    """Configure structlog for the service.

    Args:
        json_output: True for JSON lines (production), False for console (dev).
        level: Log level name, e.g. ``"INFO"``.
    """
    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        _add_correlation_id,
        redact_secrets,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    processors.append(
        structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(level.upper())
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def configure_from_settings(settings: Settings) -> None:
    configure_logging(json_output=settings.log_json, level=settings.log_level)


def get_logger(**kwargs: Any) -> structlog.BoundLogger:
    """Get a bound logger with optional initial context."""
    return structlog.get_logger(**kwargs)  # type: ignore[no-any-return]
