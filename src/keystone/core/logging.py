"""
Keystone Logging - structured logging for the ORM core.

Manifesto:
    An ORM hides the SQL it writes. When a statement fails, the rendered
    text and its bound parameters are the first thing anybody needs, so
    every execution path logs through one structlog configuration:

    - **Structures:** key/value events (``sql.failed sql=... params=...``)
    - **Flexes:** console output for development, JSON for production
    - **Correlates:** context binding for request or job identifiers

Architecture:
    ::

        configure_logging(level="DEBUG", json_format=False)
            ↓
        structlog processor chain:
          1. TimeStamper (iso)
          2. add_log_level / add_logger_name
          3. service metadata
          4. compact SQL text, clip long parameter values
          5. JSONRenderer | ConsoleRenderer

        logger = get_logger(__name__)
        logger.debug("sql.executed", sql=sql, params=params, elapsed_ms=0.4)

Examples:
    >>> from keystone.core.logging import configure_logging, get_logger
    >>> configure_logging(level="DEBUG", json_format=False)
    >>> logger = get_logger(__name__)
    >>> logger.info("relations.discovered", count=12)

Tags:
    logging, structlog, observability, keystone-core

Doc-Types:
    - API Reference
    - Observability Guide
"""

from __future__ import annotations

import logging
import re
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

if TYPE_CHECKING:
    from keystone.core.settings import KeystoneSettings

_SERVICE_NAME = "keystone"

# Parameter values longer than this are clipped in log output only.
MAX_PARAM_LENGTH = 200

_WHITESPACE = re.compile(r"\s+")


# =============================================================================
# Processors
# =============================================================================


def _add_service_metadata(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Add service-level metadata to all logs."""
    event_dict.setdefault("service.name", _SERVICE_NAME)
    return event_dict


def _compact_sql(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Render a multi-line ``sql`` field on one line."""
    sql = event_dict.get("sql")
    if isinstance(sql, str):
        event_dict["sql"] = _WHITESPACE.sub(" ", sql).strip()
    return event_dict


def _clip(value: Any) -> Any:
    if isinstance(value, bytes):
        value = value.hex()
    if isinstance(value, str) and len(value) > MAX_PARAM_LENGTH:
        return f"{value[:MAX_PARAM_LENGTH]}... ({len(value)} chars)"
    return value


def _clip_params(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Shorten long bound values so a blob never floods the log."""
    params = event_dict.get("params")
    if isinstance(params, dict):
        event_dict["params"] = {key: _clip(value) for key, value in params.items()}
    return event_dict


# =============================================================================
# Configuration
# =============================================================================


def configure_logging(
    level: str = "INFO",
    json_format: bool | None = None,
    service: str = "keystone",
) -> None:
    """Configure structured logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_format: True for JSON, False for console, None for auto (JSON if not tty)
        service: Service name to include in logs
    """
    global _SERVICE_NAME
    _SERVICE_NAME = service

    if json_format is None:
        json_format = not sys.stdout.isatty()

    processors: list[Processor] = [
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.filter_by_level,
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        _add_service_metadata,
        _compact_sql,
        _clip_params,
    ]
    renderer: Processor = (
        structlog.processors.JSONRenderer(default=str) if json_format else structlog.dev.ConsoleRenderer(colors=True)
    )

    structlog.configure(
        processors=[*processors, renderer],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, level.upper()),
        force=True,
    )


def configure_from_settings(settings: KeystoneSettings, level: str | None = None) -> None:
    """Apply ``log_level``/``log_json`` from settings; ``level`` overrides the level."""
    configure_logging(level=level or settings.log_level, json_format=settings.log_json)


def get_logger(name: str | None = None) -> Any:
    """Get a structured logger.

    Args:
        name: Logger name (usually __name__)
    """
    return structlog.get_logger(name)


# =============================================================================
# Context binding
# =============================================================================


def bind_context(**kwargs: Any) -> None:
    """Bind context to include in all subsequent logs."""
    structlog.contextvars.bind_contextvars(**kwargs)


def unbind_context(*keys: str) -> None:
    structlog.contextvars.unbind_contextvars(*keys)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()


@contextmanager
def LogContext(**kwargs: Any) -> Iterator[None]:  # noqa: N802
    """Bind ``kwargs`` for the duration of a ``with`` block.

    Example:
        with LogContext(unit_of_work="import-users"):
            user.save()
    """
    tokens = structlog.contextvars.bind_contextvars(**kwargs)
    try:
        yield
    finally:
        structlog.contextvars.reset_contextvars(**tokens)


__all__ = [
    "MAX_PARAM_LENGTH",
    "configure_logging",
    "configure_from_settings",
    "get_logger",
    "bind_context",
    "unbind_context",
    "clear_context",
    "LogContext",
]
