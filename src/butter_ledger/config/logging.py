"""Structured logging for the ledger core.

Log lines go to stderr so the CLI can keep stdout for its JSON results.
Ledger values (``Decimal`` amounts, dates, enums) are rendered as plain
strings, and credentials never reach the output.
"""

import logging
import sys
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any, Literal
from uuid import UUID

import structlog

from butter_ledger.config.settings import get_settings

SERVICE_NAME = "butter-ledger"

REDACTED = "***"
SECRET_KEYS = frozenset({"api_key", "apikey", "authorization", "token", "password"})


def add_service(
    logger: Any, method_name: str, event_dict: structlog.types.EventDict
) -> structlog.types.EventDict:
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (Decimal, UUID)):
        return str(value)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, dict):
        return {key: _plain(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(item) for item in value]
    return value


def stringify_values(
    logger: Any, method_name: str, event_dict: structlog.types.EventDict
) -> structlog.types.EventDict:
    """Render amounts, dates and enums the way the ledger stores them."""
    return {key: _plain(value) for key, value in event_dict.items()}


def redact_secrets(
    logger: Any, method_name: str, event_dict: structlog.types.EventDict
) -> structlog.types.EventDict:
    for key in event_dict:
        if key.lower() in SECRET_KEYS:
            event_dict[key] = REDACTED
    return event_dict


def configure_logging(
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] | None = None,
    format: Literal["json", "console"] | None = None,
) -> None:
    """Configure structlog and the stdlib root logger.

    Args:
        level: Log level. Defaults to ``LOG_LEVEL``.
        format: ``json`` for the daemon, ``console`` for interactive use.
            Defaults to ``LOG_FORMAT``.
    """
    settings = get_settings()
    log_level = getattr(logging, level or settings.log_level)
    log_format = format or settings.log_format

    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=log_level)
    # httpx logs every request at INFO, including Wise and store URLs
    logging.getLogger("httpx").setLevel(max(log_level, logging.WARNING))

    if log_format == "json":
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(
            colors=sys.stderr.isatty(),
            exception_formatter=structlog.dev.plain_traceback,
        )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            add_service,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            redact_secrets,
            stringify_values,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str, component: str | None = None) -> structlog.stdlib.BoundLogger:
    """Logger for ``name``, bound to a component when one is given."""
    logger = structlog.get_logger(name)
    return logger.bind(component=component) if component else logger
