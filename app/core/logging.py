import logging
from typing import Any

import structlog

from app.core.config import Environment, settings


def bind_context(**kwargs: Any) -> None:
    """Attach key/values to every log line emitted for the current request."""
    structlog.contextvars.bind_contextvars(**{k: v for k, v in kwargs.items() if v is not None})


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()


def setup_logging() -> None:
    """
    Configure structlog.
    JSON lines in staging/production so the log drain can index fields,
    coloured console output everywhere else.
    """
    level = getattr(logging, settings.LOG_LEVEL, logging.INFO)

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if settings.LOG_FORMAT == "json" or settings.ENVIRONMENT in (Environment.PRODUCTION, Environment.STAGING):
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[*processors, renderer],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=False,
    )


setup_logging()

logger = structlog.get_logger()
