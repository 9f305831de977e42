"""structlog setup for the idempotency engine.

Engine modules log dotted event names (``request.replayed``,
``lock.contended``, ``audit.dropped``, ...) with the idempotency key and the
outcome as fields::

    from idempotency_engine.observability.logging import configure_logging, get_logger

    configure_logging(level="INFO", json_output=True)
    logger = get_logger(__name__)
    logger.info("request.replayed", key="uuid-123", status_code=200)

which renders as::

    {"key": "uuid-123", "status_code": 200, "event": "request.replayed",
     "level": "info", "timestamp": "2025-01-01T00:00:00.000000Z"}

Without a configure_logging() call structlog's defaults apply, which is what
the test suite relies on.
"""

import logging
import sys
from typing import Any

import structlog


def configure_logging(
    level: str = "INFO",
    json_output: bool = True,
) -> None:
    """Configure stdlib logging and structlog once, at process start.

    Args:
        level: Minimum level name, e.g. "DEBUG" or "WARNING".
        json_output: JSON lines when True, coloured console output otherwise.
    """
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        raise ValueError(f"Unknown log level: {level}")

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=numeric_level)

    renderer: Any = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer(colors=True)
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> Any:
    """Return a structlog logger named after the calling module."""
    return structlog.get_logger(name)
