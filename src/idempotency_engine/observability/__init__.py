"""Observability utilities for the idempotency engine.

- Prometheus metrics for outcomes, handler latency and sink health
- Structured logging with contextual information
"""

from idempotency_engine.observability.logging import configure_logging, get_logger
from idempotency_engine.observability.metrics import (
    record_audit,
    record_cleanup,
    record_handler_duration,
    record_request,
)

__all__ = [
    "configure_logging",
    "get_logger",
    "record_request",
    "record_handler_duration",
    "record_audit",
    "record_cleanup",
]
