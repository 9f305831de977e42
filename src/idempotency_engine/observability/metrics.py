"""Prometheus metrics for the idempotency engine.

Metrics include:

- Request counters by outcome (executed, replayed, contended, ...)
- Handler duration histogram for requests that actually executed
- Gauge of processing locks currently held by this process
- Durable sink drops and failures
- Cleanup sweeper activity

Exporting the registry is left to the host application.

Examples:
    >>> from idempotency_engine.observability.metrics import record_request
    >>> record_request(outcome="replayed", status_code=200)
"""

from prometheus_client import Counter, Gauge, Histogram

# Labels: outcome (see core.engine.Outcome), status_code
requests_total = Counter(
    "idempotency_requests_total",
    "Total number of requests seen by the idempotency engine",
    ["outcome", "status_code"],
)

# Only observed for requests that ran the handler
handler_duration_seconds = Histogram(
    "idempotency_handler_duration_seconds",
    "Wrapped handler execution time in seconds",
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

locks_held = Gauge(
    "idempotency_locks_held",
    "Number of processing locks currently held by this process",
)

audit_events_total = Counter(
    "idempotency_audit_events_total",
    "Durable sink events by result",
    ["result"],
)

cleanup_operations = Counter(
    "idempotency_cleanup_operations_total",
    "Total number of cleanup sweeps performed",
)

cleanup_records_removed = Counter(
    "idempotency_cleanup_records_removed_total",
    "Total number of expired entries removed by the cleanup sweeper",
)


def record_request(outcome: str, status_code: int) -> None:
    """Record a request handled by the engine.

    Examples:
        >>> record_request("executed", 201)
        >>> record_request("mismatch", 422)
    """
    requests_total.labels(outcome=outcome, status_code=str(status_code)).inc()


def record_handler_duration(execution_time_ms: int) -> None:
    """Record wrapped handler execution time.

    Examples:
        >>> record_handler_duration(150)
    """
    handler_duration_seconds.observe(execution_time_ms / 1000.0)


def record_audit(result: str, count: int = 1) -> None:
    """Record durable sink outcomes: delivered, failed or dropped."""
    audit_events_total.labels(result=result).inc(count)


def record_cleanup(records_removed: int) -> None:
    """Record a cleanup sweep.

    Examples:
        >>> record_cleanup(42)
    """
    cleanup_operations.inc()
    cleanup_records_removed.inc(records_removed)
