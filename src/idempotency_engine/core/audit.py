"""Fire-and-forget delivery of completed operations to a durable sink.

The engine hands every completed operation to an AuditDispatcher and moves
on. The dispatcher keeps a bounded asyncio queue drained by one background
worker that calls the configured AuditSink. Nothing here ever reaches the
caller of the engine:

- enqueue() never blocks; a full queue drops the event with a warning
- a sink failure is logged and counted, never retried by the dispatcher
  (retries belong to the sink implementation itself)

Examples:
    Wiring a sink::

        dispatcher = AuditDispatcher(LoggingAuditSink(), max_queue_size=1000)
        await dispatcher.start()
        dispatcher.enqueue(event)
        ...
        await dispatcher.stop()
"""

import asyncio
from datetime import datetime
from typing import Protocol, runtime_checkable

from pydantic import BaseModel, Field

from idempotency_engine.observability.logging import get_logger
from idempotency_engine.observability.metrics import record_audit

logger = get_logger(__name__)


class AuditEvent(BaseModel):
    """Notification that one idempotent operation completed.

    Attributes:
        key: The idempotency key.
        fingerprint: Fingerprint of the request that ran.
        method: HTTP method of the request.
        path: Resource path of the request.
        status_code: Status code returned by the handler.
        body_bytes: Size of the cached response body.
        created_at: When processing started.
        completed_at: When the record was marked COMPLETED.
        execution_time_ms: Handler execution time in milliseconds.
    """

    key: str
    fingerprint: str
    method: str
    path: str
    status_code: int = Field(..., ge=100, le=599)
    body_bytes: int = Field(..., ge=0)
    created_at: datetime
    completed_at: datetime
    execution_time_ms: int = Field(..., ge=0)

    model_config = {"frozen": True}


@runtime_checkable
class AuditSink(Protocol):
    """Durable destination for completed operations."""

    async def record(self, event: AuditEvent) -> None:
        """Persist one event. May raise; the dispatcher logs the failure."""
        ...


class LoggingAuditSink:
    """Sink that writes events to the structured log."""

    def __init__(self, event_name: str = "audit.operation_completed") -> None:
        self.event_name = event_name
        self._logger = get_logger("idempotency_engine.audit")

    async def record(self, event: AuditEvent) -> None:
        self._logger.info(self.event_name, **event.model_dump(mode="json"))


class AuditDispatcher:
    """Bounded queue plus background worker in front of an AuditSink.

    The queue and worker belong to the event loop that called start(). If
    the dispatcher is started again from a different loop it rebuilds both;
    events still queued on the old loop are logged and counted as dropped.
    """

    def __init__(self, sink: AuditSink, max_queue_size: int = 1000) -> None:
        self.sink = sink
        self.max_queue_size = max_queue_size
        self._queue: asyncio.Queue[AuditEvent] | None = None
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def pending(self) -> int:
        return self._queue.qsize() if self._queue is not None else 0

    async def start(self) -> None:
        """Start the worker unless it is already running on this loop."""
        loop = asyncio.get_running_loop()
        if self.running and self._task is not None and self._task.get_loop() is loop:
            return
        same_loop = self._task is not None and self._task.get_loop() is loop
        self._abandon(reason="worker_stopped" if same_loop else "event_loop_changed")
        self._queue = asyncio.Queue(maxsize=self.max_queue_size)
        self._task = loop.create_task(self._run(self._queue))
        logger.debug("audit.started", max_queue_size=self.max_queue_size)

    def _abandon(self, reason: str) -> None:
        """Give up the current queue and worker before replacing them."""
        task, queue = self._task, self._queue
        self._task, self._queue = None, None
        if task is not None and not task.done():
            old_loop = task.get_loop()
            if not old_loop.is_closed():
                old_loop.call_soon_threadsafe(task.cancel)
        abandoned = queue.qsize() if queue is not None else 0
        if abandoned:
            logger.warning("audit.queue_abandoned", abandoned=abandoned, reason=reason)
            record_audit("dropped", abandoned)

    def enqueue(self, event: AuditEvent) -> bool:
        """Queue an event without waiting.

        Returns:
            True if queued, False if the event was dropped.
        """
        if self._queue is None or not self.running:
            logger.warning("audit.dropped", key=event.key, reason="not_started")
            record_audit("dropped")
            return False
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning("audit.dropped", key=event.key, reason="queue_full")
            record_audit("dropped")
            return False
        return True

    async def _run(self, queue: "asyncio.Queue[AuditEvent]") -> None:
        while True:
            event = await queue.get()
            try:
                await self.sink.record(event)
                record_audit("delivered")
            except Exception as e:
                logger.error(
                    "audit.failed",
                    key=event.key,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                record_audit("failed")
            finally:
                queue.task_done()

    async def stop(self, timeout: float = 5.0) -> None:
        """Drain queued events, then stop the worker.

        Events still queued after ``timeout`` seconds are abandoned.
        """
        task, queue = self._task, self._queue
        self._task, self._queue = None, None
        if task is None or queue is None:
            return

        if not task.done():
            try:
                await asyncio.wait_for(queue.join(), timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning("audit.stop_timeout", abandoned=queue.qsize())

        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            logger.debug("audit.stopped")
