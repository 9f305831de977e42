"""Background sweeper for cache stores without native expiry.

The engine never calls this module: records and locks become invisible as
soon as they expire. The in-memory store only drops an expired item when
it is touched again, so long-running single-process deployments run this
sweeper to reclaim memory from keys that are never revisited. Redis expires
keys itself and needs no sweeper.

Examples:
    Start the sweeper in the background::

        from idempotency_engine.core.cleanup import start_cleanup_task, stop_cleanup_task
        from idempotency_engine.storage.memory import MemoryCacheStore

        store = MemoryCacheStore()
        task = await start_cleanup_task(store, interval_seconds=300)

        # Later, when shutting down
        await stop_cleanup_task(task)
"""

import asyncio
from typing import Protocol

from idempotency_engine.observability.logging import get_logger
from idempotency_engine.observability.metrics import record_cleanup

logger = get_logger(__name__)


class PurgeableStore(Protocol):
    async def purge_expired(self) -> int: ...


async def cleanup_loop(
    store: PurgeableStore,
    interval_seconds: float = 300,
    stop_event: asyncio.Event | None = None,
) -> None:
    """Purge expired items every ``interval_seconds`` until stop_event is set.

    A failing sweep is logged and the loop carries on.
    """
    if stop_event is None:
        stop_event = asyncio.Event()

    logger.info("cleanup.started", interval_seconds=interval_seconds)

    while not stop_event.is_set():
        try:
            count = await store.purge_expired()
            record_cleanup(count)
            if count > 0:
                logger.info("cleanup.completed", records_removed=count)
            else:
                logger.debug("cleanup.completed", records_removed=0)
        except Exception as e:
            logger.error(
                "cleanup.failed",
                error=str(e),
                error_type=type(e).__name__,
            )

        try:
            await asyncio.wait_for(stop_event.wait(), timeout=interval_seconds)
        except asyncio.TimeoutError:
            continue

    logger.info("cleanup.stopped")


async def start_cleanup_task(
    store: PurgeableStore,
    interval_seconds: float = 300,
) -> asyncio.Task[None]:
    """Start the sweeper and return its task."""
    stop_event = asyncio.Event()
    task = asyncio.create_task(
        cleanup_loop(store=store, interval_seconds=interval_seconds, stop_event=stop_event)
    )
    task._stop_event = stop_event  # type: ignore[attr-defined]
    return task


async def stop_cleanup_task(task: asyncio.Task[None], timeout: float = 5.0) -> None:
    """Signal the sweeper to stop and wait for it, cancelling after ``timeout``."""
    stop_event: asyncio.Event | None = getattr(task, "_stop_event", None)
    if stop_event:
        stop_event.set()

    try:
        await asyncio.wait_for(task, timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning("cleanup.stop_timeout")
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            logger.debug("cleanup.cancelled")
