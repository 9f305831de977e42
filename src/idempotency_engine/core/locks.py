"""Lease-based lock manager.

The lock guarding a key lives under ``{prefix}:lock:{key}``, a namespace
separate from records. Acquisition is a single test-and-set in the cache
store; there is no queue, so every non-holder fails immediately. Each lease
carries a random owner token so a holder whose lease already expired can
never release a lock that someone else acquired since.

Examples:
    >>> lease = await locks.acquire("uuid-123", lease_seconds=30)
    >>> if lease:
    ...     try:
    ...         ...
    ...     finally:
    ...         await locks.release(lease)
"""

import secrets
import time

from idempotency_engine.observability.logging import get_logger
from idempotency_engine.observability.metrics import locks_held
from idempotency_engine.storage.base import CacheStore

logger = get_logger(__name__)


class Lease:
    """Ownership of the lock for one key, valid until it is released or expires.

    Attributes:
        key: The idempotency key the lock guards.
        token: Random owner token stored in the lock.
        lease_seconds: Lease duration requested at acquisition.
        acquired_at: Monotonic acquisition time.
        released: Whether release() has already run for this lease.
    """

    def __init__(self, key: str, token: str, lease_seconds: float) -> None:
        self.key = key
        self.token = token
        self.lease_seconds = lease_seconds
        self.acquired_at = time.monotonic()
        self.released = False

    @property
    def expired(self) -> bool:
        """Whether the lease has run out by the local clock."""
        return time.monotonic() - self.acquired_at >= self.lease_seconds


class LockManager:
    """Mutual exclusion per idempotency key over a cache store."""

    def __init__(self, cache: CacheStore, prefix: str = "idem") -> None:
        self.cache = cache
        self.prefix = prefix

    def _k(self, key: str) -> str:
        return f"{self.prefix}:lock:{key}"

    async def acquire(self, key: str, lease_seconds: float) -> Lease | None:
        """Try to take the lock for a key.

        Returns:
            A Lease if no one else holds a live lease on the key, None
            otherwise. Never waits.

        Raises:
            StoreUnavailableError: If the backend fails.
        """
        token = secrets.token_urlsafe(16)
        if not await self.cache.try_acquire_lock(self._k(key), token, lease_seconds):
            return None
        locks_held.inc()
        return Lease(key, token, lease_seconds)

    async def release(self, lease: Lease) -> None:
        """Release a lease.

        Releasing twice, or releasing a lease that already expired, is a
        no-op.

        Raises:
            StoreUnavailableError: If the backend fails. The lease still
                expires on its own.
        """
        if lease.released:
            return
        lease.released = True
        locks_held.dec()
        if not await self.cache.release_lock(self._k(lease.key), lease.token):
            logger.warning(
                "lock.release_after_expiry",
                key=lease.key,
                lease_seconds=lease.lease_seconds,
            )

    async def is_locked(self, key: str) -> bool:
        """Whether any live lease exists for the key."""
        return await self.cache.exists(self._k(key))
