"""In-memory cache store.

This module provides a single-process implementation of the CacheStore
protocol. Entries and locks live in dictionaries guarded by one
threading.Lock; no critical section awaits, so each operation is atomic
with respect to every coroutine and thread in the process.

The MemoryCacheStore is suitable for:
    - Single-process applications
    - Development and testing

For multiple workers or hosts use RedisCacheStore instead.

Expiry:
    - Every entry and lock carries an absolute deadline on the store's clock
    - Expired items are invisible to all operations and dropped lazily
    - purge_expired() reclaims the rest; see core.cleanup

Examples:
    Basic usage::

        from idempotency_engine.storage.memory import MemoryCacheStore

        store = MemoryCacheStore()
        created = await store.set_fields(
            "idem:record:uuid-123",
            {"status": "PROCESSING"},
            only_if_absent=True,
            ttl_seconds=86400,
        )

    Deterministic expiry in tests::

        now = [0.0]
        store = MemoryCacheStore(clock=lambda: now[0])
        await store.try_acquire_lock("idem:lock:k", "token", lease_seconds=30)
        now[0] += 31
        assert not await store.exists("idem:lock:k")
"""

import threading
import time
from collections.abc import Callable


class MemoryCacheStore:
    """In-memory CacheStore with per-item expiry.

    Attributes:
        _entries: Maps keys to (fields, deadline or None).
        _locks: Maps lock keys to (owner token, deadline).
        _mutex: Guards both dictionaries.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        """Initialize an empty store.

        Args:
            clock: Monotonic time source in seconds, injectable for tests.
        """
        self._clock = clock
        self._entries: dict[str, tuple[dict[str, str], float | None]] = {}
        self._locks: dict[str, tuple[str, float]] = {}
        self._mutex = threading.Lock()

    def _live_entry(self, key: str, now: float) -> dict[str, str] | None:
        item = self._entries.get(key)
        if item is None:
            return None
        fields, deadline = item
        if deadline is not None and deadline <= now:
            del self._entries[key]
            return None
        return fields

    def _live_lock(self, key: str, now: float) -> str | None:
        item = self._locks.get(key)
        if item is None:
            return None
        token, deadline = item
        if deadline <= now:
            del self._locks[key]
            return None
        return token

    async def exists(self, key: str) -> bool:
        with self._mutex:
            now = self._clock()
            return self._live_entry(key, now) is not None or self._live_lock(key, now) is not None

    async def get_field(self, key: str, field: str) -> str | None:
        with self._mutex:
            fields = self._live_entry(key, self._clock())
            return None if fields is None else fields.get(field)

    async def get_fields(self, key: str) -> dict[str, str] | None:
        with self._mutex:
            fields = self._live_entry(key, self._clock())
            return None if fields is None else dict(fields)

    async def set_fields(
        self,
        key: str,
        fields: dict[str, str],
        *,
        only_if_absent: bool = False,
        only_if_field: tuple[str, str] | None = None,
        ttl_seconds: float | None = None,
    ) -> bool:
        with self._mutex:
            now = self._clock()
            current = self._live_entry(key, now)

            if only_if_absent and current is not None:
                return False
            if only_if_field is not None:
                name, expected = only_if_field
                if current is None or current.get(name) != expected:
                    return False

            deadline = self._entries[key][1] if current is not None else None
            if ttl_seconds is not None:
                deadline = now + ttl_seconds

            merged = dict(current) if current is not None else {}
            merged.update(fields)
            self._entries[key] = (merged, deadline)
            return True

    async def set_expiry(self, key: str, ttl_seconds: float) -> bool:
        with self._mutex:
            now = self._clock()
            current = self._live_entry(key, now)
            if current is None:
                return False
            self._entries[key] = (current, now + ttl_seconds)
            return True

    async def try_acquire_lock(self, key: str, token: str, lease_seconds: float) -> bool:
        with self._mutex:
            now = self._clock()
            if self._live_lock(key, now) is not None:
                return False
            self._locks[key] = (token, now + lease_seconds)
            return True

    async def release_lock(self, key: str, token: str) -> bool:
        with self._mutex:
            if self._live_lock(key, self._clock()) != token:
                return False
            del self._locks[key]
            return True

    async def purge_expired(self) -> int:
        """Remove expired entries and locks.

        Returns:
            The number of items removed.
        """
        with self._mutex:
            now = self._clock()
            expired_entries = [
                key
                for key, (_, deadline) in self._entries.items()
                if deadline is not None and deadline <= now
            ]
            expired_locks = [key for key, (_, deadline) in self._locks.items() if deadline <= now]
            for key in expired_entries:
                del self._entries[key]
            for key in expired_locks:
                del self._locks[key]
            return len(expired_entries) + len(expired_locks)

    async def aclose(self) -> None:
        """Nothing to release; contents stay readable."""
