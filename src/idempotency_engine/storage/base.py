"""Cache store protocol for the idempotency engine.

The engine needs very little from its backing store: field-addressable
entries with per-key expiry, a conditional write that creates or updates an
entry atomically, and a lease-based test-and-set lock. Any technology that
offers atomic per-key test-and-set and TTL qualifies; this package ships an
in-memory store and a Redis store.

Keys passed to a CacheStore are already namespaced by the caller (the
record store and the lock manager use separate prefixes), so a store never
interprets them.

Examples:
    Implementing a custom cache store::

        class MyCacheStore:
            async def get_fields(self, key: str) -> dict[str, str] | None:
                data = await self.backend.hgetall(key)
                return data or None

            async def try_acquire_lock(
                self, key: str, token: str, lease_seconds: float
            ) -> bool:
                return await self.backend.set_if_absent(key, token, ttl=lease_seconds)
            ...

Atomicity Requirements:
    All CacheStore implementations MUST guarantee:

    1. **Conditional writes are atomic**: set_fields() with only_if_absent or
       only_if_field checks and writes in one step. The create path attaches
       the expiry in that same step so no entry ever exists without a TTL.

    2. **Lock acquisition is test-and-set**: try_acquire_lock() succeeds for
       at most one caller while the lease is live. Never check-then-set.

    3. **Owner-checked release**: release_lock() deletes the lock only when
       it still holds the caller's token, and is a no-op otherwise.

    4. **Expiry**: entries and locks past their TTL are invisible to every
       operation.

    5. **Error mapping**: backend failures surface as StoreUnavailableError,
       never as backend-specific exceptions.
"""

from typing import Protocol, runtime_checkable


@runtime_checkable
class CacheStore(Protocol):
    """Protocol defining the capabilities the engine consumes from a cache.

    All methods are async and must be safe to call concurrently from many
    tasks. Atomicity is per key; no operation spans keys.
    """

    async def exists(self, key: str) -> bool:
        """Whether a live entry or lock exists under this key."""
        ...

    async def get_field(self, key: str, field: str) -> str | None:
        """Return one field of an entry, or None if entry or field is absent."""
        ...

    async def get_fields(self, key: str) -> dict[str, str] | None:
        """Return all fields of an entry, or None if it does not exist."""
        ...

    async def set_fields(
        self,
        key: str,
        fields: dict[str, str],
        *,
        only_if_absent: bool = False,
        only_if_field: tuple[str, str] | None = None,
        ttl_seconds: float | None = None,
    ) -> bool:
        """Atomically write fields to an entry.

        Args:
            key: Entry key.
            fields: Field values to write; other fields are left as they are.
            only_if_absent: Write only if the entry does not exist.
            only_if_field: Write only if the entry exists and the named field
                currently holds the given value.
            ttl_seconds: Expiry to attach in the same atomic step. When None
                the entry's existing expiry is preserved.

        Returns:
            True if the write happened, False if its condition failed.
        """
        ...

    async def set_expiry(self, key: str, ttl_seconds: float) -> bool:
        """Set the expiry of an existing entry. Returns False if absent."""
        ...

    async def try_acquire_lock(self, key: str, token: str, lease_seconds: float) -> bool:
        """Take the lock under key for token unless a live lease exists."""
        ...

    async def release_lock(self, key: str, token: str) -> bool:
        """Release the lock if token still owns it. Returns True if released."""
        ...

    async def aclose(self) -> None:
        """Release backend connections."""
        ...
