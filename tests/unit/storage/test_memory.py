"""Unit tests for MemoryCacheStore.

This test suite covers:
    - Field reads and unconditional writes
    - Conditional writes (only_if_absent, only_if_field)
    - Expiry on the injected clock, lazy and via purge_expired()
    - Lock test-and-set, lease expiry and owner-checked release
    - Concurrent acquisition from many tasks
"""

import asyncio

import pytest

from idempotency_engine.storage.base import CacheStore
from idempotency_engine.storage.memory import MemoryCacheStore


def test_implements_protocol(store):
    assert isinstance(store, CacheStore)


# ============================================================================
# Fields
# ============================================================================


@pytest.mark.asyncio
async def test_get_fields_nonexistent_key(store):
    assert await store.get_fields("missing") is None
    assert await store.get_field("missing", "status") is None
    assert await store.exists("missing") is False


@pytest.mark.asyncio
async def test_set_fields_merges(store):
    assert await store.set_fields("k", {"a": "1", "b": "2"})
    assert await store.set_fields("k", {"b": "3", "c": "4"})

    assert await store.get_fields("k") == {"a": "1", "b": "3", "c": "4"}
    assert await store.get_field("k", "b") == "3"
    assert await store.get_field("k", "zzz") is None


@pytest.mark.asyncio
async def test_get_fields_returns_copy(store):
    await store.set_fields("k", {"a": "1"})
    fields = await store.get_fields("k")
    fields["a"] = "mutated"

    assert await store.get_field("k", "a") == "1"


@pytest.mark.asyncio
async def test_only_if_absent(store):
    assert await store.set_fields("k", {"status": "PROCESSING"}, only_if_absent=True)
    assert not await store.set_fields("k", {"status": "OTHER"}, only_if_absent=True)

    assert await store.get_field("k", "status") == "PROCESSING"


@pytest.mark.asyncio
async def test_only_if_field(store):
    await store.set_fields("k", {"status": "PROCESSING"})

    assert await store.set_fields(
        "k", {"status": "COMPLETED"}, only_if_field=("status", "PROCESSING")
    )
    # Second transition fails: the guard no longer holds
    assert not await store.set_fields(
        "k", {"status": "COMPLETED", "x": "1"}, only_if_field=("status", "PROCESSING")
    )
    assert await store.get_fields("k") == {"status": "COMPLETED"}


@pytest.mark.asyncio
async def test_only_if_field_on_missing_entry(store):
    assert not await store.set_fields("k", {"a": "1"}, only_if_field=("status", "PROCESSING"))
    assert await store.get_fields("k") is None


# ============================================================================
# Expiry
# ============================================================================


@pytest.mark.asyncio
async def test_entry_expires(store, clock):
    await store.set_fields("k", {"a": "1"}, only_if_absent=True, ttl_seconds=10)

    clock.advance(9)
    assert await store.exists("k")

    clock.advance(1)
    assert await store.get_fields("k") is None
    assert not await store.exists("k")


@pytest.mark.asyncio
async def test_expired_entry_counts_as_absent(store, clock):
    await store.set_fields("k", {"a": "1"}, ttl_seconds=10)
    clock.advance(11)

    assert await store.set_fields("k", {"b": "2"}, only_if_absent=True, ttl_seconds=10)
    assert await store.get_fields("k") == {"b": "2"}


@pytest.mark.asyncio
async def test_update_without_ttl_preserves_deadline(store, clock):
    await store.set_fields("k", {"status": "PROCESSING"}, ttl_seconds=10)
    clock.advance(8)
    await store.set_fields("k", {"status": "COMPLETED"}, only_if_field=("status", "PROCESSING"))

    clock.advance(3)
    assert await store.get_fields("k") is None


@pytest.mark.asyncio
async def test_set_expiry(store, clock):
    assert not await store.set_expiry("k", 10)

    await store.set_fields("k", {"a": "1"})
    assert await store.set_expiry("k", 10)

    clock.advance(10)
    assert await store.get_fields("k") is None


@pytest.mark.asyncio
async def test_purge_expired(store, clock):
    await store.set_fields("short", {"a": "1"}, ttl_seconds=5)
    await store.set_fields("long", {"a": "1"}, ttl_seconds=500)
    await store.set_fields("forever", {"a": "1"})
    await store.try_acquire_lock("lock", "token", lease_seconds=5)

    clock.advance(6)

    assert await store.purge_expired() == 2
    assert await store.purge_expired() == 0
    assert await store.exists("long")
    assert await store.exists("forever")


# ============================================================================
# Locks
# ============================================================================


@pytest.mark.asyncio
async def test_lock_test_and_set(store):
    assert await store.try_acquire_lock("lock", "t1", 30)
    assert not await store.try_acquire_lock("lock", "t2", 30)
    assert await store.exists("lock")


@pytest.mark.asyncio
async def test_lock_expires(store, clock):
    await store.try_acquire_lock("lock", "t1", 30)
    clock.advance(30)

    assert await store.try_acquire_lock("lock", "t2", 30)


@pytest.mark.asyncio
async def test_release_checks_owner(store):
    await store.try_acquire_lock("lock", "t1", 30)

    assert not await store.release_lock("lock", "someone-else")
    assert await store.exists("lock")
    assert await store.release_lock("lock", "t1")
    assert not await store.exists("lock")
    assert not await store.release_lock("lock", "t1")


@pytest.mark.asyncio
async def test_stale_holder_cannot_release_new_lock(store, clock):
    await store.try_acquire_lock("lock", "t1", 30)
    clock.advance(31)
    await store.try_acquire_lock("lock", "t2", 30)

    assert not await store.release_lock("lock", "t1")
    assert not await store.try_acquire_lock("lock", "t3", 30)


@pytest.mark.asyncio
async def test_concurrent_lock_acquisition():
    store = MemoryCacheStore()

    results = await asyncio.gather(
        *[store.try_acquire_lock("lock", f"t{i}", 30) for i in range(50)]
    )

    assert sum(results) == 1


@pytest.mark.asyncio
async def test_aclose_keeps_contents(store):
    await store.set_fields("k", {"a": "1"})
    await store.aclose()
    assert await store.get_fields("k") == {"a": "1"}
