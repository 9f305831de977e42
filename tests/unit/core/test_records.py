"""Unit tests for RecordStore.

Covers the two writes the store performs, their atomic conditions, TTL
handling and decoding failures.
"""

import asyncio

import pytest

from idempotency_engine.core.records import RecordStore
from idempotency_engine.exceptions import (
    RecordExistsError,
    RecordNotFoundError,
    StoreUnavailableError,
)
from idempotency_engine.models import RecordStatus, StoredResponse

FP = "f" * 64


@pytest.fixture
def records(store) -> RecordStore:
    return RecordStore(store, prefix="test")


@pytest.fixture
def stored() -> StoredResponse:
    return StoredResponse.from_body(201, [("content-type", "application/json")], b'{"id": 1}')


@pytest.mark.asyncio
async def test_get_missing(records):
    assert await records.get("uuid-123") is None


@pytest.mark.asyncio
async def test_put_processing_creates_record(records, store):
    record = await records.put_processing("uuid-123", FP, ttl_seconds=3600)

    assert record.status == RecordStatus.PROCESSING
    assert record.response is None
    assert (record.expires_at - record.created_at).total_seconds() == 3600
    assert await store.exists("test:record:uuid-123")
    assert await records.get("uuid-123") == record


@pytest.mark.asyncio
async def test_put_processing_fails_if_exists(records):
    await records.put_processing("uuid-123", FP, ttl_seconds=3600)

    with pytest.raises(RecordExistsError) as exc_info:
        await records.put_processing("uuid-123", "e" * 64, ttl_seconds=3600)

    assert exc_info.value.key == "uuid-123"
    assert (await records.get("uuid-123")).fingerprint == FP


@pytest.mark.asyncio
async def test_concurrent_put_processing_single_winner(records):
    results = await asyncio.gather(
        *[records.put_processing("uuid-123", FP, ttl_seconds=60) for _ in range(10)],
        return_exceptions=True,
    )

    assert sum(1 for r in results if not isinstance(r, Exception)) == 1
    assert all(isinstance(r, RecordExistsError) for r in results if isinstance(r, Exception))


@pytest.mark.asyncio
async def test_complete(records, stored):
    await records.put_processing("uuid-123", FP, ttl_seconds=3600)

    completed_at = await records.complete("uuid-123", stored, execution_time_ms=42)

    record = await records.get("uuid-123")
    assert record.status == RecordStatus.COMPLETED
    assert record.response == stored
    assert record.completed_at == completed_at
    assert record.execution_time_ms == 42
    assert record.fingerprint == FP


@pytest.mark.asyncio
async def test_complete_twice_fails(records, stored):
    """The PROCESSING -> COMPLETED transition happens exactly once."""
    await records.put_processing("uuid-123", FP, ttl_seconds=3600)
    await records.complete("uuid-123", stored)

    other = StoredResponse.from_body(500, [], b"late")
    with pytest.raises(RecordNotFoundError):
        await records.complete("uuid-123", other)

    assert (await records.get("uuid-123")).response == stored


@pytest.mark.asyncio
async def test_complete_missing_record(records, stored):
    with pytest.raises(RecordNotFoundError):
        await records.complete("uuid-123", stored)


@pytest.mark.asyncio
async def test_complete_does_not_refresh_ttl(records, store, clock, stored):
    await records.put_processing("uuid-123", FP, ttl_seconds=100)
    clock.advance(90)
    await records.complete("uuid-123", stored)

    clock.advance(10)
    assert await records.get("uuid-123") is None


@pytest.mark.asyncio
async def test_record_expires(records, clock):
    await records.put_processing("uuid-123", FP, ttl_seconds=100)
    clock.advance(100)

    assert await records.get("uuid-123") is None
    # An expired key is free again
    await records.put_processing("uuid-123", "e" * 64, ttl_seconds=100)


@pytest.mark.asyncio
async def test_corrupt_record_is_store_failure(records, store):
    await store.set_fields("test:record:uuid-123", {"status": "PROCESSING"})

    with pytest.raises(StoreUnavailableError) as exc_info:
        await records.get("uuid-123")

    assert exc_info.value.cause is not None
