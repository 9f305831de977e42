"""Record store: the idempotency record lifecycle over a cache store.

Records live under ``{prefix}:record:{key}``. The store performs exactly
two kinds of write:

1. put_processing() creates a PROCESSING record, with its TTL attached in
   the same atomic step, and fails if any record exists.
2. complete() adds the response and flips status to COMPLETED, but only
   while the record is still PROCESSING. The TTL is not refreshed.

Records are never deleted here; they leave the store by expiry.
"""

from datetime import UTC, datetime, timedelta

from pydantic import ValidationError

from idempotency_engine.exceptions import (
    RecordExistsError,
    RecordNotFoundError,
    StoreUnavailableError,
)
from idempotency_engine.models import (
    IdempotencyRecord,
    RecordStatus,
    StoredResponse,
    response_fields,
)
from idempotency_engine.storage.base import CacheStore


class RecordStore:
    """Per-key atomic access to idempotency records.

    Attributes:
        cache: The backing cache store.
        prefix: Namespace prefix shared with the lock manager.
    """

    def __init__(self, cache: CacheStore, prefix: str = "idem") -> None:
        self.cache = cache
        self.prefix = prefix

    def _k(self, key: str) -> str:
        return f"{self.prefix}:record:{key}"

    async def get(self, key: str) -> IdempotencyRecord | None:
        """Fetch the live record for a key.

        Raises:
            StoreUnavailableError: If the backend fails or holds a record
                that cannot be decoded.
        """
        fields = await self.cache.get_fields(self._k(key))
        if fields is None:
            return None
        try:
            return IdempotencyRecord.from_fields(fields)
        except (ValidationError, ValueError) as e:
            raise StoreUnavailableError(f"Corrupt idempotency record for key {key}", cause=e) from e

    async def put_processing(
        self,
        key: str,
        fingerprint: str,
        ttl_seconds: int,
    ) -> IdempotencyRecord:
        """Insert a new PROCESSING record.

        Args:
            key: The idempotency key.
            fingerprint: Fingerprint of the request that owns the key.
            ttl_seconds: Total record lifetime from now.

        Returns:
            The record as written.

        Raises:
            RecordExistsError: If a record for the key already exists.
            StoreUnavailableError: If the backend fails.
        """
        now = datetime.now(UTC)
        record = IdempotencyRecord(
            key=key,
            fingerprint=fingerprint,
            status=RecordStatus.PROCESSING,
            created_at=now,
            expires_at=now + timedelta(seconds=ttl_seconds),
        )
        created = await self.cache.set_fields(
            self._k(key),
            record.to_fields(),
            only_if_absent=True,
            ttl_seconds=ttl_seconds,
        )
        if not created:
            raise RecordExistsError(key)
        return record

    async def complete(
        self,
        key: str,
        response: StoredResponse,
        execution_time_ms: int | None = None,
    ) -> datetime:
        """Mark a PROCESSING record COMPLETED and attach its response.

        Returns:
            The completion timestamp written to the record.

        Raises:
            RecordNotFoundError: If no PROCESSING record exists for the key,
                either because it expired or because it already completed.
            StoreUnavailableError: If the backend fails.
        """
        completed_at = datetime.now(UTC)
        fields = response_fields(response)
        fields["status"] = RecordStatus.COMPLETED.value
        fields["completed_at"] = completed_at.isoformat()
        if execution_time_ms is not None:
            fields["execution_time_ms"] = str(execution_time_ms)

        updated = await self.cache.set_fields(
            self._k(key),
            fields,
            only_if_field=("status", RecordStatus.PROCESSING.value),
        )
        if not updated:
            raise RecordNotFoundError(key)
        return completed_at
