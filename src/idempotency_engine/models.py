"""Core type definitions for the idempotency engine.

This module provides the record that tracks one idempotency key through its
lifecycle, the cached response stored with a completed record, and the
flat string mapping used to hold records in any hash-capable cache store.

Examples:
    Creating a processing record::

        from datetime import UTC, datetime, timedelta
        from idempotency_engine.models import IdempotencyRecord, RecordStatus

        now = datetime.now(UTC)
        record = IdempotencyRecord(
            key="uuid-123",
            fingerprint="a" * 64,
            status=RecordStatus.PROCESSING,
            created_at=now,
            expires_at=now + timedelta(hours=24),
        )

    Round-tripping through a cache hash::

        fields = record.to_fields()
        assert IdempotencyRecord.from_fields(fields) == record
"""

import base64
import json
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

from idempotency_engine.utils.headers import HeaderList, as_header_list


class RecordStatus(str, Enum):
    """Lifecycle status of an idempotency record.

    Transitions are monotonic: PROCESSING -> COMPLETED, never back.

    Attributes:
        PROCESSING: The lock holder is running the handler.
        COMPLETED: The handler returned and its response is cached.
    """

    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"


class StoredResponse(BaseModel):
    """A cached response returned verbatim to duplicate submissions.

    The body is base64-encoded so binary content survives any string-only
    storage backend.

    Attributes:
        status: HTTP status code returned by the handler.
        headers: Response headers as ordered (name, value) pairs, minus
            volatile hop-by-hop headers. Repeated names are kept.
        body_b64: Base64-encoded response body.
    """

    status: int = Field(
        ...,
        description="HTTP status code",
        ge=100,
        le=599,
        examples=[200, 201, 400],
    )
    headers: list[tuple[str, str]] = Field(
        default_factory=list,
        description="HTTP response headers in order",
    )
    body_b64: str = Field(
        ...,
        description="Base64-encoded response body",
        examples=["eyJyZXN1bHQiOiAic3VjY2VzcyJ9"],
    )

    model_config = {"frozen": True}

    @field_validator("headers", mode="before")
    @classmethod
    def normalize_headers(cls, v: Any) -> Any:
        """Accept a mapping as well as a list of pairs."""
        if isinstance(v, (dict, list, tuple)):
            return as_header_list(v)
        return v

    @field_validator("body_b64")
    @classmethod
    def validate_base64(cls, v: str) -> str:
        """Validate that the body is properly base64-encoded.

        Raises:
            ValueError: If the string is not valid base64.
        """
        try:
            base64.b64decode(v, validate=True)
        except Exception as e:
            raise ValueError(f"Invalid base64 encoding: {e}") from e
        return v

    @classmethod
    def from_body(
        cls,
        status: int,
        headers: HeaderList,
        body: bytes,
    ) -> "StoredResponse":
        """Build a stored response from raw body bytes.

        Examples:
            >>> StoredResponse.from_body(200, [], b"Hello").body_b64
            'SGVsbG8='
        """
        return cls(
            status=status,
            headers=headers,
            body_b64=base64.b64encode(body).decode("ascii"),
        )

    def get_body_bytes(self) -> bytes:
        """Decode and return the response body as bytes.

        Examples:
            >>> response = StoredResponse(status=200, headers={}, body_b64="SGVsbG8=")
            >>> response.get_body_bytes()
            b'Hello'
        """
        return base64.b64decode(self.body_b64)


class IdempotencyRecord(BaseModel):
    """Record of one idempotency key and the operation it was issued for.

    A record is inserted as PROCESSING once its creator holds the key's
    lock, updated to COMPLETED exactly once when the handler returns, and
    destroyed only by TTL expiry inside the cache store.

    Attributes:
        key: The idempotency key provided by the client.
        fingerprint: SHA-256 of operation type, resource and payload.
        status: Current lifecycle status.
        response: Cached response, present iff status is COMPLETED.
        created_at: When processing started.
        expires_at: When the store evicts the record (creation + TTL).
        completed_at: When the record was marked COMPLETED.
        execution_time_ms: Handler execution time in milliseconds.
    """

    key: str = Field(
        ...,
        description="Idempotency key provided by the client",
        min_length=1,
        examples=["uuid-123", "order-create-abc123"],
    )
    fingerprint: str = Field(
        ...,
        description="SHA-256 hash of the request fingerprint (64 hex characters)",
        pattern=r"^[a-f0-9]{64}$",
    )
    status: RecordStatus = Field(
        ...,
        description="Current lifecycle status of the record",
    )
    response: StoredResponse | None = Field(
        default=None,
        description="Cached response (set when COMPLETED)",
    )
    created_at: datetime = Field(
        ...,
        description="Timestamp when processing started",
    )
    expires_at: datetime = Field(
        ...,
        description="Timestamp when the record is evicted",
    )
    completed_at: datetime | None = Field(
        default=None,
        description="Timestamp when the record was marked COMPLETED",
    )
    execution_time_ms: int | None = Field(
        default=None,
        description="Handler execution time in milliseconds",
        ge=0,
    )

    @field_validator("expires_at")
    @classmethod
    def validate_expires_after_created(cls, v: datetime, info: Any) -> datetime:
        """Validate that expires_at is after created_at."""
        if "created_at" in info.data and v <= info.data["created_at"]:
            raise ValueError("expires_at must be after created_at")
        return v

    @model_validator(mode="after")
    def validate_response_matches_status(self) -> "IdempotencyRecord":
        """A response is present exactly when the record is COMPLETED."""
        if self.status == RecordStatus.COMPLETED and self.response is None:
            raise ValueError("COMPLETED record requires a response")
        if self.status == RecordStatus.PROCESSING and self.response is not None:
            raise ValueError("PROCESSING record cannot carry a response")
        return self

    @property
    def is_completed(self) -> bool:
        return self.status == RecordStatus.COMPLETED

    def to_fields(self) -> dict[str, str]:
        """Flatten the record into string fields for a hash store.

        Fields that are unset are omitted, so the PROCESSING insert and the
        COMPLETED update write disjoint field sets except for ``status``.
        """
        fields = {
            "key": self.key,
            "fingerprint": self.fingerprint,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
        }
        if self.response is not None:
            fields.update(response_fields(self.response))
        if self.completed_at is not None:
            fields["completed_at"] = self.completed_at.isoformat()
        if self.execution_time_ms is not None:
            fields["execution_time_ms"] = str(self.execution_time_ms)
        return fields

    @classmethod
    def from_fields(cls, fields: dict[str, str]) -> "IdempotencyRecord":
        """Rebuild a record from the mapping produced by to_fields().

        Raises:
            pydantic.ValidationError: If the mapping is incomplete or corrupt.
        """
        response = None
        if "response_status" in fields:
            response = StoredResponse(
                status=int(fields["response_status"]),
                headers=json.loads(fields.get("response_headers", "[]")),
                body_b64=fields.get("response_body", ""),
            )
        execution_time = fields.get("execution_time_ms")
        return cls(
            key=fields.get("key", ""),
            fingerprint=fields.get("fingerprint", ""),
            status=fields.get("status", ""),
            response=response,
            created_at=fields.get("created_at", ""),
            expires_at=fields.get("expires_at", ""),
            completed_at=fields.get("completed_at"),
            execution_time_ms=int(execution_time) if execution_time is not None else None,
        )


def response_fields(response: StoredResponse) -> dict[str, str]:
    """Flatten a stored response into hash fields."""
    return {
        "response_status": str(response.status),
        "response_headers": json.dumps(response.headers),
        "response_body": response.body_b64,
    }
