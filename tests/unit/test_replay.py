"""Unit tests for response replay and error rendering."""

import json
from datetime import UTC, datetime, timedelta

import pytest

from idempotency_engine.core.replay import Response, error_response, replay_response
from idempotency_engine.exceptions import (
    AlreadyProcessingError,
    FingerprintMismatchError,
    LockContendedError,
    MissingKeyError,
    StoreUnavailableError,
)
from idempotency_engine.models import IdempotencyRecord, RecordStatus, StoredResponse


def _completed(response: StoredResponse) -> IdempotencyRecord:
    now = datetime.now(UTC)
    return IdempotencyRecord(
        key="test-key",
        fingerprint="a" * 64,
        status=RecordStatus.COMPLETED,
        response=response,
        created_at=now,
        expires_at=now + timedelta(hours=1),
        completed_at=now,
    )


def test_replay_response_basic() -> None:
    """Stored status and body come back verbatim with replay headers."""
    body = b'{"result": "success"}'
    record = _completed(
        StoredResponse.from_body(201, [("content-type", "application/json")], body)
    )

    response = replay_response(record, "test-key")

    assert isinstance(response, Response)
    assert response.status == 201
    assert response.body == body
    headers = dict(response.headers)
    assert headers["content-type"] == "application/json"
    assert headers["Idempotent-Replay"] == "true"
    assert headers["Idempotency-Key"] == "test-key"


def test_replay_response_filters_volatile_headers() -> None:
    record = _completed(
        StoredResponse.from_body(200, [("content-type", "text/plain"), ("date", "yesterday")], b"ok")
    )

    response = replay_response(record, "test-key")

    assert "date" not in dict(response.headers)


def test_replay_keeps_repeated_headers() -> None:
    cookies = [("set-cookie", "a=1"), ("set-cookie", "b=2")]
    record = _completed(StoredResponse.from_body(200, cookies, b"ok"))

    response = replay_response(record, "test-key")

    assert [value for name, value in response.headers if name == "set-cookie"] == ["a=1", "b=2"]


def test_response_accepts_mapping() -> None:
    response = Response(200, {"content-type": "text/plain"}, b"ok")

    assert response.headers == [("content-type", "text/plain")]


def test_replay_preserves_error_status() -> None:
    """A handled error response is an outcome like any other."""
    record = _completed(StoredResponse.from_body(402, [], b'{"error": "card_declined"}'))

    response = replay_response(record, "test-key")

    assert response.status == 402
    assert response.body == b'{"error": "card_declined"}'


def test_replay_without_response_raises() -> None:
    now = datetime.now(UTC)
    record = IdempotencyRecord(
        key="test-key",
        fingerprint="a" * 64,
        status=RecordStatus.PROCESSING,
        created_at=now,
        expires_at=now + timedelta(hours=1),
    )

    with pytest.raises(ValueError):
        replay_response(record, "test-key")


class TestErrorResponse:
    def test_json_body(self) -> None:
        response = error_response(MissingKeyError("Idempotency-Key"))

        assert response.status == 400
        assert dict(response.headers)["content-type"] == "application/json"
        assert "Idempotency-Key" not in dict(response.headers)
        payload = json.loads(response.body)
        assert payload["error"] == "idempotency_key_missing"
        assert "Idempotency-Key" in payload["detail"]

    @pytest.mark.parametrize(
        "error",
        [LockContendedError("uuid-456", 30), AlreadyProcessingError("uuid-456", 30)],
    )
    def test_contention_carries_retry_after(self, error: LockContendedError) -> None:
        response = error_response(error, "uuid-456")

        assert response.status == 409
        headers = dict(response.headers)
        assert headers["Retry-After"] == "30"
        assert headers["Idempotency-Key"] == "uuid-456"

    def test_mismatch_has_no_retry_after(self) -> None:
        response = error_response(FingerprintMismatchError("uuid-789", "a" * 64, "b" * 64), "uuid-789")

        assert response.status == 422
        assert "Retry-After" not in dict(response.headers)
        assert json.loads(response.body)["error"] == "idempotency_key_reused"

    def test_store_unavailable(self) -> None:
        response = error_response(StoreUnavailableError("redis down"), "k")

        assert response.status == 503
        assert json.loads(response.body) == {
            "error": "idempotency_store_unavailable",
            "detail": "redis down",
        }
