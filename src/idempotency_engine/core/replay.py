"""Response types and replay of cached responses.

Replaying a completed record returns the stored status and body verbatim.
Volatile headers were already filtered when the response was stored; the
replay adds ``Idempotent-Replay: true`` and echoes the idempotency key.

Examples:
    >>> response = replay_response(record, "uuid-123")
    >>> dict(response.headers)["Idempotent-Replay"]
    'true'
"""

import json
from collections.abc import Iterable, Mapping

from idempotency_engine.exceptions import IdempotencyError, LockContendedError
from idempotency_engine.models import IdempotencyRecord
from idempotency_engine.utils.headers import (
    KEY_HEADER,
    HeaderList,
    add_replay_headers,
    as_header_list,
    filter_response_headers,
)


class Response:
    """A complete response: status, headers and body.

    Attributes:
        status: HTTP status code (e.g., 200, 409)
        headers: Ordered (name, value) pairs; a mapping passed to the
            constructor is converted
        body: Response body as bytes
    """

    def __init__(
        self,
        status: int,
        headers: Mapping[str, str] | Iterable[tuple[str, str]],
        body: bytes,
    ) -> None:
        self.status = status
        self.headers: HeaderList = as_header_list(headers)
        self.body = body

    def __repr__(self) -> str:
        return f"Response(status={self.status}, body={len(self.body)} bytes)"


def replay_response(record: IdempotencyRecord, key: str) -> Response:
    """Reconstruct the response stored with a completed record.

    Args:
        record: A COMPLETED idempotency record.
        key: The idempotency key of the current request.

    Returns:
        Response with the stored status and body and replay headers.

    Raises:
        ValueError: If the record has no stored response.
    """
    if record.response is None:
        raise ValueError(f"Record {record.key} has no stored response")

    stored = record.response
    headers = add_replay_headers(filter_response_headers(stored.headers), key, is_replay=True)

    return Response(
        status=stored.status,
        headers=headers,
        body=stored.get_body_bytes(),
    )


def error_response(error: IdempotencyError, key: str | None = None) -> Response:
    """Render an engine error as a JSON response.

    Contention errors carry ``Retry-After`` so clients know when the key's
    lease will have run out at the latest.
    """
    headers = [("content-type", "application/json")]
    if key:
        headers.append((KEY_HEADER, key))
    if isinstance(error, LockContendedError):
        headers.append(("Retry-After", str(error.retry_after)))

    body = json.dumps({"error": error.code, "detail": error.message}).encode("utf-8")
    return Response(status=error.status_code, headers=headers, body=body)
