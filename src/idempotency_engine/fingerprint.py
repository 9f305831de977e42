"""Request fingerprinting for idempotency.

A fingerprint binds an idempotency key to the logical operation it was
issued for: the operation type (method), the resource identifier (path and
query) and the payload (body, plus any configured headers that change its
meaning). Two submissions with the same key and different fingerprints are
key reuse, not retries.
"""

import hashlib
import json
from urllib.parse import parse_qsl, urlencode

DEFAULT_FINGERPRINT_HEADERS = ("content-type",)


def compute_fingerprint(
    method: str,
    path: str,
    query_string: str,
    headers: dict[str, str],
    body: bytes,
    included_headers: list[str] | None = None,
) -> str:
    """Return the 64-character hex SHA-256 fingerprint of a request.

    The hashed input is one canonical line per component: upper-cased
    method, normalised path, sorted query, selected headers as compact JSON,
    and the SHA-256 of the body. Header names in ``included_headers`` are
    matched case-insensitively; by default only ``content-type`` counts.

    >>> fp = compute_fingerprint("POST", "/api/payments", "", {}, b'{"amount": 100}')
    >>> len(fp)
    64
    """
    if included_headers is None:
        included_headers = list(DEFAULT_FINGERPRINT_HEADERS)

    lines = (
        method.upper(),
        _canonicalize_path(path),
        _canonicalize_query_string(query_string),
        _canonicalize_headers(headers, included_headers),
        hashlib.sha256(body).hexdigest(),
    )
    return hashlib.sha256("\n".join(lines).encode("utf-8")).hexdigest()


def _canonicalize_path(path: str) -> str:
    """Lower-case the path and strip trailing slashes; empty means root."""
    return path.lower().rstrip("/") or "/"


def _canonicalize_query_string(query_string: str) -> str:
    """Sort parameters by name, then value, keeping blank values."""
    if not query_string.strip():
        return ""
    return urlencode(sorted(parse_qsl(query_string, keep_blank_values=True)))


def _canonicalize_headers(headers: dict[str, str], included_headers: list[str]) -> str:
    wanted = {name.lower() for name in included_headers}
    selected = {
        name.lower(): value.strip() for name, value in headers.items() if name.lower() in wanted
    }
    return json.dumps(selected, sort_keys=True, separators=(",", ":"))
