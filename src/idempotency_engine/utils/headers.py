"""Response header handling shared by capture and replay.

Response headers travel as an ordered list of ``(name, value)`` pairs so
repeated headers such as ``Set-Cookie`` survive forwarding, storage and
replay. Captured responses are stored without connection-level headers, and
every response the engine produces for a keyed request carries two markers:
``Idempotent-Replay`` (``true`` on replays) and the echoed ``Idempotency-Key``.
"""

from collections.abc import Iterable, Mapping

REPLAY_HEADER = "Idempotent-Replay"
KEY_HEADER = "Idempotency-Key"

HeaderList = list[tuple[str, str]]

# Hop-by-hop and per-connection headers; lower-case
VOLATILE_HEADERS = frozenset(
    {
        "connection",
        "date",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "proxy-connection",
        "server",
        "trailer",
        "transfer-encoding",
        "upgrade",
    }
)

_ENGINE_MARKERS = frozenset({REPLAY_HEADER.lower(), KEY_HEADER.lower()})


def as_header_list(headers: Mapping[str, str] | Iterable[tuple[str, str]]) -> HeaderList:
    """Normalise a mapping or an iterable of pairs to a new header list.

    >>> as_header_list({"Content-Type": "text/plain"})
    [('Content-Type', 'text/plain')]
    """
    if isinstance(headers, Mapping):
        return list(headers.items())
    return [(name, value) for name, value in headers]


def filter_response_headers(
    headers: HeaderList,
    additional_volatile: list[str] | None = None,
) -> HeaderList:
    """Drop volatile headers and engine markers before a response is stored.

    Args:
        headers: Response headers as produced by the handler.
        additional_volatile: Extra header names to drop, any case.

    Returns:
        A new list in the original order; the input is left untouched.
    """
    dropped = VOLATILE_HEADERS | _ENGINE_MARKERS
    if additional_volatile:
        dropped = dropped | {name.lower() for name in additional_volatile}
    return [(name, value) for name, value in headers if name.lower() not in dropped]


def add_replay_headers(
    headers: HeaderList,
    idempotency_key: str,
    is_replay: bool = True,
) -> HeaderList:
    """Copy ``headers`` with both idempotency markers set on the copy.

    Markers already present, in any case, are replaced rather than repeated.
    """
    marked = [(name, value) for name, value in headers if name.lower() not in _ENGINE_MARKERS]
    marked.append((REPLAY_HEADER, "true" if is_replay else "false"))
    marked.append((KEY_HEADER, idempotency_key))
    return marked


def get_header_value(
    headers: Mapping[str, str] | Iterable[tuple[str, str]],
    header_name: str,
    default: str | None = None,
) -> str | None:
    """Case-insensitive lookup of the first value; ``default`` when absent.

    >>> get_header_value({"Idempotency-Key": "uuid-123"}, "idempotency-key")
    'uuid-123'
    """
    wanted = header_name.lower()
    pairs = headers.items() if isinstance(headers, Mapping) else headers
    return next((value for name, value in pairs if name.lower() == wanted), default)
