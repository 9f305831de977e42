"""Response sinks and the write-through response capture.

A ResponseSink is the output channel a handler writes its response into:
a status line with headers, then one or more body chunks. The ASGI adapter
provides a sink over ``send``; BufferedSink collects a whole response in
memory for callers that want a return value.

ResponseCapture wraps any sink. Every byte is forwarded to the wrapped sink
unchanged and in order, and also appended to an in-memory copy that the
engine stores for replay. The copy is bounded by ``max_bytes``: once a
response outgrows it, or capturing fails for any other reason, the copy is
discarded and marked failed while forwarding carries on.

Headers are ordered (name, value) pairs. They are forwarded as given,
repeated names included; only the stored copy is filtered.

Examples:
    >>> buffer = BufferedSink()
    >>> capture = ResponseCapture(buffer, max_bytes=1024)
    >>> await capture.start(201, [("content-type", "application/json")])
    >>> await capture.write(b'{"id": 1}')
    >>> capture.captured
    True
    >>> buffer.to_response().body
    b'{"id": 1}'
"""

from typing import Protocol, runtime_checkable

from idempotency_engine.core.replay import Response
from idempotency_engine.models import StoredResponse
from idempotency_engine.observability.logging import get_logger
from idempotency_engine.utils.headers import HeaderList, filter_response_headers

logger = get_logger(__name__)


@runtime_checkable
class ResponseSink(Protocol):
    """Output channel for one response."""

    async def start(self, status: int, headers: HeaderList) -> None:
        """Begin the response. Called exactly once, before any write."""
        ...

    async def write(self, chunk: bytes, more_body: bool = False) -> None:
        """Write a body chunk; more_body=False marks the final chunk."""
        ...


class BufferedSink:
    """Sink that keeps the whole response in memory."""

    def __init__(self) -> None:
        self.status: int | None = None
        self.headers: HeaderList = []
        self._chunks: list[bytes] = []

    async def start(self, status: int, headers: HeaderList) -> None:
        self.status = status
        self.headers = list(headers)

    async def write(self, chunk: bytes, more_body: bool = False) -> None:
        self._chunks.append(bytes(chunk))

    def to_response(self) -> Response:
        """Return the collected response.

        Raises:
            RuntimeError: If nothing was written to the sink.
        """
        if self.status is None:
            raise RuntimeError("Handler completed without starting a response")
        return Response(status=self.status, headers=self.headers, body=b"".join(self._chunks))


class ResponseCapture:
    """Write-through sink that duplicates a response into memory.

    Attributes:
        status: Status code passed to start(), None until then.
        headers: Headers passed to start(), before extra_headers are added.
        failure: Why capturing stopped, None while the copy is intact.
        finished: Whether the final chunk has been written.
    """

    def __init__(
        self,
        inner: ResponseSink,
        max_bytes: int = 0,
        extra_headers: dict[str, str] | None = None,
    ) -> None:
        """Wrap a sink.

        Args:
            inner: The real destination.
            max_bytes: Largest body kept in memory, 0 for unlimited.
            extra_headers: Headers set on the forwarded response only,
                replacing any of the same name; they are not part of the
                captured copy.
        """
        self._inner = inner
        self._max_bytes = max_bytes
        self._extra_headers = extra_headers or {}
        self._chunks: list[bytes] = []
        self._size = 0
        self.status: int | None = None
        self.headers: HeaderList = []
        self.failure: str | None = None
        self.finished = False

    @property
    def started(self) -> bool:
        return self.status is not None

    @property
    def captured(self) -> bool:
        """Whether a complete, intact copy of the response is available."""
        return self.started and self.finished and self.failure is None

    def _fail(self, reason: str) -> None:
        if self.failure is None:
            logger.warning("capture.failed", reason=reason, bytes_seen=self._size)
        self.failure = reason
        self._chunks = []

    def _capture(self, chunk: bytes) -> None:
        if self.failure is not None:
            self._size += len(chunk)
            return
        try:
            self._size += len(chunk)
            if self._max_bytes and self._size > self._max_bytes:
                self._fail(f"response exceeds {self._max_bytes} bytes")
                return
            self._chunks.append(bytes(chunk))
        except Exception as e:
            self._fail(f"{type(e).__name__}: {e}")

    async def start(self, status: int, headers: HeaderList) -> None:
        self.status = status
        self.headers = list(headers)
        replaced = {name.lower() for name in self._extra_headers}
        forwarded = [(name, value) for name, value in headers if name.lower() not in replaced]
        forwarded.extend(self._extra_headers.items())
        await self._inner.start(status, forwarded)

    async def write(self, chunk: bytes, more_body: bool = False) -> None:
        self._capture(chunk)
        if not more_body:
            self.finished = True
        await self._inner.write(chunk, more_body)

    @property
    def body(self) -> bytes:
        return b"".join(self._chunks)

    def to_stored_response(self) -> StoredResponse:
        """Build the cacheable form of the captured response.

        Raises:
            RuntimeError: If no intact copy is available.
        """
        if not self.captured or self.status is None:
            raise RuntimeError(f"Response was not captured: {self.failure or 'incomplete'}")
        return StoredResponse.from_body(
            status=self.status,
            headers=filter_response_headers(self.headers),
            body=self.body,
        )
