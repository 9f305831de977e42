"""Unit tests for response sinks and ResponseCapture."""

import pytest

from idempotency_engine.core.capture import BufferedSink, ResponseCapture, ResponseSink


class FailingSink:
    """Sink whose client went away after the headers."""

    def __init__(self) -> None:
        self.started = False

    async def start(self, status: int, headers: list[tuple[str, str]]) -> None:
        self.started = True

    async def write(self, chunk: bytes, more_body: bool = False) -> None:
        raise ConnectionResetError("client disconnected")


def test_sinks_implement_protocol():
    assert isinstance(BufferedSink(), ResponseSink)
    assert isinstance(ResponseCapture(BufferedSink()), ResponseSink)


@pytest.mark.asyncio
async def test_buffered_sink_collects_response():
    sink = BufferedSink()
    await sink.start(201, [("content-type", "application/json")])
    await sink.write(b'{"id": ', more_body=True)
    await sink.write(b"1}")

    response = sink.to_response()
    assert response.status == 201
    assert response.headers == [("content-type", "application/json")]
    assert response.body == b'{"id": 1}'


def test_buffered_sink_without_response():
    with pytest.raises(RuntimeError):
        BufferedSink().to_response()


@pytest.mark.asyncio
async def test_capture_forwards_and_copies():
    inner = BufferedSink()
    capture = ResponseCapture(inner, extra_headers={"Idempotent-Replay": "false"})

    await capture.start(200, [("content-type", "text/plain"), ("date", "today")])
    await capture.write(b"hello ", more_body=True)
    await capture.write(b"world")

    assert inner.to_response().body == b"hello world"
    assert dict(inner.headers)["Idempotent-Replay"] == "false"
    assert capture.captured
    assert capture.status == 200
    assert capture.body == b"hello world"
    assert "Idempotent-Replay" not in dict(capture.headers)


@pytest.mark.asyncio
async def test_repeated_headers_forwarded_and_stored():
    inner = BufferedSink()
    capture = ResponseCapture(inner, extra_headers={"Idempotent-Replay": "false"})
    cookies = [("set-cookie", "session=abc"), ("set-cookie", "theme=dark")]

    await capture.start(200, [("content-type", "text/plain"), *cookies, ("date", "today")])
    await capture.write(b"ok")

    assert inner.headers == [
        ("content-type", "text/plain"),
        *cookies,
        ("date", "today"),
        ("Idempotent-Replay", "false"),
    ]
    assert capture.to_stored_response().headers == [("content-type", "text/plain"), *cookies]


@pytest.mark.asyncio
async def test_extra_headers_replace_same_name():
    inner = BufferedSink()
    capture = ResponseCapture(inner, extra_headers={"Idempotency-Key": "uuid-123"})

    await capture.start(200, [("idempotency-key", "stale"), ("x-a", "1")])

    assert inner.headers == [("x-a", "1"), ("Idempotency-Key", "uuid-123")]


@pytest.mark.asyncio
async def test_to_stored_response_filters_volatile_headers():
    capture = ResponseCapture(BufferedSink())
    await capture.start(201, [("content-type", "text/plain"), ("date", "today"), ("server", "x")])
    await capture.write(b"created")

    stored = capture.to_stored_response()

    assert stored.status == 201
    assert stored.headers == [("content-type", "text/plain")]
    assert stored.get_body_bytes() == b"created"


@pytest.mark.asyncio
async def test_incomplete_response_not_captured():
    capture = ResponseCapture(BufferedSink())
    await capture.start(200, [])
    await capture.write(b"partial", more_body=True)

    assert capture.started
    assert not capture.finished
    assert not capture.captured
    with pytest.raises(RuntimeError):
        capture.to_stored_response()


@pytest.mark.asyncio
async def test_unstarted_response_not_captured():
    capture = ResponseCapture(BufferedSink())
    assert not capture.started
    assert not capture.captured


@pytest.mark.asyncio
async def test_overflow_stops_capture_but_keeps_forwarding():
    inner = BufferedSink()
    capture = ResponseCapture(inner, max_bytes=10)

    await capture.start(200, [])
    await capture.write(b"0123456789", more_body=True)
    await capture.write(b"abc", more_body=True)
    await capture.write(b"def")

    assert inner.to_response().body == b"0123456789abcdef"
    assert capture.finished
    assert not capture.captured
    assert "exceeds 10 bytes" in capture.failure
    assert capture.body == b""


@pytest.mark.asyncio
async def test_exact_limit_is_captured():
    capture = ResponseCapture(BufferedSink(), max_bytes=5)
    await capture.start(200, [])
    await capture.write(b"12345")

    assert capture.captured


@pytest.mark.asyncio
async def test_zero_limit_is_unlimited():
    capture = ResponseCapture(BufferedSink(), max_bytes=0)
    await capture.start(200, [])
    await capture.write(b"x" * 100_000)

    assert capture.captured
    assert len(capture.body) == 100_000


@pytest.mark.asyncio
async def test_inner_failure_propagates():
    capture = ResponseCapture(FailingSink())
    await capture.start(200, [])

    with pytest.raises(ConnectionResetError):
        await capture.write(b"body")
