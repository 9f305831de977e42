"""ASGI middleware adapter for Starlette and FastAPI applications.

The middleware:
1. Leaves non-HTTP scopes and methods that need no idempotency untouched
2. Reads the request body, stopping at ``max_body_bytes``, and converts the
   scope to the engine's Request
3. Runs the downstream app with ``send`` routed through the engine's
   response capture, so the response streams to the client unchanged
   while a copy is cached; header lists, repeats included, pass through as-is
4. Ties the engine lifecycle to ASGI lifespan events

Examples:
    FastAPI integration::

        from fastapi import FastAPI
        from idempotency_engine.adapters.asgi import ASGIIdempotencyMiddleware
        from idempotency_engine.config import IdempotencyConfig

        app = FastAPI()
        app.add_middleware(
            ASGIIdempotencyMiddleware,
            config=IdempotencyConfig(lock_lease_seconds=15),
        )

        @app.post("/api/payments")
        async def create_payment(data: PaymentData):
            return {"status": "success"}

    Sharing an engine::

        engine = IdempotencyEngine(MemoryCacheStore(), config)
        app.add_middleware(ASGIIdempotencyMiddleware, engine=engine)
"""

from starlette.requests import Request as StarletteRequest
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from idempotency_engine.config import IdempotencyConfig
from idempotency_engine.core.audit import AuditSink
from idempotency_engine.core.capture import ResponseSink
from idempotency_engine.core.engine import IdempotencyEngine, Request
from idempotency_engine.utils.headers import HeaderList


class ASGISink:
    """ResponseSink that writes ASGI response messages to ``send``."""

    def __init__(self, send: Send) -> None:
        self._send = send

    async def start(self, status: int, headers: HeaderList) -> None:
        await self._send(
            {
                "type": "http.response.start",
                "status": status,
                "headers": [
                    (name.lower().encode("latin-1"), value.encode("latin-1"))
                    for name, value in headers
                ],
            }
        )

    async def write(self, chunk: bytes, more_body: bool = False) -> None:
        await self._send({"type": "http.response.body", "body": chunk, "more_body": more_body})


class ASGIIdempotencyMiddleware:
    """Pure ASGI middleware running requests through an IdempotencyEngine.

    Attributes:
        app: The wrapped ASGI application
        engine: The idempotency engine
    """

    def __init__(
        self,
        app: ASGIApp,
        engine: IdempotencyEngine | None = None,
        config: IdempotencyConfig | None = None,
        audit_sink: AuditSink | None = None,
    ) -> None:
        """Initialize the middleware.

        Args:
            app: The ASGI application
            engine: Engine to use; when omitted one is built from ``config``
                and owned by the middleware
            config: Configuration for the owned engine
            audit_sink: Durable sink for the owned engine
        """
        self.app = app
        self._owns_engine = engine is None
        self.engine = engine or IdempotencyEngine.from_config(
            config or IdempotencyConfig(), audit_sink
        )

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "lifespan":
            await self.app(scope, self._lifespan_receive(receive), send)
            return

        if scope["type"] != "http" or not self.engine.config.requires_key(scope["method"]):
            await self.app(scope, receive, send)
            return

        starlette_request = StarletteRequest(scope, receive)
        body, body_size = await self._read_body(starlette_request)
        request = Request(
            method=starlette_request.method,
            path=starlette_request.url.path,
            query_string=starlette_request.url.query or "",
            headers=dict(starlette_request.headers.items()),
            body=body,
            body_size=body_size,
        )

        async def call_next(_request: Request, sink: ResponseSink) -> None:
            await self.app(scope, _replay_receive(body, receive), _sink_send(sink, send))

        await self.engine.process(request, call_next, ASGISink(send))

    async def _read_body(self, request: StarletteRequest) -> tuple[bytes, int]:
        """Read the request body without holding more than max_body_bytes.

        Returns:
            The body and its size. Past the limit the body is empty and the
            size is the declared Content-Length, or the bytes seen so far.
        """
        limit = self.engine.config.max_body_bytes
        declared = request.headers.get("content-length", "")
        if limit and declared.isdigit() and int(declared) > limit:
            return b"", int(declared)

        chunks: list[bytes] = []
        size = 0
        async for chunk in request.stream():
            size += len(chunk)
            if limit and size > limit:
                return b"", size
            chunks.append(chunk)
        return b"".join(chunks), size

    def _lifespan_receive(self, receive: Receive) -> Receive:
        async def wrapped() -> Message:
            message = await receive()
            if message["type"] == "lifespan.startup":
                await self.engine.start()
            elif message["type"] == "lifespan.shutdown":
                if self._owns_engine:
                    await self.engine.aclose()
                else:
                    await self.engine.stop()
            return message

        return wrapped


def _replay_receive(body: bytes, receive: Receive) -> Receive:
    """Hand the already-read body to the app once, then defer to the client."""
    sent = False

    async def wrapped() -> Message:
        nonlocal sent
        if not sent:
            sent = True
            return {"type": "http.request", "body": body, "more_body": False}
        return await receive()

    return wrapped


def _sink_send(sink: ResponseSink, send: Send) -> Send:
    """Route response messages through a sink; pass anything else through."""

    async def wrapped(message: Message) -> None:
        message_type = message["type"]
        if message_type == "http.response.start":
            headers = [
                (raw_name.decode("latin-1"), raw_value.decode("latin-1"))
                for raw_name, raw_value in message.get("headers", [])
            ]
            await sink.start(message["status"], headers)
        elif message_type == "http.response.body":
            await sink.write(message.get("body", b""), message.get("more_body", False))
        else:
            await send(message)

    return wrapped
