"""The idempotency engine: request interception and the key state machine.

For every request whose method requires idempotency the engine:

1. Extracts and validates the idempotency key and the body size
2. Computes the request fingerprint
3. Reads the record for the key and branches on what it finds:

   - no record: take the key's lock (fail fast with 409 if contended),
     insert a PROCESSING record, run the handler through a ResponseCapture,
     mark the record COMPLETED, release the lock, hand the operation to the
     durable sink, and return the handler's own response
   - PROCESSING record: 409, the original request is still in flight
   - COMPLETED record: replay the stored status and body
   - either, with a different fingerprint: 422, the key was reused

The absent -> lock -> create sequence is the only point where two racers
can disagree, and the lock's test-and-set settles it. Every other branch
reads state that is already settled.

Requests with other methods bypass the engine untouched.

Examples:
    Direct use with a handler that returns a response::

        from idempotency_engine import IdempotencyConfig, IdempotencyEngine
        from idempotency_engine.core.engine import Request
        from idempotency_engine.core.replay import Response

        engine = IdempotencyEngine.from_config(IdempotencyConfig())

        async def create_payment(request: Request) -> Response:
            return Response(status=201, headers={}, body=b'{"id": "pay_1"}')

        response = await engine.handle(request, create_payment)
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from enum import Enum

from idempotency_engine.config import IdempotencyConfig
from idempotency_engine.core.audit import AuditDispatcher, AuditEvent, AuditSink
from idempotency_engine.core.capture import BufferedSink, ResponseCapture, ResponseSink
from idempotency_engine.core.locks import Lease, LockManager
from idempotency_engine.core.records import RecordStore
from idempotency_engine.core.replay import Response, error_response, replay_response
from idempotency_engine.exceptions import (
    AlreadyProcessingError,
    FingerprintMismatchError,
    IdempotencyError,
    InvalidKeyError,
    LockContendedError,
    MissingKeyError,
    RecordExistsError,
    RecordNotFoundError,
    RequestTooLargeError,
    StoreUnavailableError,
)
from idempotency_engine.fingerprint import compute_fingerprint
from idempotency_engine.models import IdempotencyRecord, RecordStatus
from idempotency_engine.observability.logging import get_logger
from idempotency_engine.observability.metrics import record_handler_duration, record_request
from idempotency_engine.storage import create_cache_store
from idempotency_engine.storage.base import CacheStore
from idempotency_engine.utils.headers import KEY_HEADER, REPLAY_HEADER, get_header_value

logger = get_logger(__name__)


class Outcome(str, Enum):
    """How the engine answered a request."""

    BYPASSED = "bypassed"
    EXECUTED = "executed"
    REPLAYED = "replayed"
    CONTENDED = "contended"
    IN_FLIGHT = "in_flight"
    MISMATCH = "mismatch"
    REJECTED = "rejected"
    UNAVAILABLE = "unavailable"


class Request:
    """Framework-independent request.

    Adapters convert their framework's request objects into this form.

    Attributes:
        method: HTTP method (GET, POST, etc.)
        path: URL path
        query_string: Query string without leading '?'
        headers: Request headers as dict
        body: Request body as bytes
        body_size: Size of the whole body when ``body`` holds only part of
            it, as when an adapter stops reading at the size limit
    """

    def __init__(
        self,
        method: str,
        path: str,
        query_string: str = "",
        headers: dict[str, str] | None = None,
        body: bytes = b"",
        body_size: int | None = None,
    ) -> None:
        self.method = method
        self.path = path
        self.query_string = query_string
        self.headers = headers or {}
        self.body = body
        self.body_size = len(body) if body_size is None else body_size


class EngineResult:
    """What the engine did with one request.

    Attributes:
        outcome: Which branch answered.
        status: Status code sent to the caller, None when bypassed or when
            the handler never started a response.
        key: The idempotency key, if one was extracted.
    """

    def __init__(self, outcome: Outcome, status: int | None, key: str | None = None) -> None:
        self.outcome = outcome
        self.status = status
        self.key = key

    @property
    def was_replayed(self) -> bool:
        return self.outcome == Outcome.REPLAYED


NextStage = Callable[[Request, ResponseSink], Awaitable[None]]
Handler = Callable[[Request], Awaitable[Response]]


def _outcome_for(error: IdempotencyError) -> Outcome:
    if isinstance(error, AlreadyProcessingError):
        return Outcome.IN_FLIGHT
    if isinstance(error, LockContendedError):
        return Outcome.CONTENDED
    if isinstance(error, FingerprintMismatchError):
        return Outcome.MISMATCH
    if isinstance(error, StoreUnavailableError):
        return Outcome.UNAVAILABLE
    return Outcome.REJECTED


async def _send(sink: ResponseSink, response: Response) -> None:
    await sink.start(response.status, response.headers)
    await sink.write(response.body)


class IdempotencyEngine:
    """At-most-once execution per idempotency key.

    The engine owns its cache store for its whole lifetime and closes it in
    aclose(). Record and lock keys share the configured prefix but live in
    separate namespaces.

    Attributes:
        cache: The backing cache store.
        config: Engine configuration.
        records: Record lifecycle over the cache.
        locks: Per-key lease locks over the cache.
    """

    def __init__(
        self,
        cache: CacheStore,
        config: IdempotencyConfig | None = None,
        audit_sink: AuditSink | None = None,
    ) -> None:
        self.cache = cache
        self.config = config or IdempotencyConfig()
        self.records = RecordStore(cache, self.config.key_prefix)
        self.locks = LockManager(cache, self.config.key_prefix)
        self._dispatcher = (
            AuditDispatcher(audit_sink, self.config.audit_queue_size)
            if audit_sink is not None
            else None
        )

    @classmethod
    def from_config(
        cls,
        config: IdempotencyConfig,
        audit_sink: AuditSink | None = None,
    ) -> "IdempotencyEngine":
        """Build an engine and the cache store its configuration selects."""
        return cls(create_cache_store(config), config, audit_sink)

    async def start(self) -> None:
        """Start the durable sink worker. Safe to call repeatedly."""
        if self._dispatcher is not None:
            await self._dispatcher.start()

    async def stop(self) -> None:
        """Drain and stop the durable sink worker; the cache stays open."""
        if self._dispatcher is not None:
            await self._dispatcher.stop()

    async def aclose(self) -> None:
        """Stop the durable sink worker and close the cache store."""
        await self.stop()
        await self.cache.aclose()

    async def handle(self, request: Request, handler: Handler) -> Response:
        """Run a response-returning handler under idempotency protection.

        Returns:
            The handler's response, a replayed response, or an error response.

        Raises:
            Exception: Whatever the handler raises, unchanged.
        """
        buffer = BufferedSink()

        async def call_next(req: Request, sink: ResponseSink) -> None:
            response = await handler(req)
            await _send(sink, response)

        await self.process(request, call_next, buffer)
        return buffer.to_response()

    async def process(
        self,
        request: Request,
        call_next: NextStage,
        sink: ResponseSink,
    ) -> EngineResult:
        """Intercept one request.

        Either writes a short-circuit response (validation error, contention,
        in-flight duplicate, key reuse, store failure, replay) to ``sink``,
        or delegates to ``call_next`` with a capturing wrapper around
        ``sink`` and records the outcome.

        Raises:
            Exception: Whatever call_next raises, unchanged. The lock is
                released and the record stays PROCESSING.
        """
        if not self.config.requires_key(request.method):
            await call_next(request, sink)
            return EngineResult(Outcome.BYPASSED, None)

        await self.start()

        key: str | None = None
        try:
            key = self._extract_key(request)
            self._validate_request_size(request)
            fingerprint = compute_fingerprint(
                method=request.method,
                path=request.path,
                query_string=request.query_string,
                headers=request.headers,
                body=request.body,
                included_headers=list(self.config.fingerprint_headers),
            )
            admitted = await self._admit(key, fingerprint)
        except IdempotencyError as e:
            return await self._reject(e, key, sink)

        if isinstance(admitted, Response):
            logger.info("request.replayed", key=key, status_code=admitted.status)
            record_request(Outcome.REPLAYED.value, admitted.status)
            await _send(sink, admitted)
            return EngineResult(Outcome.REPLAYED, admitted.status, key)

        lease, record = admitted
        return await self._execute(request, record, lease, call_next, sink)

    async def _admit(
        self, key: str, fingerprint: str
    ) -> tuple[Lease, IdempotencyRecord] | Response:
        """Decide whether this request may run.

        Returns:
            The lease and the new PROCESSING record when the caller must run
            the handler, or the replayed response of a completed record.

        Raises:
            LockContendedError: Another holder owns the lock.
            AlreadyProcessingError: The record is still PROCESSING.
            FingerprintMismatchError: The record belongs to another request.
            StoreUnavailableError: The cache store failed.
        """
        record = await self.records.get(key)
        if record is None:
            lease = await self.locks.acquire(key, self.config.lock_lease_seconds)
            if lease is None:
                logger.info("lock.contended", key=key)
                raise LockContendedError(key, self.config.lock_lease_seconds)
            try:
                created = await self.records.put_processing(
                    key, fingerprint, self.config.record_ttl_seconds
                )
                return lease, created
            except RecordExistsError:
                # Another request created the record between our read
                # and our lock; their record settles this request.
                await self._release(lease)
                record = await self.records.get(key)
                if record is None:
                    raise LockContendedError(key, self.config.lock_lease_seconds) from None
            except BaseException:
                await self._release(lease)
                raise

        return self._settled(record, key, fingerprint)

    def _settled(self, record: IdempotencyRecord, key: str, fingerprint: str) -> Response:
        if record.fingerprint != fingerprint:
            logger.warning(
                "request.key_reused",
                key=key,
                status=record.status.value,
                stored_fingerprint=record.fingerprint[:12],
                request_fingerprint=fingerprint[:12],
            )
            raise FingerprintMismatchError(key, record.fingerprint, fingerprint)
        if record.status == RecordStatus.PROCESSING:
            raise AlreadyProcessingError(key, self.config.lock_lease_seconds)
        return replay_response(record, key)

    async def _execute(
        self,
        request: Request,
        record: IdempotencyRecord,
        lease: Lease,
        call_next: NextStage,
        sink: ResponseSink,
    ) -> EngineResult:
        key = record.key
        capture = ResponseCapture(
            sink,
            max_bytes=self.config.max_response_bytes,
            extra_headers={REPLAY_HEADER: "false", KEY_HEADER: key},
        )
        logger.debug("handler.started", key=key, method=request.method, path=request.path)

        start_time = time.perf_counter()
        try:
            await call_next(request, capture)
            execution_time_ms = int((time.perf_counter() - start_time) * 1000)
            record_handler_duration(execution_time_ms)
            if lease.expired:
                logger.warning(
                    "lock.lease_overrun",
                    key=key,
                    lease_seconds=lease.lease_seconds,
                    execution_time_ms=execution_time_ms,
                )
            event = await self._complete(request, record, capture, execution_time_ms)
        except asyncio.CancelledError:
            logger.warning("handler.cancelled", key=key)
            raise
        except Exception as e:
            logger.warning(
                "handler.failed",
                key=key,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise
        finally:
            await self._release(lease)

        if event is not None and self._dispatcher is not None:
            self._dispatcher.enqueue(event)

        record_request(Outcome.EXECUTED.value, capture.status or 0)
        return EngineResult(Outcome.EXECUTED, capture.status, key)

    async def _complete(
        self,
        request: Request,
        record: IdempotencyRecord,
        capture: ResponseCapture,
        execution_time_ms: int,
    ) -> AuditEvent | None:
        """Cache the captured response on the record.

        When the response cannot be cached the record stays PROCESSING and
        expires by TTL; the caller still gets the real response.
        """
        key = record.key
        if not capture.captured or capture.status is None:
            logger.warning(
                "record.left_processing",
                key=key,
                reason=capture.failure or "response incomplete",
            )
            return None

        stored = capture.to_stored_response()
        try:
            completed_at = await self.records.complete(key, stored, execution_time_ms)
        except RecordNotFoundError:
            logger.warning("record.expired_before_completion", key=key)
            return None
        except StoreUnavailableError as e:
            logger.error("record.complete_failed", key=key, error=str(e))
            return None

        logger.info(
            "request.executed",
            key=key,
            status_code=stored.status,
            execution_time_ms=execution_time_ms,
        )
        return AuditEvent(
            key=key,
            fingerprint=record.fingerprint,
            method=request.method.upper(),
            path=request.path,
            status_code=stored.status,
            body_bytes=len(capture.body),
            created_at=record.created_at,
            completed_at=completed_at,
            execution_time_ms=execution_time_ms,
        )

    async def _release(self, lease: Lease) -> None:
        try:
            await self.locks.release(lease)
        except StoreUnavailableError as e:
            logger.error("lock.release_failed", key=lease.key, error=str(e))

    async def _reject(
        self,
        error: IdempotencyError,
        key: str | None,
        sink: ResponseSink,
    ) -> EngineResult:
        outcome = _outcome_for(error)
        if outcome == Outcome.UNAVAILABLE:
            logger.error("store.unavailable", key=key, error=error.message)
        else:
            logger.info("request.rejected", key=key, outcome=outcome.value, code=error.code)
        record_request(outcome.value, error.status_code)
        await _send(sink, error_response(error, key))
        return EngineResult(outcome, error.status_code, key)

    def _extract_key(self, request: Request) -> str:
        """Extract and validate the idempotency key.

        Raises:
            MissingKeyError: If the header is absent.
            InvalidKeyError: If the key is blank or too long.
        """
        raw = get_header_value(request.headers, self.config.key_header)
        if raw is None:
            raise MissingKeyError(self.config.key_header)

        key = raw.strip()
        if not key:
            raise InvalidKeyError("Idempotency key cannot be empty")
        if len(key) > self.config.max_key_length:
            raise InvalidKeyError(
                f"Idempotency key exceeds maximum length of {self.config.max_key_length} characters"
            )
        return key

    def _validate_request_size(self, request: Request) -> None:
        limit = self.config.max_body_bytes
        if limit and request.body_size > limit:
            raise RequestTooLargeError(request.body_size, limit)
