"""Exception hierarchy for the idempotency engine.

Every error the engine can surface to a caller derives from
IdempotencyError and carries the HTTP-equivalent status code and a stable
machine-readable code, so host adapters can render them without knowing
each subclass. Errors raised by the wrapped handler are never wrapped in
these types; they propagate unchanged.

Examples:
    Rendering an engine error::

        from idempotency_engine.exceptions import IdempotencyError

        try:
            result = await engine.handle(request, handler)
        except IdempotencyError as e:
            return JSONResponse(
                status_code=e.status_code,
                content={"error": e.code, "detail": e.message},
            )

    Mapping a backend failure::

        from idempotency_engine.exceptions import StoreUnavailableError

        try:
            await redis.hgetall(key)
        except RedisError as e:
            raise StoreUnavailableError(
                message=f"Failed to read {key}: {e}",
                cause=e,
            ) from e
"""


class IdempotencyError(Exception):
    """Base exception for all idempotency-related errors.

    Attributes:
        message: Human-readable error description.
        status_code: HTTP-equivalent status code for the caller.
        code: Stable machine-readable error code.
    """

    status_code: int = 500
    code: str = "idempotency_error"

    def __init__(self, message: str) -> None:
        """Initialize the exception with a message.

        Args:
            message: Human-readable error description.
        """
        self.message = message
        super().__init__(message)


class MissingKeyError(IdempotencyError):
    """A mutating request arrived without an idempotency key.

    Raised before any store access.
    """

    status_code = 400
    code = "idempotency_key_missing"

    def __init__(self, header_name: str) -> None:
        super().__init__(f"Header {header_name} is required for this method")
        self.header_name = header_name


class InvalidKeyError(IdempotencyError):
    """The idempotency key is empty or exceeds the configured length."""

    status_code = 400
    code = "idempotency_key_invalid"


class RequestTooLargeError(IdempotencyError):
    """The request body exceeds the size the engine will fingerprint."""

    status_code = 413
    code = "request_too_large"

    def __init__(self, size: int, limit: int) -> None:
        super().__init__(f"Request body of {size} bytes exceeds maximum size of {limit} bytes")
        self.size = size
        self.limit = limit


class LockContendedError(IdempotencyError):
    """Another holder owns the processing lock for this key.

    Retryable by the caller after a delay.

    Attributes:
        key: The contended idempotency key.
        retry_after: Suggested delay in seconds before retrying.
    """

    status_code = 409
    code = "idempotency_lock_contended"

    def __init__(self, key: str, retry_after: int) -> None:
        super().__init__(f"A request with key {key} is already being processed")
        self.key = key
        self.retry_after = retry_after


class AlreadyProcessingError(LockContendedError):
    """A record for this key exists and has not completed yet.

    Same caller contract as LockContendedError; kept distinct so logs and
    metrics show which branch of the state machine answered.
    """

    code = "idempotency_in_flight"


class FingerprintMismatchError(IdempotencyError):
    """The key was reused for a different logical operation.

    This is a client bug, not a retry: the stored record was created for a
    different method, resource or payload. The submission is never
    processed and never answered with the cached response.

    Attributes:
        key: The idempotency key that was reused.
        stored_fingerprint: The fingerprint stored with the record.
        request_fingerprint: The fingerprint of the incoming request.
    """

    status_code = 422
    code = "idempotency_key_reused"

    def __init__(
        self,
        key: str,
        stored_fingerprint: str,
        request_fingerprint: str,
    ) -> None:
        super().__init__(f"Idempotency key {key} was already used for a different request")
        self.key = key
        self.stored_fingerprint = stored_fingerprint
        self.request_fingerprint = request_fingerprint


class StoreUnavailableError(IdempotencyError):
    """The cache store could not complete an operation.

    The engine fails closed on this error: the request is neither processed
    nor cached, so it is safe for the caller to retry.

    Attributes:
        cause: The underlying exception raised by the backend, if any.
    """

    status_code = 503
    code = "idempotency_store_unavailable"

    def __init__(self, message: str, cause: Exception | None = None) -> None:
        super().__init__(message)
        self.cause = cause


class RecordExistsError(IdempotencyError):
    """A record already exists where a new PROCESSING record was expected."""

    status_code = 409
    code = "idempotency_record_exists"

    def __init__(self, key: str) -> None:
        super().__init__(f"Record for key {key} already exists")
        self.key = key


class RecordNotFoundError(IdempotencyError):
    """No PROCESSING record exists for the key being completed."""

    code = "idempotency_record_not_found"

    def __init__(self, key: str) -> None:
        super().__init__(f"No processing record for key {key}")
        self.key = key
