"""
Pytest configuration and shared fixtures for idempotency_engine tests.
"""

import pytest

from idempotency_engine.config import IdempotencyConfig
from idempotency_engine.core.engine import IdempotencyEngine, Request
from idempotency_engine.storage.memory import MemoryCacheStore


class FakeClock:
    """Manually advanced monotonic clock for the in-memory store."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    """Provide a fake clock starting at an arbitrary instant."""
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> MemoryCacheStore:
    """Provide an in-memory cache store driven by the fake clock."""
    return MemoryCacheStore(clock=clock)


@pytest.fixture
def config() -> IdempotencyConfig:
    """Provide a configuration with short, test-friendly durations."""
    return IdempotencyConfig(lock_lease_seconds=30, record_ttl_seconds=3600)


@pytest.fixture
def engine(store: MemoryCacheStore, config: IdempotencyConfig) -> IdempotencyEngine:
    """Provide an engine over the fake-clock memory store."""
    return IdempotencyEngine(store, config)


@pytest.fixture
def sample_idempotency_key() -> str:
    """Provide a sample idempotency key for tests."""
    return "test-key-12345"


@pytest.fixture
def sample_request_body() -> bytes:
    """Provide a sample request body for tests."""
    return b'{"data": "test"}'


@pytest.fixture
def make_request(sample_request_body: bytes):
    """Factory for engine requests with an idempotency key."""

    def _make(
        key: str | None = "test-key-12345",
        method: str = "POST",
        path: str = "/api/payments",
        body: bytes | None = None,
        headers: dict[str, str] | None = None,
        query_string: str = "",
    ) -> Request:
        all_headers = {"content-type": "application/json"}
        if key is not None:
            all_headers["Idempotency-Key"] = key
        all_headers.update(headers or {})
        return Request(
            method=method,
            path=path,
            query_string=query_string,
            headers=all_headers,
            body=sample_request_body if body is None else body,
        )

    return _make
