"""Cache store backends for the idempotency engine.

All backends implement the CacheStore protocol defined in base.py.

Available Backends:
    - MemoryCacheStore: Single-process store with lazy expiry
    - RedisCacheStore: Redis store for multi-worker deployments
"""

from idempotency_engine.config import IdempotencyConfig
from idempotency_engine.storage.base import CacheStore
from idempotency_engine.storage.memory import MemoryCacheStore
from idempotency_engine.storage.redis_store import RedisCacheStore


def create_cache_store(config: IdempotencyConfig) -> CacheStore:
    """Build the cache store selected by the configuration."""
    if config.storage_adapter == "redis":
        return RedisCacheStore.from_url(config.redis_url)
    return MemoryCacheStore()


__all__ = [
    "CacheStore",
    "MemoryCacheStore",
    "RedisCacheStore",
    "create_cache_store",
]
