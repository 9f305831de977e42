"""Redis-backed cache store.

Entries are Redis hashes and locks are plain string keys holding the
owner token. Conditional hash writes and owner-checked lock release run as
Lua scripts so each is a single atomic step on the server; lock
acquisition is ``SET key token NX PX lease``.

Every Redis failure is mapped to StoreUnavailableError so the engine can
fail closed without knowing about redis-py.

Examples:
    Production wiring::

        from redis.asyncio import Redis
        from idempotency_engine.storage.redis_store import RedisCacheStore

        store = RedisCacheStore(Redis.from_url("redis://cache:6379/0"))

    Tests::

        from fakeredis.aioredis import FakeRedis

        store = RedisCacheStore(FakeRedis())
"""

from typing import Any, cast

from redis.asyncio import Redis
from redis.exceptions import RedisError

from idempotency_engine.exceptions import StoreUnavailableError

# KEYS[1] = entry key
# ARGV[1] = mode: "absent" | "field" | "any"
# ARGV[2], ARGV[3] = guard field and expected value (mode "field")
# ARGV[4] = ttl in ms, or "-1" to keep the current expiry
# ARGV[5..] = field/value pairs
_SET_FIELDS_LUA = """
local key = KEYS[1]
local mode = ARGV[1]
if mode == 'absent' then
  if redis.call('EXISTS', key) == 1 then
    return 0
  end
elseif mode == 'field' then
  if redis.call('HGET', key, ARGV[2]) ~= ARGV[3] then
    return 0
  end
end
for i = 5, #ARGV, 2 do
  redis.call('HSET', key, ARGV[i], ARGV[i + 1])
end
local ttl = tonumber(ARGV[4])
if ttl and ttl > 0 then
  redis.call('PEXPIRE', key, ttl)
end
return 1
"""

# Delete the lock only while it still holds the caller's token.
_RELEASE_LUA = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
  return redis.call('DEL', KEYS[1])
end
return 0
"""


def _decode(value: Any) -> str:
    if isinstance(value, (bytes, bytearray)):
        return value.decode("utf-8")
    return str(value)


def _to_ms(seconds: float) -> int:
    return max(1, int(seconds * 1000))


class RedisCacheStore:
    """CacheStore over a redis.asyncio client.

    The store owns the client: aclose() closes it.
    """

    def __init__(self, redis: Redis) -> None:
        self.r = redis

    @classmethod
    def from_url(cls, url: str) -> "RedisCacheStore":
        """Create a store with a new client for the given URL."""
        return cls(Redis.from_url(url))

    async def _eval(self, script: str, numkeys: int, *args: str) -> Any:
        """Typed wrapper around redis-py's eval."""
        return await cast(Any, self.r).eval(script, numkeys, *args)

    async def exists(self, key: str) -> bool:
        try:
            return bool(await self.r.exists(key))
        except RedisError as e:
            raise StoreUnavailableError(f"Failed to check {key} in Redis: {e}", cause=e) from e

    async def get_field(self, key: str, field: str) -> str | None:
        try:
            value = await cast(Any, self.r).hget(key, field)
        except RedisError as e:
            raise StoreUnavailableError(f"Failed to read {key} from Redis: {e}", cause=e) from e
        return None if value is None else _decode(value)

    async def get_fields(self, key: str) -> dict[str, str] | None:
        try:
            raw = await cast(Any, self.r).hgetall(key)
        except RedisError as e:
            raise StoreUnavailableError(f"Failed to read {key} from Redis: {e}", cause=e) from e
        if not raw:
            return None
        return {_decode(k): _decode(v) for k, v in raw.items()}

    async def set_fields(
        self,
        key: str,
        fields: dict[str, str],
        *,
        only_if_absent: bool = False,
        only_if_field: tuple[str, str] | None = None,
        ttl_seconds: float | None = None,
    ) -> bool:
        if only_if_absent:
            mode, guard = "absent", ("", "")
        elif only_if_field is not None:
            mode, guard = "field", only_if_field
        else:
            mode, guard = "any", ("", "")
        ttl_ms = str(_to_ms(ttl_seconds)) if ttl_seconds is not None else "-1"

        args = [mode, guard[0], guard[1], ttl_ms]
        for name, value in fields.items():
            args.extend((name, value))

        try:
            result = await self._eval(_SET_FIELDS_LUA, 1, key, *args)
        except RedisError as e:
            raise StoreUnavailableError(f"Failed to write {key} to Redis: {e}", cause=e) from e
        return bool(result)

    async def set_expiry(self, key: str, ttl_seconds: float) -> bool:
        try:
            return bool(await self.r.pexpire(key, _to_ms(ttl_seconds)))
        except RedisError as e:
            raise StoreUnavailableError(f"Failed to expire {key} in Redis: {e}", cause=e) from e

    async def try_acquire_lock(self, key: str, token: str, lease_seconds: float) -> bool:
        try:
            ok = await self.r.set(key, token, px=_to_ms(lease_seconds), nx=True)
        except RedisError as e:
            raise StoreUnavailableError(f"Failed to acquire lock {key}: {e}", cause=e) from e
        return bool(ok)

    async def release_lock(self, key: str, token: str) -> bool:
        try:
            result = await self._eval(_RELEASE_LUA, 1, key, token)
        except RedisError as e:
            raise StoreUnavailableError(f"Failed to release lock {key}: {e}", cause=e) from e
        return bool(result)

    async def aclose(self) -> None:
        await self.r.aclose()
