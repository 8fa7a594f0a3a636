"""
Key-Value Store

Narrow TTL-capable store used for short-lived workflow state (pending OTP
submissions and single-use edit grants). Two backends share one interface:

- RedisKeyValueStore: shared across processes; compare-and-swap runs as a Lua
  script so the read-compare-write is atomic on the server.
- MemoryKeyValueStore: process-local; used in development and tests when Redis
  is not connected. Never used in production.

Values are opaque strings (callers store JSON).
"""

import logging
import time

from redis.asyncio import Redis

from app.core.config import settings
from app.core.redis import get_redis

logger = logging.getLogger(__name__)

# Swap only if the current value is byte-identical to the expected one.
# KEEPTTL preserves the remaining expiry of the key.
_COMPARE_AND_SWAP_SCRIPT = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    redis.call('SET', KEYS[1], ARGV[2], 'KEEPTTL')
    return 1
end
return 0
"""


class KeyValueStoreUnavailableError(RuntimeError):
    """Raised when no durable store is available in production."""


class KeyValueStore:
    """Interface for the workflow state store."""

    async def get(self, key: str) -> str | None:
        raise NotImplementedError

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        raise NotImplementedError

    async def delete(self, key: str) -> bool:
        raise NotImplementedError

    async def pop(self, key: str) -> str | None:
        """Atomically read and delete a key."""
        raise NotImplementedError

    async def compare_and_swap(self, key: str, expected: str, new: str) -> bool:
        """Replace the value only if it still equals `expected`. Keeps the TTL."""
        raise NotImplementedError

    async def ttl(self, key: str) -> int | None:
        """Remaining lifetime in seconds, or None if the key does not exist."""
        raise NotImplementedError

    async def keys(self, prefix: str) -> list[str]:
        raise NotImplementedError

    async def purge_expired(self) -> int:
        """Drop expired keys. Backends with native expiry return 0."""
        return 0


class RedisKeyValueStore(KeyValueStore):
    """Redis-backed store."""

    def __init__(self, client: Redis):
        self._client = client
        self._cas = client.register_script(_COMPARE_AND_SWAP_SCRIPT)

    async def get(self, key: str) -> str | None:
        return await self._client.get(key)

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        await self._client.set(key, value, ex=max(1, ttl_seconds))

    async def delete(self, key: str) -> bool:
        return bool(await self._client.delete(key))

    async def pop(self, key: str) -> str | None:
        return await self._client.getdel(key)

    async def compare_and_swap(self, key: str, expected: str, new: str) -> bool:
        result = await self._cas(keys=[key], args=[expected, new])
        return bool(result)

    async def ttl(self, key: str) -> int | None:
        remaining = await self._client.ttl(key)
        # -2: missing key, -1: no expiry
        if remaining == -2:
            return None
        return remaining

    async def keys(self, prefix: str) -> list[str]:
        return [key async for key in self._client.scan_iter(match=f"{prefix}*")]


class MemoryKeyValueStore(KeyValueStore):
    """
    In-process store with monotonic-clock expiry.

    Every method completes without awaiting, so each operation is atomic with
    respect to other coroutines on the same event loop.
    """

    def __init__(self):
        # key -> (value, expires_at on the monotonic clock)
        self._data: dict[str, tuple[str, float]] = {}

    def _live(self, key: str) -> tuple[str, float] | None:
        item = self._data.get(key)
        if item is None:
            return None
        if item[1] <= time.monotonic():
            del self._data[key]
            return None
        return item

    async def get(self, key: str) -> str | None:
        item = self._live(key)
        return item[0] if item else None

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        self._data[key] = (value, time.monotonic() + max(1, ttl_seconds))

    async def delete(self, key: str) -> bool:
        item = self._live(key)
        self._data.pop(key, None)
        return item is not None

    async def pop(self, key: str) -> str | None:
        item = self._live(key)
        if item is None:
            return None
        del self._data[key]
        return item[0]

    async def compare_and_swap(self, key: str, expected: str, new: str) -> bool:
        item = self._live(key)
        if item is None or item[0] != expected:
            return False
        self._data[key] = (new, item[1])
        return True

    async def ttl(self, key: str) -> int | None:
        item = self._live(key)
        if item is None:
            return None
        return max(0, int(item[1] - time.monotonic()))

    async def keys(self, prefix: str) -> list[str]:
        return [key for key in list(self._data) if key.startswith(prefix) and self._live(key)]

    async def purge_expired(self) -> int:
        now = time.monotonic()
        expired = [key for key, (_, expires_at) in self._data.items() if expires_at <= now]
        for key in expired:
            del self._data[key]
        return len(expired)


_memory_store: MemoryKeyValueStore | None = None
_redis_store: RedisKeyValueStore | None = None


async def get_kv_store() -> KeyValueStore:
    """
    Return the store for workflow state.

    Uses Redis when connected. Outside production a process-local store is
    used instead so the API can run without Redis.

    Raises:
        KeyValueStoreUnavailableError: In production when Redis is not connected
    """
    global _memory_store, _redis_store

    client = await get_redis()
    if client is not None:
        if _redis_store is None or _redis_store._client is not client:
            _redis_store = RedisKeyValueStore(client)
        return _redis_store

    if settings.is_production:
        raise KeyValueStoreUnavailableError("Redis is required for workflow state in production")

    if _memory_store is None:
        logger.warning("Redis not connected - workflow state is held in process memory")
        _memory_store = MemoryKeyValueStore()
    return _memory_store
