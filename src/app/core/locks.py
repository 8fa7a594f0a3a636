"""
Per-Admission Locks

Advisory mutual exclusion keyed by admission id. Mutating review operations
(apply edit, request edit, submit to admin, approve) hold the lock for their
whole read-modify-write cycle so concurrent requests for the same record are
serialized.

Uses a Redis lock when Redis is connected so every API process shares it.
Falls back to a process-local asyncio.Lock otherwise.
"""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from redis.exceptions import LockError

from app.core.config import settings
from app.core.redis import get_redis

logger = logging.getLogger(__name__)

# Process-local fallback: key -> (lock, number of holders/waiters)
_local_locks: dict[str, tuple[asyncio.Lock, int]] = {}


class LockNotAcquiredError(RuntimeError):
    """Raised when a lock could not be acquired within the wait timeout."""

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Could not acquire lock {key}")


def _lock_key(admission_id: object) -> str:
    return f"lock:admission:{admission_id}"


@asynccontextmanager
async def _local_lock(key: str, wait_seconds: float) -> AsyncIterator[None]:
    lock, users = _local_locks.get(key, (asyncio.Lock(), 0))
    _local_locks[key] = (lock, users + 1)
    try:
        try:
            await asyncio.wait_for(lock.acquire(), timeout=wait_seconds)
        except TimeoutError as e:
            raise LockNotAcquiredError(key) from e
        try:
            yield
        finally:
            lock.release()
    finally:
        lock, users = _local_locks[key]
        if users <= 1:
            del _local_locks[key]
        else:
            _local_locks[key] = (lock, users - 1)


@asynccontextmanager
async def admission_lock(
    admission_id: object,
    wait_seconds: float | None = None,
) -> AsyncIterator[None]:
    """
    Hold the advisory lock for one admission.

    Usage:
        async with admission_lock(admission_id):
            ...

    Raises:
        LockNotAcquiredError: If another holder keeps the lock past the wait timeout
    """
    key = _lock_key(admission_id)
    wait = settings.lock_wait_seconds if wait_seconds is None else wait_seconds
    client = await get_redis()

    if client is None:
        async with _local_lock(key, wait):
            yield
        return

    lock = client.lock(key, timeout=settings.lock_timeout_seconds, blocking_timeout=wait)
    if not await lock.acquire():
        raise LockNotAcquiredError(key)
    try:
        yield
    finally:
        try:
            await lock.release()
        except LockError:
            # Lock expired while held; another holder may already own it
            logger.warning(f"Lock {key} expired before release")
