"""
Rate Limiting

Sliding-window rate limits for the public intake endpoints:
- Submission init (prevents OTP SMS/email bombing)
- OTP verification (limits code guessing per pending submission)

Uses the shared Redis client when connected. Falls back to in-memory
counters, which only hold for a single process.
"""

import logging
import time

from fastapi import HTTPException, Request, status

from app.core.redis import get_redis

logger = logging.getLogger(__name__)

# Fallback storage: key -> request timestamps inside the window
_memory_store: dict[str, list[float]] = {}


class RateLimitExceeded(HTTPException):
    """HTTP 429 raised when a caller exceeds its window."""

    def __init__(self, limit: int, window_seconds: int):
        super().__init__(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail={
                "error": "RATE_LIMIT_EXCEEDED",
                "message": f"Too many requests. Maximum {limit} requests per {window_seconds} seconds.",
                "retry_after_seconds": window_seconds,
            },
            headers={"Retry-After": str(window_seconds)},
        )


async def _check_redis(client, key: str, limit: int, window_seconds: int) -> bool:
    now = time.time()

    pipe = client.pipeline()
    pipe.zremrangebyscore(key, 0, now - window_seconds)
    pipe.zcard(key)
    pipe.zadd(key, {str(now): now})
    pipe.expire(key, window_seconds)
    results = await pipe.execute()

    return results[1] < limit


def _check_memory(key: str, limit: int, window_seconds: int) -> bool:
    now = time.time()
    hits = [ts for ts in _memory_store.get(key, []) if ts > now - window_seconds]

    if len(hits) >= limit:
        _memory_store[key] = hits
        return False

    hits.append(now)
    _memory_store[key] = hits
    return True


async def check_rate_limit(key: str, limit: int, window_seconds: int) -> bool:
    """
    Record one request against `key` and report whether it is allowed.

    Args:
        key: Rate limit bucket (e.g. "rl:init:203.0.113.7")
        limit: Maximum requests in the window
        window_seconds: Window length

    Returns:
        True if the request is within the limit
    """
    client = await get_redis()
    if client is not None:
        try:
            return await _check_redis(client, key, limit, window_seconds)
        except Exception as e:
            logger.warning(f"Redis rate limit check failed, using memory: {e}")

    return _check_memory(key, limit, window_seconds)


async def enforce_rate_limit(key: str, limit: int, window_seconds: int) -> None:
    """
    Raise RateLimitExceeded when `key` is over its limit.

    Raises:
        RateLimitExceeded: HTTP 429 with a Retry-After header
    """
    if not await check_rate_limit(key, limit, window_seconds):
        logger.warning(f"Rate limit exceeded for {key}: {limit}/{window_seconds}s")
        raise RateLimitExceeded(limit, window_seconds)


def client_ip(request: Request) -> str:
    """Best-effort client address for rate limit keys."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


__all__ = [
    "RateLimitExceeded",
    "check_rate_limit",
    "client_ip",
    "enforce_rate_limit",
]
