"""
Redis Connection

Shared async Redis client backing pending submissions, edit grants,
per-admission locks and rate limiting.
"""

from redis.asyncio import Redis, from_url

from app.core.config import settings

redis_client: Redis | None = None


async def init_redis() -> Redis:
    """Connect to Redis on application startup."""
    global redis_client
    client = from_url(settings.redis_url, encoding="utf-8", decode_responses=True)
    await client.ping()
    redis_client = client
    return redis_client


async def get_redis() -> Redis | None:
    """
    Return the shared client, or None when Redis was not connected.

    Callers decide whether to fall back to in-process state or fail.
    """
    return redis_client


def is_redis_available() -> bool:
    return redis_client is not None


async def close_redis() -> None:
    global redis_client
    if redis_client is not None:
        await redis_client.aclose()
        redis_client = None
