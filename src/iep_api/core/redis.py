"""
Redis Configuration

Async Redis client used for request throttling (resend caps and endpoint
rate limits).
"""

import logging

from redis.asyncio import Redis, from_url

from iep_api.core.config import settings

logger = logging.getLogger(__name__)

redis_client: Redis | None = None


async def init_redis() -> Redis:
    """
    Connect to Redis and verify the connection.

    Call this on application startup.
    """
    global redis_client
    client = from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
    )
    await client.ping()
    redis_client = client
    return redis_client


async def get_redis() -> Redis | None:
    """
    FastAPI dependency returning the Redis client.

    Returns None when Redis was not initialised; callers decide whether that
    is acceptable (the resend daily cap fails closed).
    """
    return redis_client


async def close_redis() -> None:
    """Close the Redis connection."""
    global redis_client
    if redis_client:
        await redis_client.aclose()
        redis_client = None
        logger.info("Redis connection closed")
