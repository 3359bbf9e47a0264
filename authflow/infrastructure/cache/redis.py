"""
Redis connection management.
"""
from typing import Optional

import redis.asyncio as redis

from authflow.core.config import settings
from authflow.core.logging import get_logger

logger = get_logger(__name__)

# Redis connection pool
redis_pool: Optional[redis.ConnectionPool] = None


async def get_redis_pool() -> redis.ConnectionPool:
    """
    Get or create Redis connection pool.

    Returns:
        Redis connection pool
    """
    global redis_pool

    if redis_pool is None:
        redis_pool = redis.ConnectionPool.from_url(
            str(settings.REDIS_URL),
            decode_responses=True,
            max_connections=50,
        )
        logger.info("redis_pool_created", host=settings.REDIS_HOST, db=settings.REDIS_DB)

    return redis_pool


async def get_redis_client() -> redis.Redis:
    """
    Get Redis client instance.

    Returns:
        Redis client
    """
    pool = await get_redis_pool()
    return redis.Redis(connection_pool=pool)


async def close_redis_pool() -> None:
    """Disconnect the pool on shutdown."""
    global redis_pool

    if redis_pool is not None:
        await redis_pool.disconnect()
        redis_pool = None
