"""
Redis client management for Deckhand.

The job queue is the only Redis user. Follows the same lifecycle pattern as
db/session.py: init once per process, close on shutdown.
"""

import redis.asyncio as aioredis

from deckhand.config import settings
from deckhand.logging_config import get_logger

logger = get_logger(__name__)

# Module-level client reference, initialized by the worker at startup
_redis: aioredis.Redis | None = None


async def init_redis(url: str | None = None) -> aioredis.Redis:
    """Initialize the Redis connection pool and return the client."""
    global _redis  # noqa: PLW0603
    logger.info("Initializing Redis connection")
    _redis = aioredis.from_url(
        url or str(settings.redis_url),
        decode_responses=True,
    )
    await _redis.ping()
    logger.info("Redis connection established")
    return _redis


async def close_redis() -> None:
    """Close Redis connection pool."""
    global _redis  # noqa: PLW0603
    if _redis is not None:
        logger.info("Closing Redis connection pool")
        await _redis.aclose()
        _redis = None


def get_redis_client() -> aioredis.Redis:
    """Return the Redis client. Raises if not initialized."""
    if _redis is None:
        raise RuntimeError("Redis client not initialized; call init_redis() first")
    return _redis


async def get_redis_health() -> bool:
    """Check Redis health."""
    try:
        if _redis is None:
            return False
        await _redis.ping()
        return True
    except Exception as e:
        logger.error("Redis health check failed", error=str(e))
        return False
