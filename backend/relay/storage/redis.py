"""Shared async Redis client for rate limit counters."""

import logging
from typing import TYPE_CHECKING

import redis.asyncio as aioredis

if TYPE_CHECKING:
    from redis.asyncio.client import Redis as AsyncRedis

logger = logging.getLogger(__name__)

_redis_client: "AsyncRedis[str] | None" = None


async def get_redis_client() -> "AsyncRedis[str] | None":
    """Get or create the Redis client.

    Returns None if Redis is unavailable.
    """
    global _redis_client
    if _redis_client is None:
        from relay.config import get_settings

        settings = get_settings()
        client = aioredis.from_url(
            settings.relay_redis_url,
            encoding="utf-8",
            decode_responses=True,
        )
        try:
            await client.ping()
        except Exception as e:
            logger.warning(f"Redis unavailable for rate limit counters: {e}")
            await client.aclose()
            return None
        _redis_client = client
        logger.info("Redis connected for rate limit counters")
    return _redis_client


async def close_redis_client() -> None:
    """Close the shared Redis client if one was created."""
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None
