"""
Optional Redis connection manager.

Provides an async Redis client singleton used as the job status store.
Degrades to None when REDIS_URL is not set or Redis is unreachable; the
job store then falls back to an in-process store.
"""

import logging
from typing import Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

_log = logging.getLogger(__name__)

_redis_client: Optional[aioredis.Redis] = None


async def init_redis() -> None:
    """Connect to Redis if REDIS_URL is configured. Safe to call always."""
    global _redis_client
    from studygen.config import get_settings

    url = get_settings().redis_url
    if not url:
        _log.info("[redis] REDIS_URL not set; job status kept in process memory")
        return

    try:
        _redis_client = aioredis.from_url(
            url,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
            retry_on_timeout=True,
        )
        # Verify connectivity
        await _redis_client.ping()
        _log.info("[redis] Connected successfully")
    except (RedisError, OSError) as exc:
        _log.warning(f"[redis] Connection failed ({exc}); running without Redis")
        _redis_client = None


async def close_redis() -> None:
    """Gracefully close the Redis connection pool."""
    global _redis_client
    if _redis_client is not None:
        try:
            await _redis_client.aclose()
            _log.info("[redis] Connection closed")
        except RedisError as exc:
            _log.warning(f"[redis] Close failed: {exc}")
        _redis_client = None


def get_redis() -> Optional[aioredis.Redis]:
    """Return the Redis client or None if unavailable."""
    return _redis_client


async def is_redis_healthy() -> bool:
    """Health check. Returns False instead of raising."""
    if _redis_client is None:
        return False
    try:
        return await _redis_client.ping()
    except (RedisError, OSError):
        return False
