"""
Redis client access.

The realtime layer uses Redis for three things, all optional: cross-instance
fan-out (pub/sub), token-to-session lookup, and presence records.
"""

import os
import redis.asyncio as aioredis

# Get Redis configuration from environment
REDIS_HOST = os.environ.get('REDIS_HOST', 'localhost')
REDIS_PORT = int(os.environ.get('REDIS_PORT', '6379'))
REDIS_PASSWORD = os.environ.get('REDIS_PASSWORD', '')
REDIS_DB = int(os.environ.get('REDIS_DB', '0'))

_async_redis_client = None


async def get_redis_client() -> aioredis.Redis:
    """
    Get async Redis client for direct access.

    The client is created lazily so processes that never touch Redis
    (local pub/sub, static tokens) never open a connection pool.

    Returns:
        Async Redis client instance

    Example:
        >>> redis = await get_redis_client()
        >>> await redis.set("key", "value", ex=3600)
        >>> value = await redis.get("key")
    """
    global _async_redis_client
    if _async_redis_client is None:
        _async_redis_client = aioredis.Redis(
            host=REDIS_HOST,
            port=REDIS_PORT,
            password=REDIS_PASSWORD if REDIS_PASSWORD else None,
            db=REDIS_DB,
            decode_responses=True,  # Auto decode to strings for easier async use
            socket_connect_timeout=5,
            socket_timeout=5,
            retry_on_timeout=True,
        )
    return _async_redis_client


async def close_redis_client() -> None:
    """Close the shared client, if one was created."""
    global _async_redis_client
    if _async_redis_client is not None:
        await _async_redis_client.aclose()
        _async_redis_client = None
