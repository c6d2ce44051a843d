"""Async Redis client for the fast candidate cache tier.

Redis is optional: when REDIS_URL is empty the service runs with the
in-process LRU tier only.
"""

import redis.asyncio as aioredis

from shelfwise.core.config import get_settings


def create_redis_client(url: str | None = None) -> aioredis.Redis | None:
    """Create a Redis client for the configured URL, or None when Redis is not configured."""
    redis_url = url if url is not None else get_settings().REDIS_URL
    if not redis_url:
        return None
    return aioredis.from_url(redis_url, decode_responses=True)


async def close_redis_client(client: aioredis.Redis | None) -> None:
    """Close a client created by create_redis_client."""
    if client is not None:
        await client.aclose()
