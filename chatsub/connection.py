"""Redis connection management."""

from __future__ import annotations

import redis.asyncio as redis

from .config import RedisConfig


def open_redis(config: RedisConfig) -> redis.Redis:
    """Create a Redis client from configuration.

    Responses are left as bytes: message payloads are binary and the store
    adapter decodes set members itself.
    """
    return redis.from_url(config.resolved_url, decode_responses=False)


async def close_redis(client: redis.Redis) -> None:
    """Close the client and its connection pool."""
    await client.aclose()
