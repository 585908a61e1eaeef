import json
import logging
from typing import Any

import redis.asyncio as aioredis

logger = logging.getLogger("docindex.cache")

DEFAULT_TTL = 300  # 5 minutes


async def cache_get(redis: aioredis.Redis | None, key: str) -> Any | None:
    """Get a value from cache. Returns None on miss."""
    if redis is None:
        return None
    try:
        raw = await redis.get(f"cache:{key}")
        if raw is None:
            return None
        return json.loads(raw)
    except Exception as e:
        logger.warning("Cache get error for key=%s: %s", key, e)
        return None


async def cache_set(
    redis: aioredis.Redis | None, key: str, value: Any, ttl: int = DEFAULT_TTL
) -> None:
    """Set a value in cache with TTL."""
    if redis is None:
        return
    try:
        await redis.set(f"cache:{key}", json.dumps(value), ex=ttl)
    except Exception as e:
        logger.warning("Cache set error for key=%s: %s", key, e)


async def cache_invalidate_pattern(redis: aioredis.Redis | None, pattern: str) -> int:
    """Delete all keys matching a pattern. Returns count deleted."""
    if redis is None:
        return 0
    try:
        count = 0
        async for key in redis.scan_iter(f"cache:{pattern}"):
            await redis.delete(key)
            count += 1
        return count
    except Exception as e:
        logger.warning("Cache invalidate error for pattern=%s: %s", pattern, e)
        return 0


async def publish_json(redis: aioredis.Redis | None, channel: str, payload: dict) -> None:
    """Publish a JSON message; failures are logged, never raised."""
    if redis is None:
        return
    try:
        await redis.publish(channel, json.dumps(payload, default=str))
    except Exception as e:
        logger.warning("Publish error on channel=%s: %s", channel, e)
