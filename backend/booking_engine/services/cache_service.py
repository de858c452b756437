"""
Redis caching service for show listings.

CACHING STRATEGY
================

What we cache:
  - Show listing responses (paginated, JSON-serialized)
  - Cache key pattern: "shows:list:page={page}&size={size}&movie={movie}&theater={theater}&upcoming={upcoming}"

Invalidation strategy:
  - Any seat mutation (hold, confirm, release, expiry) changes available_seats
    and possibly the derived status, so it deletes every listing key
  - Show creation and scheduler status changes do the same
  - TTL-based expiry (REDIS_CACHE_TTL) as safety net

  All listing keys share the "shows:list:" prefix so we can SCAN and delete them.

Why NOT cache single shows or seat maps:
  - Seat maps change on every hold; a stale map shows seats as free that
    are already blocked, and the customer only learns it at checkout
  - Booking never reads from the cache; seat state always comes from the database

If Redis is disabled or unreachable every call degrades to a no-op.
"""

import json
from typing import Optional

import redis.asyncio as redis
from booking_engine.core.config import get_settings
from booking_engine.core.logging import get_logger
from booking_engine.core.metrics import record_cache_operation

logger = get_logger(__name__)
settings = get_settings()

SHOW_LIST_PREFIX = "shows:list:"

_redis_client: Optional[redis.Redis] = None


async def get_redis() -> Optional[redis.Redis]:
    """Get or create Redis connection. Returns None if Redis is disabled."""
    global _redis_client

    if not settings.REDIS_ENABLED:
        return None

    if _redis_client is None:
        try:
            _redis_client = redis.from_url(
                settings.REDIS_URL,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
                retry_on_timeout=True,
            )
            await _redis_client.ping()
            logger.info("redis_connected", url=settings.REDIS_URL)
        except redis.RedisError as e:
            logger.error("redis_connection_failed", error=str(e))
            _redis_client = None
            return None

    return _redis_client


async def close_redis() -> None:
    """Close Redis connection on shutdown."""
    global _redis_client
    if _redis_client:
        await _redis_client.aclose()
        _redis_client = None


def make_show_list_key(
    page: int,
    page_size: int,
    movie_id: Optional[int],
    theater_id: Optional[int],
    upcoming_only: bool,
) -> str:
    return (
        f"{SHOW_LIST_PREFIX}page={page}&size={page_size}"
        f"&movie={movie_id}&theater={theater_id}&upcoming={upcoming_only}"
    )


async def get_cached_shows(key: str) -> Optional[dict]:
    """Retrieve cached show list response."""
    client = await get_redis()
    if not client:
        return None

    try:
        data = await client.get(key)
        record_cache_operation("get", hit=bool(data))
        if data:
            logger.debug("cache_hit", key=key)
            return json.loads(data)
        logger.debug("cache_miss", key=key)
    except redis.RedisError as e:
        logger.error("cache_get_error", key=key, error=str(e))

    return None


async def set_cached_shows(key: str, data: dict) -> None:
    """Cache show list response with TTL."""
    client = await get_redis()
    if not client:
        return

    try:
        await client.setex(key, settings.REDIS_CACHE_TTL, json.dumps(data, default=str))
        logger.debug("cache_set", key=key, ttl=settings.REDIS_CACHE_TTL)
    except redis.RedisError as e:
        logger.error("cache_set_error", key=key, error=str(e))


async def invalidate_show_cache() -> None:
    """
    Invalidate all cached show listings.
    Uses SCAN to find and delete all keys matching the prefix.
    """
    client = await get_redis()
    if not client:
        return

    try:
        deleted = 0
        async for key in client.scan_iter(match=f"{SHOW_LIST_PREFIX}*", count=100):
            await client.delete(key)
            deleted += 1
        logger.info("cache_invalidated", keys_deleted=deleted)
    except redis.RedisError as e:
        logger.error("cache_invalidation_error", error=str(e))


async def get_cache_stats() -> dict:
    """Get Redis cache statistics for monitoring."""
    client = await get_redis()
    if not client:
        return {"status": "disabled"}

    try:
        info = await client.info("stats")
        hits = info.get("keyspace_hits", 0)
        misses = info.get("keyspace_misses", 0)
        return {
            "status": "connected",
            "hits": hits,
            "misses": misses,
            "hit_rate": round(hits / max(hits + misses, 1) * 100, 2),
        }
    except redis.RedisError as e:
        return {"status": "error", "error": str(e)}
