"""
Redis-backed TTL cache keyed by entity id.

CACHING STRATEGY
================

What we cache:
  - Profile projections, one key per profile: "profile:{id}"
  - The upcoming events listing: "events:list:{status}"

Each namespace is an EntityCache instance handed to routes through a
FastAPI dependency, so handlers never reach for module state directly and
tests can swap in their own cache.

Invalidation:
  - Profile writes (plan changes, activity, seeding) delete "profile:{id}"
  - Event creation / status transitions clear the "events:list:*" prefix
  - TTL expiry as a safety net

Redis is advisory. When it is disabled or unreachable every get is a miss
and every write is a no-op; requests never fail because of the cache.
"""

import json
from typing import Any, Optional

import redis.asyncio as redis
from apoxer.core.config import get_settings
from apoxer.core.logging import get_logger
from apoxer.core.metrics import record_cache_operation

logger = get_logger(__name__)
settings = get_settings()

_redis_client: Optional[redis.Redis] = None


async def get_redis() -> Optional[redis.Redis]:
    """Get or create Redis connection. Returns None if Redis is disabled or down."""
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
        except Exception as e:
            logger.error("redis_connection_failed", error=str(e))
            _redis_client = None
            return None

    return _redis_client


async def close_redis() -> None:
    global _redis_client
    if _redis_client:
        await _redis_client.aclose()
        _redis_client = None


class EntityCache:
    """TTL cache for JSON-serializable projections under one key namespace."""

    def __init__(self, namespace: str, ttl: int):
        self.namespace = namespace
        self.ttl = ttl

    def key(self, entity_id: Any) -> str:
        return f"{self.namespace}:{entity_id}"

    async def get(self, entity_id: Any) -> Optional[Any]:
        client = await get_redis()
        if not client:
            return None

        key = self.key(entity_id)
        try:
            data = await client.get(key)
        except Exception as e:
            logger.error("cache_get_error", key=key, error=str(e))
            return None

        record_cache_operation(self.namespace, hit=data is not None)
        if data is None:
            return None
        return json.loads(data)

    async def set(self, entity_id: Any, value: Any) -> None:
        client = await get_redis()
        if not client:
            return

        key = self.key(entity_id)
        try:
            await client.setex(key, self.ttl, json.dumps(value, default=str))
            logger.debug("cache_set", key=key, ttl=self.ttl)
        except Exception as e:
            logger.error("cache_set_error", key=key, error=str(e))

    async def invalidate(self, entity_id: Any) -> None:
        client = await get_redis()
        if not client:
            return

        key = self.key(entity_id)
        try:
            await client.delete(key)
        except Exception as e:
            logger.error("cache_invalidation_error", key=key, error=str(e))

    async def clear(self) -> None:
        """Delete every key of this namespace."""
        client = await get_redis()
        if not client:
            return

        try:
            deleted = 0
            async for key in client.scan_iter(match=f"{self.namespace}:*", count=100):
                await client.delete(key)
                deleted += 1
            logger.info("cache_cleared", namespace=self.namespace, keys_deleted=deleted)
        except Exception as e:
            logger.error("cache_invalidation_error", namespace=self.namespace, error=str(e))


_profile_cache = EntityCache("profile", settings.PROFILE_CACHE_TTL)
_event_list_cache = EntityCache("events:list", settings.REDIS_CACHE_TTL)


def get_profile_cache() -> EntityCache:
    return _profile_cache


def get_event_list_cache() -> EntityCache:
    return _event_list_cache


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
    except Exception as e:
        return {"status": "error", "error": str(e)}
