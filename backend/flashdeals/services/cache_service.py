"""Redis read-through cache for active deal listings.

Listing responses are cached under ``deals:*`` keys for a short TTL and the
whole namespace is dropped after every deal mutation (create, edit,
deactivate, claim, recurrence), so a listing is never served stale past the
mutation that changed it. Redis failures degrade to cache misses.
"""

from typing import Optional

import structlog
from redis.asyncio import Redis, from_url
from redis.exceptions import RedisError

from flashdeals.config import settings

logger = structlog.get_logger(__name__)

DEALS_KEY_PREFIX = "deals"


class CacheService:
    """Async Redis cache with TTL and pattern invalidation.

    When ``enabled`` is False every read misses and every write is a no-op.
    """

    def __init__(self, redis_url: str, enabled: bool = True):
        self.redis_url = redis_url
        self.enabled = enabled
        self._redis: Optional[Redis] = None
        self.logger = logger.bind(service="cache_service")

    async def _get_redis(self) -> Redis:
        if self._redis is None:
            self._redis = from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
            )
            self.logger.info("redis_connection_created", url=self.redis_url)

        return self._redis

    async def get(self, key: str) -> Optional[str]:
        """Cached string for ``key``, or None on miss, error or when disabled."""
        if not self.enabled:
            return None
        try:
            redis = await self._get_redis()
            value = await redis.get(key)

            if value:
                self.logger.debug("cache_hit", key=key)
            else:
                self.logger.debug("cache_miss", key=key)

            return value

        except RedisError as e:
            self.logger.error("cache_get_failed", key=key, error=str(e), exc_info=True)
            return None

    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> bool:
        if not self.enabled:
            return False
        ttl = ttl or settings.DEALS_CACHE_TTL_SECONDS
        try:
            redis = await self._get_redis()
            await redis.set(key, value, ex=ttl)
            self.logger.debug("cache_set", key=key, ttl=ttl, value_length=len(value))
            return True

        except RedisError as e:
            self.logger.error("cache_set_failed", key=key, error=str(e), exc_info=True)
            return False

    async def delete(self, key: str) -> bool:
        if not self.enabled:
            return False
        try:
            redis = await self._get_redis()
            result = await redis.delete(key)
            self.logger.debug("cache_delete", key=key, deleted=bool(result))
            return bool(result)

        except RedisError as e:
            self.logger.error("cache_delete_failed", key=key, error=str(e), exc_info=True)
            return False

    async def delete_pattern(self, pattern: str) -> int:
        """Delete all keys matching a glob pattern. Returns how many went."""
        if not self.enabled:
            return 0
        try:
            redis = await self._get_redis()

            keys = []
            async for key in redis.scan_iter(match=pattern, count=100):
                keys.append(key)

            deleted = await redis.delete(*keys) if keys else 0

            self.logger.info("cache_pattern_delete", pattern=pattern, keys_deleted=deleted)
            return deleted

        except RedisError as e:
            self.logger.error(
                "cache_pattern_delete_failed",
                pattern=pattern,
                error=str(e),
                exc_info=True,
            )
            return 0

    async def health_check(self) -> bool:
        if not self.enabled:
            return False
        try:
            redis = await self._get_redis()
            await redis.ping()
            self.logger.debug("redis_health_check_ok")
            return True

        except Exception as e:
            self.logger.error("redis_health_check_failed", error=str(e), exc_info=True)
            return False

    async def close(self) -> None:
        if self._redis:
            await self._redis.close()
            self._redis = None
            self.logger.info("redis_connection_closed")


_cache_instance: Optional[CacheService] = None


def get_cache_service() -> CacheService:
    """Process-wide cache singleton."""
    global _cache_instance

    if _cache_instance is None:
        _cache_instance = CacheService(settings.REDIS_URL, enabled=settings.CACHE_ENABLED)
        logger.info(
            "cache_service_initialized",
            redis_url=settings.REDIS_URL,
            enabled=settings.CACHE_ENABLED,
        )

    return _cache_instance


async def get_cache() -> CacheService:
    """FastAPI dependency for the cache service."""
    return get_cache_service()


async def invalidate_deals_cache(cache: Optional[CacheService] = None) -> int:
    """Drop every cached deal listing. Call after any deal mutation."""
    cache = cache or get_cache_service()
    deleted = await cache.delete_pattern(f"{DEALS_KEY_PREFIX}:*")
    logger.info("deals_cache_invalidated", keys_deleted=deleted)
    return deleted


def cache_key_for_deals(
    category: Optional[str] = None,
    q: Optional[str] = None,
) -> str:
    """Cache key for an active-deal listing query.

    >>> cache_key_for_deals("Food", " Pizza ")
    'deals:active:cfood:qpizza'
    """
    parts = [DEALS_KEY_PREFIX, "active"]

    if category:
        parts.append(f"c{category.strip().lower()}")

    if q:
        parts.append(f"q{q.strip().lower()}")

    return ":".join(parts)
