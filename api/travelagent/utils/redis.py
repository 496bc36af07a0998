"""
Redis Connection & Caching Utilities
"""
import redis.asyncio as redis
from typing import Optional, Any, Awaitable, Callable, Union
import asyncio
import json
import logging

from travelagent.config import settings

logger = logging.getLogger(__name__)

# Redis client instance
redis_client: Optional[redis.Redis] = None


async def init_redis(url: str = settings.REDIS_URL) -> Optional[redis.Redis]:
    """Initialize Redis connection"""
    global redis_client
    if not settings.CACHE_ENABLED:
        logger.info("Caching disabled by configuration")
        return None

    logger.info("Initializing Redis connection...")
    redis_client = redis.from_url(
        url,
        encoding="utf-8",
        decode_responses=True,
        socket_connect_timeout=5,  # 5 second connection timeout
        socket_timeout=5,  # 5 second operation timeout
        retry_on_timeout=True,
    )
    # Test connection
    try:
        await redis_client.ping()
        logger.info("Redis connection established")
    except Exception as e:
        logger.warning(f"Redis connection failed: {e}. Caching will be degraded.")
    return redis_client


async def close_redis():
    """Close Redis connection"""
    global redis_client
    if redis_client:
        logger.info("Closing Redis connection...")
        await redis_client.aclose()
        redis_client = None
        logger.info("Redis connection closed")


class NoOpCache:
    """A no-op cache that does nothing - used when Redis is unavailable"""
    async def ping(self) -> bool:
        return True

    async def get(self, key: str) -> None:
        return None

    async def set(self, key: str, value: Any, *args, **kwargs) -> bool:
        return True

    async def setex(self, key: str, ttl: int, value: Any) -> bool:
        return True

    async def delete(self, *keys: str) -> int:
        return 0

    async def exists(self, key: str) -> int:
        return 0

    async def keys(self, pattern: str) -> list:
        return []

    async def incr(self, key: str) -> int:
        return 0

    async def expire(self, key: str, ttl: int) -> bool:
        return True

_noop_cache = NoOpCache()


class CacheService:
    """
    High-level caching service with common patterns.

    The cache is never the source of truth: every method swallows and logs
    client errors so that callers fall back to the database on a miss.
    """

    def __init__(self, client: Union[redis.Redis, NoOpCache, None] = None):
        self.client = client if client is not None else _noop_cache

    @staticmethod
    def _valid_key(key: str) -> bool:
        if not key or not isinstance(key, str):
            logger.error(f"Invalid cache key: {key!r}")
            return False
        return True

    async def get(self, key: str) -> Optional[Any]:
        """Get value from cache"""
        if not self._valid_key(key):
            return None
        try:
            value = await self.client.get(key)
        except Exception as e:
            logger.warning(f"Cache get error for {key}: {e}")
            return None
        if value is None:
            return None
        try:
            return json.loads(value)
        except (TypeError, json.JSONDecodeError):
            return value

    async def set(
        self,
        key: str,
        value: Any,
        ttl: int = settings.CACHE_TTL_DEFAULT
    ) -> bool:
        """Set value in cache with TTL"""
        if not self._valid_key(key):
            return False
        if ttl <= 0 or ttl > settings.CACHE_TTL_MAX:
            logger.error(f"Invalid cache TTL for {key}: {ttl}")
            return False
        try:
            await self.client.setex(key, ttl, json.dumps(value, default=str))
            return True
        except Exception as e:
            logger.warning(f"Cache set error for {key}: {e}")
            return False

    async def delete(self, key: str) -> bool:
        """Delete key from cache"""
        if not self._valid_key(key):
            return False
        try:
            return await self.client.delete(key) > 0
        except Exception as e:
            logger.warning(f"Cache delete error for {key}: {e}")
            return False

    async def invalidate_pattern(self, pattern: str) -> int:
        """Delete all keys matching a glob pattern"""
        if not self._valid_key(pattern):
            return 0
        try:
            keys = await self.client.keys(pattern)
            if keys:
                return await self.client.delete(*keys)
            return 0
        except Exception as e:
            logger.warning(f"Cache invalidate error for {pattern}: {e}")
            return 0

    async def exists(self, key: str) -> bool:
        """Check if key exists"""
        try:
            return await self.client.exists(key) > 0
        except Exception as e:
            logger.warning(f"Cache exists error for {key}: {e}")
            return False

    async def get_or_set(
        self,
        key: str,
        factory: Callable[[], Union[Any, Awaitable[Any]]],
        ttl: int = settings.CACHE_TTL_DEFAULT
    ) -> Any:
        """Get from cache or compute and cache"""
        value = await self.get(key)
        if value is not None:
            logger.debug(f"Cache HIT: {key}")
            return value

        logger.debug(f"Cache MISS: {key}")
        if asyncio.iscoroutinefunction(factory):
            value = await factory()
        else:
            value = factory()

        if value is not None:
            await self.set(key, value, ttl)
        return value
