"""
Redis cache for event read models and the optional per-event admission lock.

The cache is best effort: every Redis failure is logged and treated as a miss,
so admission decisions never depend on Redis being reachable.
"""

import json
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

import redis.asyncio as redis
from redis.asyncio import Redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import LockError, RedisError

from .config import get_settings
from .utils.exceptions import ConcurrencyConflict

logger = logging.getLogger(__name__)


class CacheKeyBuilder:
    """Key layout for everything this service stores in Redis."""

    @staticmethod
    def event_stats(event_id: str) -> str:
        return f"event:stats:{event_id}"

    @staticmethod
    def event_lock(event_id: str) -> str:
        return f"lock:event:{event_id}"


class CacheTTL:
    """Expiry of cached read models, in seconds."""

    EVENT_STATS = 60


class RedisCache:
    """JSON values in Redis behind a shared connection pool."""

    def __init__(self):
        self.client: Optional[Redis] = None
        self.pool: Optional[redis.ConnectionPool] = None

    async def initialize(self) -> None:
        """Open the pool and check the server answers."""
        settings = get_settings()
        self.pool = redis.ConnectionPool.from_url(
            settings.redis_url,
            max_connections=settings.redis_max_connections,
            retry_on_timeout=True,
            health_check_interval=30
        )
        self.client = Redis(connection_pool=self.pool)

        try:
            await self.client.ping()
        except RedisConnectionError as e:
            logger.error("Failed to connect to Redis at %s: %s", settings.redis_url, e)
            await self.close()
            raise

        logger.info("Redis cache connected")

    async def close(self) -> None:
        if self.client is not None:
            await self.client.aclose()
        if self.pool is not None:
            await self.pool.disconnect()
        self.client = None
        self.pool = None

    async def get(self, key: str) -> Optional[Any]:
        """Decoded value for ``key``, or None on a miss or any Redis failure."""
        if self.client is None:
            return None

        try:
            raw = await self.client.get(key)
        except RedisError as e:
            logger.warning("Cache read failed for %s: %s", key, e)
            return None

        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("Discarding undecodable cache entry %s", key)
            await self.delete(key)
            return None

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """Store a JSON-serializable value; returns False when nothing was written."""
        if self.client is None:
            return False

        try:
            await self.client.set(key, json.dumps(value, default=str), ex=ttl)
        except (RedisError, TypeError, ValueError) as e:
            logger.warning("Cache write failed for %s: %s", key, e)
            return False
        return True

    async def delete(self, *keys: str) -> int:
        """Remove keys; returns how many existed."""
        if self.client is None or not keys:
            return 0

        try:
            return await self.client.delete(*keys)
        except RedisError as e:
            logger.warning("Cache delete failed for %s: %s", ", ".join(keys), e)
            return 0


cache = RedisCache()


async def init_cache() -> None:
    await cache.initialize()


async def close_cache() -> None:
    await cache.close()


def get_cache() -> RedisCache:
    """Process-wide cache instance."""
    return cache


@asynccontextmanager
async def event_lock(event_id: str) -> AsyncIterator[None]:
    """
    Serialize writers of one event across processes.

    Only active with ``enable_distributed_locks`` and a connected cache. The
    version check on the event row keeps admission correct without it; the
    lock just spares contended events from retry churn. A lock that cannot be
    taken in time raises ConcurrencyConflict so the caller's retry applies.
    """
    settings = get_settings()
    if not settings.enable_distributed_locks or cache.client is None:
        yield
        return

    lock = cache.client.lock(
        CacheKeyBuilder.event_lock(event_id),
        timeout=settings.event_lock_timeout_seconds,
        blocking_timeout=settings.event_lock_timeout_seconds,
        sleep=0.05
    )

    try:
        acquired = await lock.acquire()
    except RedisError as e:
        logger.warning("Lock for event %s unavailable, relying on version check: %s", event_id, e)
        acquired = None

    if acquired is None:
        yield
        return
    if not acquired:
        raise ConcurrencyConflict(f"Event {event_id} is locked by another writer")

    try:
        yield
    finally:
        try:
            await lock.release()
        except LockError:
            # Expired while held; the version check already guarded the write
            logger.warning("Lock for event %s expired before release", event_id)
        except RedisError as e:
            logger.warning("Failed to release lock for event %s: %s", event_id, e)


class CacheInvalidator:
    """Drops cached read models after a committed change."""

    @staticmethod
    async def invalidate_event_caches(event_id: str) -> None:
        await cache.delete(CacheKeyBuilder.event_stats(event_id))
        logger.debug(f"Invalidated caches for event {event_id}")
