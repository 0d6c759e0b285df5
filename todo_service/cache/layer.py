import asyncio
import logging
import threading
import weakref
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Hashable, Optional

from cachetools import LRUCache
from pydantic import TypeAdapter, ValidationError
from redis.asyncio import Redis, RedisError

from todo_service.core.config import Settings
from todo_service.models import TodoResponse

logger = logging.getLogger(__name__)

TODO_BY_ID = "todo_by_id"
TODO_LIST = "todo_list"


class CacheRegion(ABC):
    """
    A named, independently invalidated set of cache entries.

    Regions have no expiry policy: entries live until they are overwritten
    or the whole region is invalidated.
    """

    def __init__(self, name: str):
        self.name = name

    @abstractmethod
    async def read(self, key: Hashable) -> Any | None:
        """Return the cached value for key, or None on a miss."""

    @abstractmethod
    async def write(self, key: Hashable, value: Any) -> None:
        """Insert or overwrite the value for key."""

    @abstractmethod
    async def invalidate_all(self) -> None:
        """Drop every entry of the region."""

    async def check_connection(self) -> bool:
        return True

    async def close(self) -> None:
        return None


class MemoryCacheRegion(CacheRegion):
    """Process-local region backed by a bounded LRU cache."""

    def __init__(self, name: str, maxsize: int = 2048):
        super().__init__(name)
        self._entries: LRUCache = LRUCache(maxsize=maxsize)
        self._lock = threading.RLock()

    async def read(self, key: Hashable) -> Any | None:
        with self._lock:
            return self._entries.get(key)

    async def write(self, key: Hashable, value: Any) -> None:
        with self._lock:
            self._entries[key] = value

    async def invalidate_all(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class RedisCacheRegion(CacheRegion):
    """
    Region stored in Redis, shared by every worker.

    Values are JSON encoded with the region's pydantic adapter. Read and
    write errors degrade to a miss / skipped write; they are counted in
    ``errors`` and never reach the caller.
    """

    def __init__(
        self,
        name: str,
        redis: Redis,
        adapter: TypeAdapter,
        namespace: str = "todocache:",
    ):
        super().__init__(name)
        self._redis = redis
        self._adapter = adapter
        self._prefix = f"{namespace}{name}:"
        self.errors = 0

    def _key(self, key: Hashable) -> str:
        """Build namespaced Redis key."""
        if isinstance(key, bool):
            key = "all" if key else "not_done"
        return f"{self._prefix}{key}"

    async def read(self, key: Hashable) -> Any | None:
        try:
            raw = await self._redis.get(self._key(key))
        except RedisError as e:
            logger.error("Redis GET error: %s", e, extra={"region": self.name})
            self.errors += 1
            return None
        if raw is None:
            return None
        try:
            return self._adapter.validate_json(raw)
        except ValidationError as e:
            # Entry written under an older schema or corrupted; treat as a miss
            logger.error("Redis payload rejected: %s", e, extra={"region": self.name})
            self.errors += 1
            return None

    async def write(self, key: Hashable, value: Any) -> None:
        try:
            data = self._adapter.dump_json(value)
            await self._redis.set(self._key(key), data)
        except RedisError as e:
            logger.error("Redis SET error: %s", e, extra={"region": self.name})
            self.errors += 1

    async def invalidate_all(self) -> None:
        try:
            cursor = 0
            deleted_count = 0

            while True:
                cursor, keys = await self._redis.scan(
                    cursor, match=f"{self._prefix}*", count=100
                )
                if keys:
                    await self._redis.delete(*keys)
                    deleted_count += len(keys)
                if cursor == 0:
                    break

            logger.debug(
                "Region invalidated",
                extra={"region": self.name, "deleted": deleted_count},
            )

        except RedisError as e:
            logger.error(
                "Redis invalidate error: %s", e, extra={"region": self.name}
            )
            self.errors += 1

    async def check_connection(self) -> bool:
        try:
            await self._redis.ping()
            return True
        except RedisError as e:
            logger.error("Redis ping failed: %s", e, extra={"region": self.name})
            self.errors += 1
            return False

    async def close(self) -> None:
        try:
            await self._redis.aclose()
        except RedisError as e:
            logger.error("Error closing Redis: %s", e)


class CacheLayer:
    """
    Read-through cache over the two todo regions.

    Features:
    - Stampede protection with per-key locks
    - Generation counter per region: a populate whose load started before an
      invalidation of that region is dropped instead of written back
    - Refreshes take the same per-key lock as populates, so a refresh after a
      commit always lands after any in-flight populate of the old value
    """

    def __init__(self, by_id: CacheRegion, by_listing_flag: CacheRegion):
        self.regions: dict[str, CacheRegion] = {
            TODO_BY_ID: by_id,
            TODO_LIST: by_listing_flag,
        }
        self._generations: dict[str, int] = {name: 0 for name in self.regions}
        # A lock lives as long as some caller holds or waits on it
        self._locks: weakref.WeakValueDictionary = weakref.WeakValueDictionary()

        self.stats = {
            "hits": 0,
            "misses": 0,
            "stale_populates_dropped": 0,
            "invalidations": 0,
        }

    def region(self, name: str) -> CacheRegion:
        return self.regions[name]

    def _get_lock_for_key(self, region: str, key: Hashable) -> asyncio.Lock:
        # setdefault hands every concurrent caller the same lock object
        return self._locks.setdefault((region, key), asyncio.Lock())

    async def get_or_load(
        self,
        region: str,
        key: Hashable,
        loader: Callable[[], Awaitable[Any]],
    ) -> Any:
        """
        Retrieve value from the region, loading and populating on a miss.

        Args:
            region: Region name (TODO_BY_ID or TODO_LIST)
            key: Key within the region
            loader: Async function producing the value on a miss; exceptions
                propagate and nothing is cached

        Returns:
            Cached or loaded value
        """
        target = self.regions[region]

        value = await target.read(key)
        if value is not None:
            self.stats["hits"] += 1
            logger.debug("Cache hit", extra={"region": region, "key": str(key)})
            return value

        lock = self._get_lock_for_key(region, key)
        async with lock:
            # Double-check after acquiring lock
            value = await target.read(key)
            if value is not None:
                self.stats["hits"] += 1
                return value

            self.stats["misses"] += 1
            generation = self._generations[region]
            logger.debug("Loading from source", extra={"region": region, "key": str(key)})
            value = await loader()

            if value is None:
                return None

            if generation != self._generations[region]:
                # Region was invalidated while loading; the value may predate it
                self.stats["stale_populates_dropped"] += 1
                logger.debug(
                    "Dropping populate raced by invalidation",
                    extra={"region": region, "key": str(key)},
                )
                return value

            await target.write(key, value)
            return value

    async def refresh(self, region: str, key: Hashable, value: Any) -> None:
        """Overwrite an entry with a freshly committed value."""
        lock = self._get_lock_for_key(region, key)
        async with lock:
            await self.regions[region].write(key, value)

    async def invalidate(self, region: str) -> None:
        self._generations[region] += 1
        self.stats["invalidations"] += 1
        await self.regions[region].invalidate_all()

    async def invalidate_all(self) -> None:
        for name in self.regions:
            await self.invalidate(name)

    async def init_cache(self) -> bool:
        """Verify every region backend is reachable; log and report degradation."""
        healthy = True
        for name, target in self.regions.items():
            if not await target.check_connection():
                logger.error("Cache region unavailable", extra={"region": name})
                healthy = False
        if healthy:
            logger.info("Cache layer initialized")
        return healthy

    async def close(self) -> None:
        """Graceful shutdown of cache connections."""
        for target in self.regions.values():
            await target.close()

    def get_stats(self) -> dict:
        total = self.stats["hits"] + self.stats["misses"]
        errors = sum(
            getattr(target, "errors", 0) for target in self.regions.values()
        )
        return {
            **self.stats,
            "errors": errors,
            "hit_rate": self.stats["hits"] / total if total > 0 else 0,
        }


def build_cache_layer(settings: Settings, redis: Optional[Redis] = None) -> CacheLayer:
    """Build the cache layer for the configured backend ('memory' or 'redis')."""
    if settings.cache_backend == "redis":
        if redis is None:
            redis = Redis.from_url(
                settings.redis_dsn,
                encoding="utf-8",
                decode_responses=True,
                max_connections=settings.redis_pool_size,
                socket_connect_timeout=5,
                socket_keepalive=True,
                health_check_interval=30,
            )
        logger.info("Cache layer using Redis backend")
        return CacheLayer(
            by_id=RedisCacheRegion(
                TODO_BY_ID,
                redis,
                TypeAdapter(TodoResponse),
                namespace=settings.cache_namespace,
            ),
            by_listing_flag=RedisCacheRegion(
                TODO_LIST,
                redis,
                TypeAdapter(list[TodoResponse]),
                namespace=settings.cache_namespace,
            ),
        )

    logger.info("Cache layer using in-memory backend")
    return CacheLayer(
        by_id=MemoryCacheRegion(TODO_BY_ID, maxsize=settings.cache_maxsize),
        by_listing_flag=MemoryCacheRegion(TODO_LIST, maxsize=settings.cache_maxsize),
    )
