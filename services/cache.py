"""
Response cache backed by Redis.

Uses a Redis connection when one can be established and otherwise keeps
entries in a process-local dict with per-key expiry.  Cache failures are
logged and treated as misses; they never fail the request.
"""

import json
import logging
import time
from typing import Any, Optional

import redis.asyncio as redis

from infrastructure.config import settings

logger = logging.getLogger(__name__)


class CacheService:
    """
    Key/value cache with TTLs.

    Keys are namespaced with ``KEY_PREFIX`` in Redis so ``clear`` and
    ``delete_prefix`` never touch keys owned by other services (for
    example the rate limiter).
    """

    KEY_PREFIX = "inkwell:cache:"

    def __init__(
        self,
        redis_url: Optional[str] = None,
        default_ttl: int = 300,
        max_memory_entries: int = 1000,
    ):
        self._redis_url = redis_url
        self.default_ttl = default_ttl
        self.max_memory_entries = max_memory_entries
        self.redis: Optional[redis.Redis] = None
        self._connected = False
        # key -> (expires_at_monotonic, json payload)
        self._memory: dict[str, tuple[float, str]] = {}
        self.hits = 0
        self.misses = 0

    async def connect(self):
        """
        Connect to Redis.

        Leaves the service on the in-memory store if no URL is configured
        or the server is unreachable.
        """
        if not self._redis_url:
            logger.info("REDIS_URL not set, response cache uses in-memory store")
            return

        try:
            self.redis = await redis.from_url(
                self._redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_timeout=5,
                socket_connect_timeout=5,
            )
            await self.redis.ping()
            self._connected = True
            logger.info("Redis connection established for response cache")
        except Exception as e:
            logger.warning("Failed to connect to Redis: %s. Using in-memory cache.", e)
            self.redis = None
            self._connected = False

    async def disconnect(self):
        """Disconnect from Redis."""
        if self.redis:
            await self.redis.close()
            self._connected = False
            logger.info("Redis cache connection closed")

    @property
    def is_connected(self) -> bool:
        return self._connected and self.redis is not None

    @property
    def backend(self) -> str:
        return "redis" if self.is_connected else "memory"

    def _record(self, hit: bool) -> None:
        if hit:
            self.hits += 1
        else:
            self.misses += 1

    def _memory_get(self, key: str) -> Optional[str]:
        entry = self._memory.get(key)
        if entry is None:
            return None
        expires_at, payload = entry
        if expires_at <= time.monotonic():
            self._memory.pop(key, None)
            return None
        return payload

    def _memory_set(self, key: str, payload: str, ttl: int) -> None:
        """Store an entry, purging expired ones and evicting the oldest past capacity."""
        now = time.monotonic()
        for expired in [k for k, (exp, _) in self._memory.items() if exp <= now]:
            del self._memory[expired]

        # Re-inserting moves the key to the end of the insertion order
        self._memory.pop(key, None)
        while len(self._memory) >= self.max_memory_entries:
            del self._memory[next(iter(self._memory))]
        self._memory[key] = (now + ttl, payload)

    async def _read_raw(self, key: str) -> Optional[str]:
        if self.is_connected:
            return await self.redis.get(self.KEY_PREFIX + key)
        return self._memory_get(key)

    async def get(self, key: str) -> Any:
        """
        Fetch a cached value.

        Args:
            key: Cache key without prefix

        Returns:
            The decoded value, or None on a miss
        """
        payload: Optional[str] = None
        try:
            payload = await self._read_raw(key)
        except Exception as e:
            logger.error("Cache get failed for %s: %s", key, e)

        self._record(payload is not None)
        if payload is None:
            return None
        return json.loads(payload)

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """Store a JSON-serializable value for ``ttl`` seconds."""
        ttl = ttl or self.default_ttl
        payload = json.dumps(value, default=str)

        if self.is_connected:
            try:
                await self.redis.set(self.KEY_PREFIX + key, payload, ex=ttl)
                return True
            except Exception as e:
                logger.error("Cache set failed for %s: %s", key, e)
                return False

        self._memory_set(key, payload, ttl)
        return True

    async def delete(self, key: str) -> bool:
        if self.is_connected:
            try:
                return await self.redis.delete(self.KEY_PREFIX + key) > 0
            except Exception as e:
                logger.error("Cache delete failed for %s: %s", key, e)
                return False
        return self._memory.pop(key, None) is not None

    async def delete_prefix(self, prefix: str) -> int:
        """Delete every key starting with ``prefix``. Returns the count removed."""
        if self.is_connected:
            try:
                keys = [k async for k in self.redis.scan_iter(match=f"{self.KEY_PREFIX}{prefix}*")]
                if keys:
                    await self.redis.delete(*keys)
                return len(keys)
            except Exception as e:
                logger.error("Cache prefix delete failed for %s: %s", prefix, e)
                return 0

        doomed = [k for k in self._memory if k.startswith(prefix)]
        for k in doomed:
            del self._memory[k]
        return len(doomed)

    async def clear(self) -> int:
        """Drop every cached entry and reset hit counters."""
        removed = await self.delete_prefix("")
        self.hits = 0
        self.misses = 0
        return removed

    async def health_check(self) -> bool:
        """Round-trip a probe value through the active backend.

        Reads bypass the hit/miss counters so health polling does not skew
        the reported hit rate.
        """
        probe_key = "health:probe"
        stamp = str(time.time())
        if not await self.set(probe_key, stamp, ttl=10):
            return False
        try:
            payload = await self._read_raw(probe_key)
        except Exception as e:
            logger.error("Cache health probe failed: %s", e)
            return False
        await self.delete(probe_key)
        return payload is not None and json.loads(payload) == stamp

    def stats(self) -> dict:
        """Hit/miss counters and backend info."""
        lookups = self.hits + self.misses
        now = time.monotonic()
        return {
            "backend": self.backend,
            "connected": self.is_connected,
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": round(self.hits / lookups * 100, 2) if lookups else 0.0,
            "memory_keys": sum(1 for exp, _ in self._memory.values() if exp > now),
        }


# Global instance
cache_service = CacheService(redis_url=settings.redis_url, default_ttl=settings.cache_ttl_short)


def get_cache() -> CacheService:
    """Dependency returning the process cache."""
    return cache_service
