"""
cache_service.py — Analytics cache-aside layer
Keys are scoped per user and endpoint so one check-in can drop every
dashboard of that user. Redis is used while it answers; otherwise entries
live in an in-process map with explicit expiry. Cache failures only ever
turn into misses or dropped writes.
"""

import asyncio
import json
import logging
import time
from typing import Any, Awaitable, Callable

from pydantic import BaseModel
from redis.exceptions import RedisError

from habitpulse.config import CACHE_NAMESPACE, CACHE_OP_TIMEOUT_SECONDS, CACHE_SCAN_COUNT
from habitpulse.errors import Unavailable
from habitpulse.redis_client import RedisConnection, redis_connection

logger = logging.getLogger(__name__)


def canonical_params(params: BaseModel | dict | None) -> str:
    """Compact JSON of the non-null params with sorted keys; "" when nothing is left."""
    if params is None:
        return ""
    if isinstance(params, BaseModel):
        data = params.model_dump(mode="json", exclude_none=True)
    else:
        data = {k: v for k, v in params.items() if v is not None}
    if not data:
        return ""
    return json.dumps(data, sort_keys=True, separators=(",", ":"), default=str)


def build_cache_key(user_id, endpoint: str, params: BaseModel | dict | None = None,
                    namespace: str = CACHE_NAMESPACE) -> str:
    key = f"{namespace}:{user_id}:analytics:{endpoint}"
    suffix = canonical_params(params)
    if suffix:
        key += f":{suffix}"
    return key


def user_prefix(user_id, namespace: str = CACHE_NAMESPACE) -> str:
    return f"{namespace}:{user_id}:analytics:"


def generation_key(user_id, namespace: str = CACHE_NAMESPACE) -> str:
    """Per-user invalidation counter, kept outside the analytics prefix so a
    prefix delete never resets it."""
    return f"{namespace}:{user_id}:generation"


class MemoryStore:
    """In-process fallback: key → {payload, expires_at}."""

    def __init__(self):
        self._entries: dict[str, dict] = {}

    async def get(self, key: str) -> str | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry["expires_at"] <= time.time():
            del self._entries[key]
            return None
        return entry["payload"]

    async def set(self, key: str, payload: str, ttl: int):
        self._entries[key] = {"payload": payload, "expires_at": time.time() + ttl}

    async def delete_prefix(self, prefix: str) -> int:
        doomed = [k for k in self._entries if k.startswith(prefix)]
        for k in doomed:
            del self._entries[k]
        return len(doomed)

    def reap(self) -> int:
        now = time.time()
        expired = [k for k, v in self._entries.items() if v["expires_at"] <= now]
        for k in expired:
            del self._entries[k]
        return len(expired)

    def size(self) -> int:
        return len(self._entries)

    def clear(self):
        self._entries.clear()


class RedisStore:
    """Thin async wrapper; every failure surfaces as Unavailable."""

    def __init__(self, client, timeout: float = CACHE_OP_TIMEOUT_SECONDS, scan_count: int = CACHE_SCAN_COUNT):
        self.client = client
        self.timeout = timeout
        self.scan_count = scan_count

    async def _call(self, coro):
        try:
            return await asyncio.wait_for(coro, timeout=self.timeout)
        except (RedisError, OSError, asyncio.TimeoutError) as e:
            raise Unavailable(f"Redis operation failed: {e!r}")

    async def get(self, key: str) -> str | None:
        return await self._call(self.client.get(key))

    async def set(self, key: str, payload: str, ttl: int):
        await self._call(self.client.setex(key, ttl, payload))

    async def incr(self, key: str) -> int:
        return await self._call(self.client.incr(key))

    async def delete_prefix(self, prefix: str) -> int:
        # SCAN pages instead of KEYS so other clients are never blocked
        cursor = 0
        deleted = 0
        while True:
            cursor, keys = await self._call(
                self.client.scan(cursor=cursor, match=f"{prefix}*", count=self.scan_count)
            )
            if keys:
                deleted += await self._call(self.client.delete(*keys))
            if int(cursor) == 0:
                break
        return deleted


class AnalyticsCache:
    """Process-wide cache handle. Populated lazily, reaped by run_reaper(),
    reset only by tests."""

    def __init__(self, connection: RedisConnection, namespace: str = CACHE_NAMESPACE):
        self.connection = connection
        self.namespace = namespace
        self.memory = MemoryStore()
        self._pending_invalidations: set[str] = set()
        self._generations: dict[str, int] = {}
        self._stale_skips = 0
        self._hits = 0
        self._misses = 0
        self._sets = 0
        self._invalidations = 0
        self._errors = 0

    def key(self, user_id, endpoint: str, params: BaseModel | dict | None = None) -> str:
        return build_cache_key(user_id, endpoint, params, self.namespace)

    # ------------------------------------------------------------------
    async def _backend(self):
        client = await self.connection.get_client()
        if client is None:
            return self.memory
        store = RedisStore(client)
        if self._pending_invalidations:
            await self._replay_invalidations(store)
        return store

    async def _replay_invalidations(self, store: RedisStore):
        """Prefixes whose delete failed while Redis was down are retried first."""
        for prefix in list(self._pending_invalidations):
            await store.delete_prefix(prefix)
            self._pending_invalidations.discard(prefix)
            logger.info(f"Replayed cache invalidation for {prefix}")

    def _degrade(self, error: Exception, op: str, key: str):
        self._errors += 1
        self.connection.mark_down(error)
        logger.warning(f"Cache {op} failed for {key}: {error}")

    # ------------------------------------------------------------------
    async def get(self, key: str) -> Any | None:
        """Cached value, or None on miss, expiry or any cache failure."""
        try:
            backend = await self._backend()
            raw = await backend.get(key)
        except Unavailable as e:
            self._degrade(e, "get", key)
            self._misses += 1
            return None

        if raw is None:
            self._misses += 1
            return None
        try:
            value = json.loads(raw)
        except ValueError:
            logger.warning(f"Dropping unreadable cache entry {key}")
            self._misses += 1
            return None

        self._hits += 1
        logger.debug(f"Cache hit ({'memory' if backend is self.memory else 'redis'}): {key}")
        return value

    async def set(self, key: str, value: Any, ttl_seconds: int):
        """Store a JSON-serializable value. ttl_seconds <= 0 means don't cache."""
        if ttl_seconds <= 0:
            return
        try:
            payload = json.dumps(value)
        except (TypeError, ValueError) as e:
            logger.warning(f"Cache set skipped for {key}, value not serializable: {e}")
            return
        try:
            backend = await self._backend()
            await backend.set(key, payload, ttl_seconds)
        except Unavailable as e:
            self._degrade(e, "set", key)
            return
        self._sets += 1
        logger.debug(f"Cache set: {key} ttl={ttl_seconds}")

    async def invalidate_user(self, user_id) -> int:
        """Drop every analytics entry of one user from both stores."""
        prefix = user_prefix(user_id, self.namespace)
        self._invalidations += 1
        # Bumped before deleting so an in-flight remember() cannot store its result
        self._generations[prefix] = self._generations.get(prefix, 0) + 1
        deleted = await self.memory.delete_prefix(prefix)
        try:
            backend = await self._backend()
            if backend is not self.memory:
                await backend.incr(generation_key(user_id, self.namespace))
                deleted += await backend.delete_prefix(prefix)
            elif self.connection.configured:
                # Redis is down: retry this prefix once it answers again
                self._pending_invalidations.add(prefix)
        except Unavailable as e:
            self._pending_invalidations.add(prefix)
            self._degrade(e, "invalidate", prefix)
        if deleted:
            logger.debug(f"Cache invalidated for user {user_id}: {deleted} entries")
        return deleted

    async def remember(self, user_id, endpoint: str, params: BaseModel | dict | None,
                       ttl_seconds: int, compute: Callable[[], Awaitable[Any]]) -> Any:
        """Cache-aside: serve the cached value or compute, store and return it.

        The computed value is returned in its JSON round-tripped form so a
        fresh and a cached response are identical. If the user's entries were
        invalidated while compute() ran, the value is returned but not stored.
        """
        key = self.key(user_id, endpoint, params)
        cached = await self.get(key)
        if cached is not None:
            return cached

        generation = await self._generation(user_id)
        value = await compute()
        try:
            value = json.loads(json.dumps(value))
        except (TypeError, ValueError) as e:
            logger.warning(f"Result of {endpoint} is not JSON-serializable: {e}")
            return value
        if await self._generation(user_id) != generation:
            self._stale_skips += 1
            logger.debug(f"Cache set skipped for {key}: invalidated during compute")
            return value
        await self.set(key, value, ttl_seconds)
        return value

    async def _generation(self, user_id) -> tuple:
        """Local counter plus the shared Redis counter (None when unreadable)."""
        local = self._generations.get(user_prefix(user_id, self.namespace), 0)
        shared = None
        try:
            backend = await self._backend()
            if backend is not self.memory:
                shared = await backend.get(generation_key(user_id, self.namespace))
        except Unavailable as e:
            self._degrade(e, "generation", generation_key(user_id, self.namespace))
        return local, shared

    # ------------------------------------------------------------------
    def reap_expired(self) -> int:
        reaped = self.memory.reap()
        if reaped:
            logger.debug(f"Reaped {reaped} expired cache entries")
        return reaped

    def metrics(self) -> dict:
        lookups = self._hits + self._misses
        return {
            "hits": self._hits,
            "misses": self._misses,
            "sets": self._sets,
            "invalidations": self._invalidations,
            "stale_skips": self._stale_skips,
            "errors": self._errors,
            "hit_rate": round(self._hits / lookups, 4) if lookups else 0.0,
            "backend": "redis" if self.connection.is_connected() else "memory",
            "redis_configured": self.connection.configured,
            "memory_entries": self.memory.size(),
        }

    def reset(self):
        """Test harness only."""
        self.memory.clear()
        self._pending_invalidations.clear()
        self._generations.clear()
        self._hits = self._misses = self._sets = self._invalidations = self._errors = self._stale_skips = 0


async def run_reaper(cache: "AnalyticsCache", interval_seconds: int):
    """Background task: evict expired in-process entries every interval."""
    while True:
        await asyncio.sleep(interval_seconds)
        cache.reap_expired()


analytics_cache = AnalyticsCache(redis_connection)
