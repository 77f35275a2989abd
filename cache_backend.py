"""Unified caching interface with Redis / in-memory swap.

Provides a simple get/set/delete API. When REDIS_URL is configured
and the redis package can reach a server, uses Redis; otherwise uses an
in-process TTL dictionary.

Usage:
    from cache_backend import init_cache, get_cache
    init_cache(app)          # called once in create_app()
    cache = get_cache()      # module-level accessor
    cache.set("key", value, ttl=300)
    value = cache.get("key")
"""

from __future__ import annotations

import json
import logging
import threading
import time
from typing import Any, Protocol

import redis

logger = logging.getLogger(__name__)

# ── Protocol ───────────────────────────────────────────────

class CacheBackend(Protocol):
    def get(self, key: str) -> Any | None: ...
    def set(self, key: str, value: Any, ttl: int = 300) -> None: ...
    def delete(self, key: str) -> None: ...
    def delete_prefix(self, prefix: str) -> None: ...


# ── In-Memory Implementation ──────────────────────────────

class InMemoryCache:
    """Dict with expiry timestamps; evicts the soonest-expiring entry when full."""

    MAX_ENTRIES = 1000

    def __init__(self) -> None:
        self._store: dict[str, tuple[str, float]] = {}  # key -> (json, expires_at)
        self._lock = threading.Lock()

    def get(self, key: str) -> Any | None:
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return None
            raw, expires_at = entry
            if time.time() > expires_at:
                del self._store[key]
                return None
        return json.loads(raw)

    def set(self, key: str, value: Any, ttl: int = 300) -> None:
        raw = json.dumps(value)
        with self._lock:
            if key not in self._store and len(self._store) >= self.MAX_ENTRIES:
                oldest = min(self._store, key=lambda k: self._store[k][1])
                del self._store[oldest]
            self._store[key] = (raw, time.time() + ttl)

    def delete(self, key: str) -> None:
        with self._lock:
            self._store.pop(key, None)

    def delete_prefix(self, prefix: str) -> None:
        with self._lock:
            for key in [k for k in self._store if k.startswith(prefix)]:
                del self._store[key]


# ── Redis Implementation ──────────────────────────────────

class RedisCache:
    """Wraps redis.Redis with graceful error handling.

    A cache outage degrades to misses; callers fall through to the database.
    """

    def __init__(self, redis_client, namespace: str = "studyprogress:") -> None:
        self._redis = redis_client
        self._ns = namespace

    def get(self, key: str) -> Any | None:
        try:
            raw = self._redis.get(self._ns + key)
            if raw is None:
                return None
            return json.loads(raw)
        except (redis.RedisError, json.JSONDecodeError) as e:
            logger.warning("Redis GET error (key=%s): %s", key, e)
            return None

    def set(self, key: str, value: Any, ttl: int = 300) -> None:
        try:
            self._redis.setex(self._ns + key, ttl, json.dumps(value))
        except redis.RedisError as e:
            logger.warning("Redis SET error (key=%s): %s", key, e)

    def delete(self, key: str) -> None:
        try:
            self._redis.delete(self._ns + key)
        except redis.RedisError as e:
            logger.warning("Redis DELETE error (key=%s): %s", key, e)

    def delete_prefix(self, prefix: str) -> None:
        try:
            keys = list(self._redis.scan_iter(match=f"{self._ns}{prefix}*"))
            if keys:
                self._redis.delete(*keys)
        except redis.RedisError as e:
            logger.warning("Redis DELETE prefix error (prefix=%s): %s", prefix, e)


# ── Module-level singleton ────────────────────────────────

_cache: CacheBackend | None = None


def init_cache(app) -> None:
    """Initialize the cache backend. Call once from create_app()."""
    global _cache

    redis_url = app.config.get("REDIS_URL", "")
    if redis_url:
        try:
            client = redis.Redis.from_url(redis_url, decode_responses=False)
            client.ping()
            _cache = RedisCache(client)
            app.logger.info("Cache backend: Redis (%s)", redis_url)
            return
        except redis.RedisError as e:
            app.logger.warning("Redis connection failed (%s); falling back to in-memory cache.", e)

    _cache = InMemoryCache()
    app.logger.info("Cache backend: in-memory")


def get_cache() -> CacheBackend:
    """Return the active cache backend. Lazily initializes if needed."""
    global _cache
    if _cache is None:
        _cache = InMemoryCache()
    return _cache
