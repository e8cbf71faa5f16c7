"""Key/value cache adapter used for response caching and rate-limit counters.

Two backends share one interface:

- ``memory://``  in-process store for development and tests
- ``redis://``   redis-py client for production

Backend failures surface as :class:`CacheError`; callers decide whether to
degrade (read paths, rate limiter) or propagate.
"""
import fnmatch
import json
import math
import threading
import time
from typing import Any, Dict, List, Optional, Tuple

import redis

from devicehub.utils.logger import logger


class CacheError(Exception):
    """The cache backend could not be reached or rejected the command."""


class Cache:
    """Interface shared by all cache backends"""

    def connect(self) -> None:
        pass

    def close(self) -> None:
        pass

    def ping(self) -> bool:
        raise NotImplementedError

    def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        raise NotImplementedError

    def keys(self, pattern: str) -> List[str]:
        raise NotImplementedError

    def delete(self, keys: List[str]) -> int:
        raise NotImplementedError

    def incr(self, key: str) -> int:
        raise NotImplementedError

    def expire(self, key: str, seconds: int) -> bool:
        raise NotImplementedError

    def ttl(self, key: str) -> int:
        """Seconds left on ``key``: -1 if it has no expiry, -2 if it does not exist."""
        raise NotImplementedError

    # ----- JSON helpers ---------------------------------------------------

    def get_json(self, key: str) -> Any:
        raw = self.get(key)
        if raw is None:
            return None
        return json.loads(raw)

    def set_json(self, key: str, value: Any, ttl_seconds: int) -> None:
        self.set(key, json.dumps(value, default=str), ttl_seconds)

    def delete_pattern(self, pattern: str) -> int:
        """Delete every key matching a glob pattern; returns the number removed."""
        keys = self.keys(pattern)
        if not keys:
            return 0
        return self.delete(keys)


class MemoryCache(Cache):
    """Thread-safe in-process cache with per-key expiry"""

    def __init__(self):
        self._data: Dict[str, Tuple[str, Optional[float]]] = {}
        self._lock = threading.Lock()

    def _alive(self, key: str) -> Optional[Tuple[str, Optional[float]]]:
        entry = self._data.get(key)
        if entry is None:
            return None
        expires_at = entry[1]
        if expires_at is not None and expires_at <= time.monotonic():
            del self._data[key]
            return None
        return entry

    def ping(self) -> bool:
        return True

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._alive(key)
            return entry[0] if entry else None

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        with self._lock:
            self._data[key] = (value, time.monotonic() + ttl_seconds)

    def keys(self, pattern: str) -> List[str]:
        with self._lock:
            return [k for k in list(self._data) if self._alive(k) and fnmatch.fnmatchcase(k, pattern)]

    def delete(self, keys: List[str]) -> int:
        removed = 0
        with self._lock:
            for key in keys:
                if self._alive(key) is not None:
                    del self._data[key]
                    removed += 1
        return removed

    def incr(self, key: str) -> int:
        with self._lock:
            entry = self._alive(key)
            if entry is None:
                self._data[key] = ("1", None)
                return 1
            value = int(entry[0]) + 1
            self._data[key] = (str(value), entry[1])
            return value

    def expire(self, key: str, seconds: int) -> bool:
        with self._lock:
            entry = self._alive(key)
            if entry is None:
                return False
            self._data[key] = (entry[0], time.monotonic() + seconds)
            return True

    def ttl(self, key: str) -> int:
        with self._lock:
            entry = self._alive(key)
            if entry is None:
                return -2
            if entry[1] is None:
                return -1
            return max(1, math.ceil(entry[1] - time.monotonic()))

    def clear(self) -> None:
        with self._lock:
            self._data.clear()


class RedisCache(Cache):
    """redis-py backed cache; every command error becomes a CacheError"""

    def __init__(self, url: str):
        self.url = url
        self._client: Optional[redis.Redis] = None

    @property
    def client(self) -> redis.Redis:
        if self._client is None:
            raise CacheError("Redis cache is not connected")
        return self._client

    def connect(self) -> None:
        self._client = redis.Redis.from_url(self.url, decode_responses=True)
        try:
            self._client.ping()
            logger.info("Redis connected successfully", extra={"action": "cache_connect"})
        except redis.RedisError as exc:
            # Start anyway; read paths and the rate limiter degrade while it is down
            logger.warning("Redis unreachable at startup", extra={"action": "cache_connect", "error": str(exc)})

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    def _call(self, command: str, *args):
        try:
            return getattr(self.client, command)(*args)
        except redis.RedisError as exc:
            raise CacheError(f"redis {command} failed: {exc}") from exc

    def ping(self) -> bool:
        return bool(self._call("ping"))

    def get(self, key: str) -> Optional[str]:
        return self._call("get", key)

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        try:
            self.client.set(key, value, ex=ttl_seconds)
        except redis.RedisError as exc:
            raise CacheError(f"redis set failed: {exc}") from exc

    def keys(self, pattern: str) -> List[str]:
        # SCAN instead of KEYS so large keyspaces do not block the server
        try:
            return list(self.client.scan_iter(match=pattern, count=500))
        except redis.RedisError as exc:
            raise CacheError(f"redis scan failed: {exc}") from exc

    def delete(self, keys: List[str]) -> int:
        if not keys:
            return 0
        return int(self._call("delete", *keys))

    def incr(self, key: str) -> int:
        return int(self._call("incr", key))

    def expire(self, key: str, seconds: int) -> bool:
        return bool(self._call("expire", key, seconds))

    def ttl(self, key: str) -> int:
        return int(self._call("ttl", key))


def create_cache(url: str) -> Cache:
    """Build the cache backend named by ``url``"""
    if url.startswith("memory://"):
        return MemoryCache()
    if url.startswith(("redis://", "rediss://", "unix://")):
        return RedisCache(url)
    raise ValueError(f"Unsupported CACHE_URL scheme: {url}")


def get_cache_json(cache: Cache, key: str) -> Any:
    """Read a cached JSON value, treating an unreachable cache as a miss."""
    try:
        return cache.get_json(key)
    except CacheError as exc:
        logger.warning("Cache read failed, falling back to database", extra={"action": "cache_get", "error": str(exc)})
        return None


def set_cache_json(cache: Cache, key: str, value: Any, ttl_seconds: int) -> None:
    try:
        cache.set_json(key, value, ttl_seconds)
    except CacheError as exc:
        logger.warning("Cache write failed", extra={"action": "cache_set", "error": str(exc)})


def invalidate(cache: Cache, pattern: str) -> int:
    """Delete all keys matching ``pattern``; a cache outage is logged, not raised."""
    try:
        removed = cache.delete_pattern(pattern)
    except CacheError as exc:
        logger.error("Cache invalidation failed", extra={"action": "cache_invalidate", "error": str(exc)})
        return 0
    if removed:
        logger.debug(f"Invalidated {removed} cache keys for {pattern}")
    return removed
