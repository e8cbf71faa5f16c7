"""Tests for the cache adapter"""
import time

import pytest

from devicehub.cache import CacheError, MemoryCache, RedisCache, create_cache, get_cache_json, invalidate


class BrokenCache(MemoryCache):
    def get(self, key):
        raise CacheError("down")

    def keys(self, pattern):
        raise CacheError("down")


def test_set_and_get(cache: MemoryCache):
    cache.set("k", "v", 60)
    assert cache.get("k") == "v"
    assert cache.get("missing") is None


def test_expiry(cache: MemoryCache):
    cache.set("k", "v", 1)
    time.sleep(1.05)
    assert cache.get("k") is None
    assert cache.ttl("k") == -2


def test_ttl_states(cache: MemoryCache):
    assert cache.ttl("nope") == -2
    cache.incr("counter")
    assert cache.ttl("counter") == -1
    cache.expire("counter", 30)
    assert 0 < cache.ttl("counter") <= 30


def test_incr(cache: MemoryCache):
    assert cache.incr("c") == 1
    assert cache.incr("c") == 2
    assert cache.get("c") == "2"


def test_json_roundtrip(cache: MemoryCache):
    cache.set_json("j", {"a": [1, 2]}, 60)
    assert cache.get_json("j") == {"a": [1, 2]}


def test_delete_pattern(cache: MemoryCache):
    cache.set("device-listing:userId=1:type=all:status=all", "x", 60)
    cache.set("device-listing:userId=1:type=meter:status=all", "x", 60)
    cache.set("device-listing:userId=11:type=all:status=all", "x", 60)

    assert cache.delete_pattern("device-listing:userId=1:*") == 2
    assert cache.keys("device-listing:*") == ["device-listing:userId=11:type=all:status=all"]


def test_degraded_reads_and_invalidation():
    broken = BrokenCache()
    assert get_cache_json(broken, "k") is None
    assert invalidate(broken, "k*") == 0


def test_create_cache():
    assert isinstance(create_cache("memory://"), MemoryCache)
    assert isinstance(create_cache("redis://localhost:6379/0"), RedisCache)
    with pytest.raises(ValueError):
        create_cache("memcached://localhost")


def test_redis_errors_become_cache_errors():
    cache = RedisCache("redis://127.0.0.1:1/0")
    cache.connect()  # unreachable: logs a warning, does not raise
    with pytest.raises(CacheError):
        cache.get("k")


def test_ttl_rounds_up_last_second(cache: MemoryCache):
    cache.set("k", "v", 1)
    time.sleep(0.7)
    assert cache.ttl("k") == 1
