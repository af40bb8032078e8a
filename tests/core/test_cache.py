"""
Tests for backplane.core.cache.

Covers:
- InMemoryCache: get/set/delete, LRU eviction, TTL expiry
- RedisCache: JSON values, setex and delete, against a stub client
- create_cache URL selection
"""

import json
import time

import pytest

from backplane.core.cache import InMemoryCache, RedisCache, create_cache
from backplane.core.errors import ConfigError


class TestInMemoryCache:
    """Test InMemoryCache backend."""

    def test_basic_get_set(self):
        """Cache should store and retrieve values."""
        cache = InMemoryCache(max_size=100, default_ttl_seconds=None)
        cache.set("backplane:job:1:progress", {"progress": 40})
        assert cache.get("backplane:job:1:progress") == {"progress": 40}

    def test_get_missing_key(self):
        """Getting a missing key should return None."""
        assert InMemoryCache().get("missing") is None

    def test_delete(self):
        """Delete should remove a key."""
        cache = InMemoryCache()
        cache.set("key1", "value1")
        cache.delete("key1")
        assert cache.get("key1") is None

    def test_delete_missing_key(self):
        """Deleting an absent key is a no-op."""
        InMemoryCache().delete("missing")

    def test_ttl_expiry(self):
        """Keys should expire after TTL."""
        cache = InMemoryCache(default_ttl_seconds=1)
        cache.set("temp", "value", ttl_seconds=1)
        assert cache.get("temp") == "value"
        time.sleep(1.1)
        assert cache.get("temp") is None

    def test_lru_eviction(self):
        """Least recently used key is evicted at max_size."""
        cache = InMemoryCache(max_size=2, default_ttl_seconds=None)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.get("a")
        cache.set("c", 3)
        assert cache.get("b") is None
        assert cache.get("a") == 1
        assert cache.get("c") == 3


class _StubRedis:
    def __init__(self):
        self.data: dict[str, bytes] = {}
        self.ttls: dict[str, int] = {}

    def get(self, key):
        return self.data.get(key)

    def set(self, key, value):
        self.data[key] = value

    def setex(self, key, ttl, value):
        self.data[key] = value
        self.ttls[key] = ttl

    def delete(self, key):
        self.data.pop(key, None)


class TestRedisCache:
    """Test RedisCache with a stub client."""

    def test_set_uses_setex_with_ttl(self):
        """Values are JSON encoded and expire."""
        client = _StubRedis()
        cache = RedisCache(client=client, default_ttl_seconds=300)
        cache.set("backplane:job:1:progress", {"progress": 10})
        assert json.loads(client.data["backplane:job:1:progress"]) == {"progress": 10}
        assert client.ttls["backplane:job:1:progress"] == 300
        assert cache.get("backplane:job:1:progress") == {"progress": 10}

    def test_delete(self):
        """delete() removes the key from Redis."""
        client = _StubRedis()
        cache = RedisCache(client=client)
        cache.set("backplane:a", 1)
        cache.delete("backplane:a")
        assert "backplane:a" not in client.data
        assert cache.get("backplane:a") is None


class TestCreateCache:
    """Test the cache factory."""

    def test_memory(self):
        """'memory' and empty select the in-process cache."""
        assert isinstance(create_cache("memory"), InMemoryCache)
        assert isinstance(create_cache(None), InMemoryCache)

    def test_redis_url(self):
        """redis:// URLs build a RedisCache without connecting."""
        assert isinstance(create_cache("redis://localhost:6379/0"), RedisCache)

    def test_unknown_scheme(self):
        """Unknown schemes are a configuration error."""
        with pytest.raises(ConfigError):
            create_cache("memcached://localhost")
