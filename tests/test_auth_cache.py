"""
Tests for the authorization cache backends.
"""

import json
import os
import sys
import unittest
from unittest.mock import AsyncMock, MagicMock, patch

import redis.asyncio as redis

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from usage_sync.config import CacheSettings
from usage_sync.storage import (
    InMemoryAuthCache,
    RedisAuthCache,
    RedisClient,
    create_auth_cache,
)
from usage_sync.utils.cache import TTLCache


class TestInMemoryAuthCache(unittest.IsolatedAsyncioTestCase):

    async def test_set_get_invalidate(self):
        cache = InMemoryAuthCache()
        await cache.set("tok", {"id": "user-1"})

        self.assertEqual(await cache.get("tok"), {"id": "user-1"})
        self.assertTrue(await cache.invalidate("tok"))
        self.assertIsNone(await cache.get("tok"))
        self.assertFalse(await cache.invalidate("tok"))

    async def test_custom_prefix(self):
        cache = InMemoryAuthCache(prefix="session:")
        self.assertEqual(cache.cache_key("tok"), "session:tok")


class TestTTLCache(unittest.TestCase):

    def setUp(self):
        self.now = 100.0
        self.cache = TTLCache(max_size=2, clock=lambda: self.now)

    def test_evicts_least_recently_used(self):
        self.cache.set("a", 1)
        self.cache.set("b", 2)
        self.cache.get("a")
        self.cache.set("c", 3)

        self.assertEqual(len(self.cache), 2)
        self.assertEqual(self.cache.get("a"), 1)
        self.assertIsNone(self.cache.get("b"))

    def test_entries_expire_after_ttl(self):
        self.cache.set("a", 1, ttl_seconds=30)

        self.now += 29
        self.assertEqual(self.cache.get("a"), 1)
        self.now += 1
        self.assertIsNone(self.cache.get("a"))
        self.assertEqual(len(self.cache), 0)

    def test_rejects_empty_capacity(self):
        with self.assertRaises(ValueError):
            TTLCache(max_size=0)


class TestRedisAuthCache(unittest.IsolatedAsyncioTestCase):

    async def asyncSetUp(self):
        self.client = MagicMock(spec=RedisClient)
        self.client.get = AsyncMock(return_value=None)
        self.client.set = AsyncMock()
        self.client.delete = AsyncMock(return_value=0)
        self.cache = RedisAuthCache(self.client)

    async def test_invalidate_deletes_prefixed_key(self):
        self.client.delete.return_value = 1

        self.assertTrue(await self.cache.invalidate("tok"))
        self.client.delete.assert_awaited_once_with("auth:tok")

    async def test_values_stored_as_json(self):
        await self.cache.set("tok", {"id": "user-1"}, ttl_seconds=60)
        self.client.set.assert_awaited_once_with("auth:tok", json.dumps({"id": "user-1"}), 60)

        self.client.get.return_value = '{"id": "user-1"}'
        self.assertEqual(await self.cache.get("tok"), {"id": "user-1"})

    async def test_delete_errors_propagate(self):
        self.client.delete.side_effect = redis.ConnectionError("reset by peer")
        with self.assertRaises(redis.ConnectionError):
            await self.cache.invalidate("tok")


class TestRedisClient(unittest.IsolatedAsyncioTestCase):

    async def asyncSetUp(self):
        self.conn = AsyncMock()
        patcher = patch("usage_sync.storage.redis_client.redis.from_url", return_value=self.conn)
        self.from_url = patcher.start()
        self.addCleanup(patcher.stop)
        self.client = RedisClient("redis://cache.test:6379/0")

    async def test_connects_once(self):
        self.conn.delete.return_value = 1

        await self.client.delete("auth:a")
        await self.client.delete("auth:b")

        self.from_url.assert_called_once()
        self.assertEqual(self.conn.ping.await_count, 1)

    async def test_unreachable_redis_raises(self):
        self.conn.ping.side_effect = redis.ConnectionError("refused")

        with self.assertRaises(redis.ConnectionError):
            await self.client.delete("auth:a")
        self.conn.aclose.assert_awaited_once()

    async def test_ping_reports_failure(self):
        self.conn.ping.side_effect = redis.TimeoutError("timed out")

        status = await self.client.ping()

        self.assertFalse(status["connected"])
        self.assertIn("TimeoutError", status["error"])


class TestCreateAuthCache(unittest.TestCase):

    def test_memory_without_redis_url(self):
        cache = create_auth_cache(CacheSettings(redis_url=None))
        self.assertIsInstance(cache, InMemoryAuthCache)

    def test_redis_with_url(self):
        cache = create_auth_cache(CacheSettings(redis_url="redis://cache.test:6379/0", auth_cache_prefix="a:"))
        self.assertIsInstance(cache, RedisAuthCache)
        self.assertEqual(cache.cache_key("tok"), "a:tok")


if __name__ == "__main__":
    unittest.main()
