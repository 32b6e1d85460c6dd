"""
Tests for the durable record store backends.

The in-memory backend is exercised directly; the Postgres backend runs
against a mocked asyncpg pool to check the statements it issues and how it
reports outages.
"""

import os
import sys
import unittest
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import asyncpg

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from fakes import make_user

from usage_sync.config import DatabaseSettings
from usage_sync.exceptions import InvalidInputError, StoreUnavailableError
from usage_sync.storage import (
    SCHEMA_SQL,
    InMemoryRecordStore,
    PostgresRecordStore,
    create_record_store,
)
from usage_sync.types.usage import UsageRecord

NOW = datetime(2024, 1, 1, tzinfo=timezone.utc)
LATER = NOW + timedelta(hours=24)


class TestInMemoryUsage(unittest.IsolatedAsyncioTestCase):
    """Usage primitives of the in-memory backend."""

    async def asyncSetUp(self):
        self.store = InMemoryRecordStore()

    async def test_create_is_insert_if_absent(self):
        first = await self.store.create_usage(UsageRecord(key="u:1", count=0, expires_at=LATER))
        await self.store.increment_usage("u:1", 2)
        second = await self.store.create_usage(UsageRecord(key="u:1", count=0, expires_at=NOW))

        self.assertEqual(first.count, 0)
        self.assertEqual(second.count, 2)
        self.assertEqual(second.expires_at, LATER)

    async def test_conditional_reset(self):
        await self.store.create_usage(UsageRecord(key="u:1", count=5, expires_at=NOW))

        reset = await self.store.reset_usage_if_expired("u:1", NOW, LATER)
        self.assertEqual((reset.count, reset.expires_at), (0, LATER))

        await self.store.increment_usage("u:1", 1)
        again = await self.store.reset_usage_if_expired("u:1", NOW, LATER + timedelta(hours=1))
        self.assertEqual((again.count, again.expires_at), (1, LATER))

    async def test_reset_missing_key(self):
        self.assertIsNone(await self.store.reset_usage_if_expired("nope", NOW, LATER))

    async def test_increment_missing_key(self):
        self.assertIsNone(await self.store.increment_usage("nope", 1))

    async def test_returned_records_are_copies(self):
        record = await self.store.create_usage(UsageRecord(key="u:1", count=0, expires_at=LATER))
        record.count = 99
        self.assertEqual((await self.store.get_usage("u:1")).count, 0)


class TestInMemoryUsers(unittest.IsolatedAsyncioTestCase):
    """User primitives of the in-memory backend."""

    async def asyncSetUp(self):
        self.store = InMemoryRecordStore()
        await self.store.save_user(make_user())

    async def test_lookup_by_external_id(self):
        user = await self.store.get_user_by_external_id("1001")
        self.assertEqual(user.id, "user-1")
        self.assertIsNone(await self.store.get_user_by_external_id("2"))

    async def test_partial_update(self):
        user = await self.store.update_user_fields("user-1", {"plan": "premium", "midtrans_id": "m"})
        self.assertEqual((user.plan, user.midtrans_id, user.username), ("premium", "m", "alice"))

    async def test_update_unknown_user(self):
        self.assertIsNone(await self.store.update_user_fields("nobody", {"plan": "pro"}))

    async def test_update_rejects_unknown_columns(self):
        with self.assertRaises(InvalidInputError):
            await self.store.update_user_fields("user-1", {"id": "other"})

    async def test_settings_are_not_shared(self):
        user = await self.store.get_user("user-1")
        user.settings["theme"] = "dark"
        self.assertEqual((await self.store.get_user("user-1")).settings, {"theme": "light"})


def mock_pool(conn):
    pool = MagicMock()
    pool.acquire.return_value.__aenter__.return_value = conn
    pool.acquire.return_value.__aexit__.return_value = False
    return pool


class TestPostgresRecordStore(unittest.IsolatedAsyncioTestCase):
    """Statements issued by the Postgres backend."""

    async def asyncSetUp(self):
        self.conn = AsyncMock()
        self.store = PostgresRecordStore(pool=mock_pool(self.conn))

    async def test_create_falls_back_to_existing_row(self):
        self.conn.fetchrow.side_effect = [None, {"key": "u:1", "usage": 3, "expire": LATER}]

        record = await self.store.create_usage(UsageRecord(key="u:1", count=0, expires_at=NOW))

        self.assertEqual(record.count, 3)
        self.assertIn("ON CONFLICT (key) DO NOTHING", self.conn.fetchrow.call_args_list[0].args[0])

    async def test_reset_is_conditional_on_observed_expiry(self):
        self.conn.fetchrow.return_value = {"key": "u:1", "usage": 0, "expire": LATER}

        await self.store.reset_usage_if_expired("u:1", NOW, LATER)

        sql, *params = self.conn.fetchrow.call_args.args
        self.assertIn("expire <= $2", sql)
        self.assertEqual(params, ["u:1", NOW, LATER])

    async def test_increment_is_relative(self):
        self.conn.fetchrow.return_value = {"key": "u:1", "usage": 4, "expire": LATER}

        record = await self.store.increment_usage("u:1", 1)

        self.assertIn("usage = usage + $2", self.conn.fetchrow.call_args.args[0])
        self.assertEqual(record.count, 4)

    async def test_partial_user_update_names_only_given_columns(self):
        self.conn.fetchrow.return_value = {
            "id": "user-1",
            "tg_id": "1001",
            "username": "alice",
            "plan": "premium",
            "subscription_id": None,
            "midtrans_id": "m",
            "settings": None,
        }

        user = await self.store.update_user_fields("user-1", {"plan": "premium", "midtrans_id": "m"})

        sql, *params = self.conn.fetchrow.call_args.args
        self.assertIn("SET midtrans_id = $2, plan = $3 WHERE id = $1", sql)
        self.assertEqual(params, ["user-1", "m", "premium"])
        self.assertEqual(user.settings, {})

    async def test_database_errors_become_store_unavailable(self):
        for error in (asyncpg.InterfaceError("closed"), ConnectionRefusedError("refused")):
            with self.subTest(error=type(error).__name__):
                self.conn.fetchrow.side_effect = error
                with self.assertRaises(StoreUnavailableError) as ctx:
                    await self.store.get_usage("u:1")
                self.assertEqual(ctx.exception.operation, "get_usage")
                self.assertEqual(ctx.exception.status_code, 503)

    async def test_health_check_reports_outage(self):
        self.conn.fetchval.side_effect = ConnectionRefusedError("refused")
        status = await self.store.health_check()
        self.assertFalse(status["connected"])
        self.assertEqual(status["backend"], "postgres")

    async def test_ensure_schema(self):
        await self.store.ensure_schema()
        self.conn.execute.assert_awaited_once_with(SCHEMA_SQL)

    async def test_unconfigured_pool_is_unavailable(self):
        store = PostgresRecordStore(DatabaseSettings(database_url=None))
        with self.assertRaises(StoreUnavailableError):
            await store.get_usage("u:1")


class TestCreateRecordStore(unittest.TestCase):

    def test_memory_without_database_url(self):
        self.assertIsInstance(create_record_store(DatabaseSettings(database_url=None)), InMemoryRecordStore)

    def test_postgres_with_database_url(self):
        store = create_record_store(DatabaseSettings(database_url="postgresql://db.test/usage"))
        self.assertIsInstance(store, PostgresRecordStore)


if __name__ == "__main__":
    unittest.main()
