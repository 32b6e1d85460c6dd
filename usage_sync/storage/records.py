"""
Durable record store for usage windows and user records.

This module provides two interchangeable backends:
- PostgresRecordStore: asyncpg-backed, for multi-instance deployments
- InMemoryRecordStore: asyncio-safe dictionaries, for single-instance
  development and tests

Every primitive is atomic on its own: insert-if-absent, conditional window
reset, relative increment and partial-field user update. Nothing in this
module ever overwrites a whole usage row or a whole user row on behalf of a
service call.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Dict, Mapping, Optional

import asyncpg

from usage_sync.config import DatabaseSettings
from usage_sync.db import get_pool
from usage_sync.exceptions import InvalidInputError, StoreUnavailableError
from usage_sync.types.usage import UsageRecord
from usage_sync.types.users import UPDATABLE_USER_FIELDS, UserRecord

logger = logging.getLogger(__name__)


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS usages (
    key TEXT PRIMARY KEY,
    usage BIGINT NOT NULL DEFAULT 0,
    expire TIMESTAMPTZ NOT NULL
);

CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    tg_id TEXT UNIQUE NOT NULL,
    username TEXT,
    plan TEXT,
    subscription_id TEXT,
    midtrans_id TEXT,
    settings JSONB NOT NULL DEFAULT '{}'::jsonb
);
"""

_USER_COLUMNS = "id, tg_id, username, plan, subscription_id, midtrans_id, settings"


def _check_user_fields(fields: Mapping[str, Any]) -> None:
    unknown = set(fields) - UPDATABLE_USER_FIELDS
    if unknown:
        raise InvalidInputError(
            f"Cannot update user fields: {', '.join(sorted(unknown))}",
            field=sorted(unknown)[0],
        )
    if not fields:
        raise InvalidInputError("No user fields to update")


class RecordStore(ABC):
    """Abstract base class for durable record backends."""

    # -- usage windows ------------------------------------------------------

    @abstractmethod
    async def get_usage(self, key: str) -> Optional[UsageRecord]:
        """Fetch the usage record for a key."""

    @abstractmethod
    async def create_usage(self, record: UsageRecord) -> UsageRecord:
        """
        Insert a usage record unless one already exists for its key.

        Returns the stored record, which is the existing one when a
        concurrent creator won the race.
        """

    @abstractmethod
    async def reset_usage_if_expired(
        self,
        key: str,
        observed_expires_at: datetime,
        new_expires_at: datetime,
    ) -> Optional[UsageRecord]:
        """
        Zero the count and move the window, only if the stored window still
        ends at or before observed_expires_at.

        Touches only the count and the expiry. When another caller already
        moved the window the current row is returned unchanged. Returns None
        when the key no longer exists.
        """

    @abstractmethod
    async def increment_usage(self, key: str, amount: int) -> Optional[UsageRecord]:
        """Atomically add amount to the stored count. None if the key is absent."""

    # -- users --------------------------------------------------------------

    @abstractmethod
    async def get_user(self, user_id: str) -> Optional[UserRecord]:
        """Fetch a user by internal id."""

    @abstractmethod
    async def get_user_by_external_id(self, tg_id: str) -> Optional[UserRecord]:
        """Fetch a user by external (Telegram) id."""

    @abstractmethod
    async def update_user_fields(
        self,
        user_id: str,
        fields: Mapping[str, Any],
    ) -> Optional[UserRecord]:
        """
        Update only the named columns of a user.

        Returns the updated user, or None when the user does not exist.
        """

    @abstractmethod
    async def save_user(self, user: UserRecord) -> UserRecord:
        """Insert or replace a user record."""

    async def health_check(self) -> Dict[str, Any]:
        return {"backend": self.backend_name, "connected": True}

    @property
    def backend_name(self) -> str:
        return self.__class__.__name__


class InMemoryRecordStore(RecordStore):
    """
    Process-local record store.

    A single asyncio.Lock serializes every primitive, which gives the same
    per-statement atomicity as the Postgres backend within one process.
    """

    def __init__(self) -> None:
        self._usages: Dict[str, UsageRecord] = {}
        self._users: Dict[str, UserRecord] = {}
        self._lock = asyncio.Lock()

    @property
    def backend_name(self) -> str:
        return "memory"

    async def get_usage(self, key: str) -> Optional[UsageRecord]:
        async with self._lock:
            record = self._usages.get(key)
            return record.model_copy() if record else None

    async def create_usage(self, record: UsageRecord) -> UsageRecord:
        async with self._lock:
            existing = self._usages.get(record.key)
            if existing is not None:
                return existing.model_copy()
            self._usages[record.key] = record.model_copy()
            return record.model_copy()

    async def reset_usage_if_expired(
        self,
        key: str,
        observed_expires_at: datetime,
        new_expires_at: datetime,
    ) -> Optional[UsageRecord]:
        async with self._lock:
            current = self._usages.get(key)
            if current is None:
                return None
            if current.expires_at <= observed_expires_at:
                current = current.model_copy(update={"count": 0, "expires_at": new_expires_at})
                self._usages[key] = current
            return current.model_copy()

    async def increment_usage(self, key: str, amount: int) -> Optional[UsageRecord]:
        async with self._lock:
            current = self._usages.get(key)
            if current is None:
                return None
            current = current.model_copy(update={"count": current.count + amount})
            self._usages[key] = current
            return current.model_copy()

    async def get_user(self, user_id: str) -> Optional[UserRecord]:
        async with self._lock:
            user = self._users.get(user_id)
            return user.model_copy(deep=True) if user else None

    async def get_user_by_external_id(self, tg_id: str) -> Optional[UserRecord]:
        async with self._lock:
            for user in self._users.values():
                if user.tg_id == tg_id:
                    return user.model_copy(deep=True)
            return None

    async def update_user_fields(
        self,
        user_id: str,
        fields: Mapping[str, Any],
    ) -> Optional[UserRecord]:
        _check_user_fields(fields)
        async with self._lock:
            current = self._users.get(user_id)
            if current is None:
                return None
            current = current.model_copy(update=dict(fields), deep=True)
            self._users[user_id] = current
            return current.model_copy(deep=True)

    async def save_user(self, user: UserRecord) -> UserRecord:
        async with self._lock:
            self._users[user.id] = user.model_copy(deep=True)
            return user.model_copy(deep=True)


class PostgresRecordStore(RecordStore):
    """
    asyncpg-backed record store.

    Connection failures and Postgres errors are raised as
    StoreUnavailableError so callers never mistake an outage for an
    empty result.
    """

    def __init__(
        self,
        settings: Optional[DatabaseSettings] = None,
        pool: Optional[asyncpg.Pool] = None,
    ) -> None:
        self._settings = settings or DatabaseSettings()
        self._pool = pool

    @property
    def backend_name(self) -> str:
        return "postgres"

    async def _get_pool(self) -> asyncpg.Pool:
        if self._pool is None:
            self._pool = await get_pool(self._settings)
        if self._pool is None:
            raise StoreUnavailableError(internal_message="DATABASE_URL is not configured")
        return self._pool

    @asynccontextmanager
    async def _connection(self, operation: str) -> AsyncIterator[asyncpg.Connection]:
        try:
            pool = await self._get_pool()
            async with pool.acquire() as conn:
                yield conn
        except StoreUnavailableError:
            raise
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError) as e:
            logger.error("Record store %s failed: %s", operation, e)
            raise StoreUnavailableError(operation=operation, original_error=e) from e

    async def ensure_schema(self) -> None:
        """Create the tables if they do not exist."""
        async with self._connection("ensure_schema") as conn:
            await conn.execute(SCHEMA_SQL)

    @staticmethod
    def _usage_from_row(row: Optional[Mapping[str, Any]]) -> Optional[UsageRecord]:
        if row is None:
            return None
        return UsageRecord(key=row["key"], count=row["usage"], expires_at=row["expire"])

    @staticmethod
    def _user_from_row(row: Optional[Mapping[str, Any]]) -> Optional[UserRecord]:
        if row is None:
            return None
        data = dict(row)
        data["settings"] = data.get("settings") or {}
        return UserRecord(**data)

    async def get_usage(self, key: str) -> Optional[UsageRecord]:
        async with self._connection("get_usage") as conn:
            row = await conn.fetchrow(
                "SELECT key, usage, expire FROM usages WHERE key = $1",
                key,
            )
        return self._usage_from_row(row)

    async def create_usage(self, record: UsageRecord) -> UsageRecord:
        async with self._connection("create_usage") as conn:
            row = await conn.fetchrow(
                """
                INSERT INTO usages (key, usage, expire)
                VALUES ($1, $2, $3)
                ON CONFLICT (key) DO NOTHING
                RETURNING key, usage, expire
                """,
                record.key,
                record.count,
                record.expires_at,
            )
            if row is None:
                row = await conn.fetchrow(
                    "SELECT key, usage, expire FROM usages WHERE key = $1",
                    record.key,
                )
        return self._usage_from_row(row)

    async def reset_usage_if_expired(
        self,
        key: str,
        observed_expires_at: datetime,
        new_expires_at: datetime,
    ) -> Optional[UsageRecord]:
        async with self._connection("reset_usage") as conn:
            row = await conn.fetchrow(
                """
                UPDATE usages
                SET usage = 0, expire = $3
                WHERE key = $1 AND expire <= $2
                RETURNING key, usage, expire
                """,
                key,
                observed_expires_at,
                new_expires_at,
            )
            if row is None:
                row = await conn.fetchrow(
                    "SELECT key, usage, expire FROM usages WHERE key = $1",
                    key,
                )
        return self._usage_from_row(row)

    async def increment_usage(self, key: str, amount: int) -> Optional[UsageRecord]:
        async with self._connection("increment_usage") as conn:
            row = await conn.fetchrow(
                """
                UPDATE usages
                SET usage = usage + $2
                WHERE key = $1
                RETURNING key, usage, expire
                """,
                key,
                amount,
            )
        return self._usage_from_row(row)

    async def get_user(self, user_id: str) -> Optional[UserRecord]:
        async with self._connection("get_user") as conn:
            row = await conn.fetchrow(
                f"SELECT {_USER_COLUMNS} FROM users WHERE id = $1",
                user_id,
            )
        return self._user_from_row(row)

    async def get_user_by_external_id(self, tg_id: str) -> Optional[UserRecord]:
        async with self._connection("get_user_by_external_id") as conn:
            row = await conn.fetchrow(
                f"SELECT {_USER_COLUMNS} FROM users WHERE tg_id = $1",
                tg_id,
            )
        return self._user_from_row(row)

    async def update_user_fields(
        self,
        user_id: str,
        fields: Mapping[str, Any],
    ) -> Optional[UserRecord]:
        _check_user_fields(fields)
        # Column names come from the UPDATABLE_USER_FIELDS whitelist only
        columns = sorted(fields)
        assignments = ", ".join(f"{column} = ${i}" for i, column in enumerate(columns, start=2))
        async with self._connection("update_user_fields") as conn:
            row = await conn.fetchrow(
                f"UPDATE users SET {assignments} WHERE id = $1 RETURNING {_USER_COLUMNS}",
                user_id,
                *(fields[column] for column in columns),
            )
        return self._user_from_row(row)

    async def save_user(self, user: UserRecord) -> UserRecord:
        async with self._connection("save_user") as conn:
            row = await conn.fetchrow(
                f"""
                INSERT INTO users ({_USER_COLUMNS})
                VALUES ($1, $2, $3, $4, $5, $6, $7)
                ON CONFLICT (id) DO UPDATE SET
                    tg_id = EXCLUDED.tg_id,
                    username = EXCLUDED.username,
                    plan = EXCLUDED.plan,
                    subscription_id = EXCLUDED.subscription_id,
                    midtrans_id = EXCLUDED.midtrans_id,
                    settings = EXCLUDED.settings
                RETURNING {_USER_COLUMNS}
                """,
                user.id,
                user.tg_id,
                user.username,
                user.plan,
                user.subscription_id,
                user.midtrans_id,
                user.settings,
            )
        return self._user_from_row(row)

    async def health_check(self) -> Dict[str, Any]:
        try:
            async with self._connection("health_check") as conn:
                await conn.fetchval("SELECT 1")
            return {"backend": self.backend_name, "connected": True}
        except StoreUnavailableError as e:
            return {
                "backend": self.backend_name,
                "connected": False,
                "error": (e.internal_message or e.message)[:100],
            }


def create_record_store(settings: Optional[DatabaseSettings] = None) -> RecordStore:
    """Postgres when DATABASE_URL is configured, in-memory otherwise."""
    settings = settings or DatabaseSettings()
    if settings.is_configured:
        logger.info("Record store initialized with Postgres")
        return PostgresRecordStore(settings)
    logger.info("DATABASE_URL not configured, using in-memory record store")
    return InMemoryRecordStore()
