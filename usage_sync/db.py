"""
Async Postgres pool helpers.

The durable record store talks to Postgres directly through a shared
asyncpg pool. jsonb columns are decoded to Python objects on every
connection.
"""

from __future__ import annotations

import json
import logging
from typing import Optional

import asyncpg

from usage_sync.config import DatabaseSettings

logger = logging.getLogger(__name__)

_pool: Optional[asyncpg.Pool] = None


async def _init_connection(conn: asyncpg.Connection) -> None:
    await conn.set_type_codec(
        "jsonb",
        encoder=json.dumps,
        decoder=json.loads,
        schema="pg_catalog",
    )


async def get_pool(settings: Optional[DatabaseSettings] = None) -> Optional[asyncpg.Pool]:
    """Return the shared pool, creating it on first use. None when unconfigured."""
    global _pool
    if _pool is not None:
        return _pool

    settings = settings or DatabaseSettings()
    if not settings.database_url:
        return None

    # If you're connecting via a PgBouncer pooler, prepared statements can break.
    # Disabling the statement cache keeps behavior consistent for both direct and pooled URLs.
    _pool = await asyncpg.create_pool(
        dsn=settings.database_url,
        min_size=settings.database_pool_min_size,
        max_size=settings.database_pool_max_size,
        statement_cache_size=0,
        init=_init_connection,
    )

    logger.info(
        "Postgres pool initialized (min=%s max=%s)",
        settings.database_pool_min_size,
        settings.database_pool_max_size,
    )
    return _pool


async def close_pool() -> None:
    """Close the global asyncpg pool (used during graceful shutdown)."""
    global _pool
    if _pool is None:
        return
    try:
        await _pool.close()
    finally:
        _pool = None
