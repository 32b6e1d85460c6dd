"""
Redis connection used by the authorization cache.

The connection is opened on first use. Connection and timeout errors are
raised as redis exceptions; callers decide whether they are fatal.
"""

import logging
from typing import Any, Dict, Optional

import redis.asyncio as redis

logger = logging.getLogger(__name__)


class RedisClient:
    """Lazily connected string get/set/delete against one Redis URL."""

    def __init__(self, redis_url: str, timeout_seconds: float = 5.0) -> None:
        self.redis_url = redis_url
        self.timeout_seconds = timeout_seconds
        self._conn: Optional[redis.Redis] = None

    async def connection(self) -> redis.Redis:
        if self._conn is None:
            conn = redis.from_url(
                self.redis_url,
                decode_responses=True,
                socket_connect_timeout=self.timeout_seconds,
                socket_timeout=self.timeout_seconds,
            )
            try:
                await conn.ping()
            except redis.RedisError:
                await conn.aclose()
                raise
            logger.info("Connected to Redis")
            self._conn = conn
        return self._conn

    async def get(self, key: str) -> Optional[str]:
        conn = await self.connection()
        return await conn.get(key)

    async def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        conn = await self.connection()
        await conn.set(key, value, ex=ttl_seconds)

    async def delete(self, key: str) -> int:
        conn = await self.connection()
        return await conn.delete(key)

    async def ping(self) -> Dict[str, Any]:
        """Connection status for the health endpoint."""
        try:
            conn = await self.connection()
            await conn.ping()
        except redis.RedisError as e:
            logger.warning("Redis ping failed: %s", e)
            self._conn = None
            return {"connected": False, "error": f"{e.__class__.__name__}: {e}"}
        return {"connected": True}

    async def close(self) -> None:
        conn, self._conn = self._conn, None
        if conn is not None:
            await conn.aclose()
