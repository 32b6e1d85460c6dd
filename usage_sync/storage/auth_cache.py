"""
Authorization cache keyed by the caller's authorization token.

The authentication layer caches the user it resolved for a token under
"auth:<token>". Whenever this service changes the user record behind that
token, the entry is deleted so the next request reloads fresh data.

Two backends:
- RedisAuthCache: shared across instances
- InMemoryAuthCache: process-local TTL cache, for development and tests
"""

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from usage_sync.config import CacheSettings
from usage_sync.utils.cache import TTLCache

from .redis_client import RedisClient

logger = logging.getLogger(__name__)


class AuthCache(ABC):
    """Abstract authorization cache."""

    def __init__(self, prefix: str = "auth:") -> None:
        self.prefix = prefix

    def cache_key(self, auth_key: str) -> str:
        """Cache key for an authorization token."""
        return f"{self.prefix}{auth_key}"

    @abstractmethod
    async def get(self, auth_key: str) -> Optional[Dict[str, Any]]:
        """Cached payload for a token, or None."""

    @abstractmethod
    async def set(
        self,
        auth_key: str,
        value: Dict[str, Any],
        ttl_seconds: Optional[int] = None,
    ) -> None:
        """Cache a payload for a token."""

    @abstractmethod
    async def invalidate(self, auth_key: str) -> bool:
        """
        Delete the entry for a token.

        Returns True if an entry was removed. Backend failures are raised to
        the caller, which decides whether they are fatal.
        """

    async def health_check(self) -> Dict[str, Any]:
        return {"backend": "memory", "connected": True}


class InMemoryAuthCache(AuthCache):
    """Authorization cache held in this process."""

    def __init__(self, prefix: str = "auth:", max_size: int = 10_000) -> None:
        super().__init__(prefix)
        self._cache: TTLCache[Dict[str, Any]] = TTLCache(max_size=max_size)

    async def get(self, auth_key: str) -> Optional[Dict[str, Any]]:
        return self._cache.get(self.cache_key(auth_key))

    async def set(
        self,
        auth_key: str,
        value: Dict[str, Any],
        ttl_seconds: Optional[int] = None,
    ) -> None:
        self._cache.set(self.cache_key(auth_key), value, ttl_seconds)

    async def invalidate(self, auth_key: str) -> bool:
        return self._cache.delete(self.cache_key(auth_key))


class RedisAuthCache(AuthCache):
    """Authorization cache on Redis."""

    def __init__(self, client: RedisClient, prefix: str = "auth:") -> None:
        super().__init__(prefix)
        self._client = client

    async def get(self, auth_key: str) -> Optional[Dict[str, Any]]:
        raw = await self._client.get(self.cache_key(auth_key))
        return json.loads(raw) if raw else None

    async def set(
        self,
        auth_key: str,
        value: Dict[str, Any],
        ttl_seconds: Optional[int] = None,
    ) -> None:
        await self._client.set(self.cache_key(auth_key), json.dumps(value, default=str), ttl_seconds)

    async def invalidate(self, auth_key: str) -> bool:
        removed = await self._client.delete(self.cache_key(auth_key))
        return bool(removed)

    async def health_check(self) -> Dict[str, Any]:
        status = await self._client.ping()
        return {"backend": "redis", **status}

    async def close(self) -> None:
        await self._client.close()


def create_auth_cache(settings: Optional[CacheSettings] = None) -> AuthCache:
    """Redis when REDIS_URL is configured, in-process LRU otherwise."""
    settings = settings or CacheSettings()
    if settings.is_redis_configured:
        logger.info("Authorization cache initialized with Redis")
        return RedisAuthCache(RedisClient(settings.redis_url), prefix=settings.auth_cache_prefix)
    logger.info("REDIS_URL not configured, using in-memory authorization cache")
    return InMemoryAuthCache(prefix=settings.auth_cache_prefix)
