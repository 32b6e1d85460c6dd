"""
Service container for the usage-sync API.

Built once at startup from settings and stored on app.state, so route
dependencies never read configuration ad hoc.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from usage_sync.config import Settings, get_settings
from usage_sync.db import close_pool
from usage_sync.payments import PaymentReconciler, build_authorities
from usage_sync.storage import (
    AuthCache,
    PostgresRecordStore,
    RecordStore,
    RedisAuthCache,
    create_auth_cache,
    create_record_store,
)
from usage_sync.usage import UsageTracker
from usage_sync.users import UserService

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    """Long-lived collaborators shared by all requests."""

    settings: Settings
    store: RecordStore
    cache: AuthCache
    users: UserService
    usage: UsageTracker
    payments: PaymentReconciler
    http_client: Optional[httpx.AsyncClient] = None

    async def close(self) -> None:
        """Release network resources."""
        if self.http_client is not None:
            await self.http_client.aclose()
        if isinstance(self.cache, RedisAuthCache):
            await self.cache.close()
        if isinstance(self.store, PostgresRecordStore):
            await close_pool()


def build_services(
    settings: Optional[Settings] = None,
    store: Optional[RecordStore] = None,
    cache: Optional[AuthCache] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> ServiceContainer:
    """Wire the services from settings; explicit collaborators take precedence."""
    settings = settings or get_settings()
    store = store or create_record_store(settings.database)
    cache = cache or create_auth_cache(settings.cache)
    if http_client is None:
        http_client = httpx.AsyncClient(
            timeout=httpx.Timeout(settings.payments.payment_authority_timeout),
            limits=httpx.Limits(max_connections=100, max_keepalive_connections=20),
        )

    users = UserService(store, cache)
    authorities = build_authorities(settings.payments, client=http_client)
    logger.info(
        "Payment authorities configured: %s",
        ", ".join(authority.name for authority in authorities),
    )

    return ServiceContainer(
        settings=settings,
        store=store,
        cache=cache,
        users=users,
        usage=UsageTracker(store, settings.usage),
        payments=PaymentReconciler(authorities, users),
        http_client=http_client,
    )
