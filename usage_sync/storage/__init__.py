"""Storage backends: durable records and the authorization cache."""

from .auth_cache import AuthCache, InMemoryAuthCache, RedisAuthCache, create_auth_cache
from .records import (
    SCHEMA_SQL,
    InMemoryRecordStore,
    PostgresRecordStore,
    RecordStore,
    create_record_store,
)
from .redis_client import RedisClient

__all__ = [
    "AuthCache",
    "InMemoryAuthCache",
    "RedisAuthCache",
    "create_auth_cache",
    "SCHEMA_SQL",
    "InMemoryRecordStore",
    "PostgresRecordStore",
    "RecordStore",
    "create_record_store",
    "RedisClient",
]
