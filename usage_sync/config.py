"""
Centralized configuration management for usage-sync.

Settings are read from the environment and .env with pydantic-settings,
one group per concern: the usage window, the payment authorities and their
shared secret, the record store, the authorization cache and logging.

Components take these settings objects at construction time, so tests can
build them directly with a shortened window or mock authority URLs.

Usage:
    from usage_sync.config import get_settings

    settings = get_settings()
    window = settings.usage.window
"""

from datetime import timedelta
from functools import lru_cache
from typing import List, Literal, Optional

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


# =============================================================================
# Usage Window Settings
# =============================================================================


class UsageSettings(BaseSettings):
    """Configuration for the per-identity usage window."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    usage_window_hours: float = Field(
        default=24,
        gt=0,
        description="Length of the rolling usage window in hours",
    )

    @property
    def window(self) -> timedelta:
        """Usage window as a timedelta."""
        return timedelta(hours=self.usage_window_hours)


# =============================================================================
# Payment Authority Settings
# =============================================================================


DEFAULT_AUTHORITY_URLS = (
    "https://teledriveapp.com,"
    "https://us.teledriveapp.com,"
    "https://ge.teledriveapp.com"
)


class PaymentSettings(BaseSettings):
    """Configuration for the regional payment authorities."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    payment_authority_urls: str = Field(
        default=DEFAULT_AUTHORITY_URLS,
        description="Comma-separated authority base URLs, highest precedence first",
    )
    utils_api_key: Optional[SecretStr] = Field(
        default=None,
        description="Shared secret sent in the 'token' header to every authority",
    )
    payment_authority_timeout: float = Field(
        default=10.0,
        gt=0,
        le=120,
        description="Timeout in seconds for a single authority request",
    )

    @property
    def authority_urls(self) -> List[str]:
        """Parsed authority URLs in precedence order."""
        return [
            url.strip().rstrip("/")
            for url in self.payment_authority_urls.split(",")
            if url.strip()
        ]

    @property
    def shared_secret(self) -> str:
        """Plain shared secret (empty when unset)."""
        return self.utils_api_key.get_secret_value() if self.utils_api_key else ""


# =============================================================================
# Database Settings (Postgres)
# =============================================================================


class DatabaseSettings(BaseSettings):
    """Configuration for the Postgres record store."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    database_url: Optional[str] = Field(
        default=None,
        description="Postgres DSN; the in-memory store is used when unset",
    )
    database_pool_min_size: int = Field(default=1, ge=1)
    database_pool_max_size: int = Field(default=5, ge=1)

    @property
    def is_configured(self) -> bool:
        """Check if Postgres is configured."""
        return bool(self.database_url)


# =============================================================================
# Cache Settings (Redis)
# =============================================================================


class CacheSettings(BaseSettings):
    """Configuration for the authorization cache."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    redis_url: Optional[str] = Field(
        default=None,
        description="Redis URL; an in-process cache is used when unset",
    )
    auth_cache_prefix: str = Field(
        default="auth:",
        min_length=1,
        description="Prefix prepended to authorization tokens to form cache keys",
    )

    @property
    def is_redis_configured(self) -> bool:
        """Check if Redis is configured."""
        return bool(self.redis_url)


# =============================================================================
# Logging Settings
# =============================================================================


class LoggingSettings(BaseSettings):
    """Configuration for logging."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )
    log_format_json: bool = Field(
        default=False,
        description="Force JSON log format in development",
    )
    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Deployment environment",
    )
    sentry_dsn: Optional[str] = Field(
        default=None,
        description="Sentry DSN for error tracking",
    )


# =============================================================================
# Aggregate Settings
# =============================================================================


class Settings:
    """All configuration groups, loaded once per process."""

    def __init__(
        self,
        usage: Optional[UsageSettings] = None,
        payments: Optional[PaymentSettings] = None,
        database: Optional[DatabaseSettings] = None,
        cache: Optional[CacheSettings] = None,
        logging: Optional[LoggingSettings] = None,
    ):
        self.usage = usage or UsageSettings()
        self.payments = payments or PaymentSettings()
        self.database = database or DatabaseSettings()
        self.cache = cache or CacheSettings()
        self.logging = logging or LoggingSettings()

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.logging.environment == "production"


@lru_cache()
def get_settings() -> Settings:
    """
    Get the cached application settings.

    Settings are loaded once and cached for the lifetime of the process.
    Call reset_settings() to force a reload.
    """
    return Settings()


def reset_settings() -> None:
    """Clear the settings cache (used by tests)."""
    get_settings.cache_clear()
