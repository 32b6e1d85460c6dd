"""
Pytest configuration and shared fixtures for usage-sync tests.

This module provides common fixtures used across all test files:
- Environment isolation (no database, Redis or Sentry)
- In-memory stores and a manual clock
- A test client wired to mock payment authorities
"""

import os
import sys

import pytest

# Environment setup before any imports
os.environ["ENVIRONMENT"] = "development"
os.environ["LOG_LEVEL"] = "WARNING"
for name in ("DATABASE_URL", "REDIS_URL", "SENTRY_DSN", "PAYMENT_AUTHORITY_URLS"):
    os.environ.pop(name, None)
os.environ["UTILS_API_KEY"] = "test-shared-secret"

# Ensure project root is in path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))


@pytest.fixture(autouse=True)
def fresh_settings():
    """Reload settings for every test so env patches take effect."""
    from usage_sync.config import reset_settings

    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def clock():
    from fakes import ManualClock

    return ManualClock()


@pytest.fixture
def store():
    from fakes import CountingStore

    return CountingStore()


@pytest.fixture
def auth_cache():
    from usage_sync.storage import InMemoryAuthCache

    return InMemoryAuthCache()
