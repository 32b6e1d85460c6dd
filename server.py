"""
API server for usage-sync.

Per-identity usage windows and payment entitlement sync for user records.
This is the entry point that assembles the components of the app package.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

import sentry_sdk
import uvicorn
from fastapi import FastAPI
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.starlette import StarletteIntegration

from usage_sync import __version__
from usage_sync.config import Settings, get_settings
from usage_sync.utils.logging import setup_logging

from app.error_handlers import register_exception_handlers
from app.middleware import RequestLoggingMiddleware
from app.routes import health_router, users_router
from app.services import ServiceContainer, build_services

logger = logging.getLogger(__name__)


def init_sentry(settings: Settings) -> bool:
    """Initialize Sentry when a DSN is configured."""
    logging_settings = settings.logging
    if not logging_settings.sentry_dsn:
        logger.info("Sentry DSN not configured, error tracking disabled")
        return False

    sentry_sdk.init(
        dsn=logging_settings.sentry_dsn,
        environment=logging_settings.environment,
        sample_rate=1.0,
        integrations=[
            StarletteIntegration(transaction_style="endpoint"),
            FastApiIntegration(transaction_style="endpoint"),
        ],
        send_default_pii=False,
        release=f"usage-sync@{__version__}",
    )
    logger.info(f"Sentry initialized for environment: {logging_settings.environment}")
    return True


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build shared services on startup and release them on shutdown."""
    owned = getattr(app.state, "services", None) is None
    if owned:
        app.state.services = build_services(get_settings())

    services: ServiceContainer = app.state.services
    logger.info(
        f"usage-sync started (store: {services.store.backend_name}, "
        f"window: {services.usage.window})"
    )
    yield

    if owned:
        try:
            await services.close()
        except Exception as e:
            logger.warning("Failed to close services: %s", e)


def create_app(services: Optional[ServiceContainer] = None) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        services: Prebuilt services (tests); built from settings at startup
            when omitted.
    """
    app = FastAPI(
        title="usage-sync API",
        description="Usage windows and payment entitlement sync for user records.",
        version=__version__,
        lifespan=lifespan,
        openapi_tags=[
            {"name": "health", "description": "Health checks and system status"},
            {"name": "users", "description": "Usage, payment and settings endpoints"},
        ],
    )
    if services is not None:
        app.state.services = services

    register_exception_handlers(app)
    app.add_middleware(RequestLoggingMiddleware)

    app.include_router(health_router)
    app.include_router(users_router)
    return app


settings = get_settings()
setup_logging(settings.logging)
init_sentry(settings)

app = create_app()


if __name__ == "__main__":
    uvicorn.run("server:app", host="0.0.0.0", port=8000)
