"""
Health check endpoint.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict

import sentry_sdk
from fastapi import APIRouter, Depends

from usage_sync import __version__

from ..dependencies import get_services
from ..services import ServiceContainer

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


def _service_status(status: Dict[str, Any]) -> Dict[str, Any]:
    result = {
        "status": "up" if status.get("connected") else "down",
        "backend": status.get("backend"),
    }
    if status.get("error"):
        result["error"] = str(status["error"])[:100]
    return result


@router.get("/health", summary="System health check")
async def health_check(
    services: ServiceContainer = Depends(get_services),
) -> Dict[str, Any]:
    """
    Health check for monitoring and load balancers.

    The record store is critical; the authorization cache is not, since a
    stale entry only delays a plan change.
    """
    try:
        store_status = await services.store.health_check()
    except Exception as e:
        logger.warning(f"Record store health check failed: {e}")
        store_status = {"backend": services.store.backend_name, "connected": False, "error": str(e)}

    try:
        cache_status = await services.cache.health_check()
    except Exception as e:
        logger.warning(f"Authorization cache health check failed: {e}")
        cache_status = {"connected": False, "error": str(e)}

    is_healthy = bool(store_status.get("connected"))

    return {
        "status": "healthy" if is_healthy else "degraded",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": __version__,
        "environment": services.settings.logging.environment,
        "services": {
            "database": _service_status(store_status),
            "redis": _service_status(cache_status),
            "sentry": {"status": "up" if sentry_sdk.get_client().is_active() else "unconfigured"},
            "payment_authorities": [a.name for a in services.payments.authorities],
        },
    }
