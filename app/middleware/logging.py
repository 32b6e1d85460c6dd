"""
Per-request logging for the usage-sync API.

Each request gets an id (the caller's X-Request-ID when one is sent). The id
and the resolved user id are bound into the logging context for the whole
request and echoed back with the handling time in the response headers.
"""

import logging
import time
import uuid
from typing import FrozenSet, Optional

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from usage_sync.utils.logging import clear_request_context, set_request_context

from app.dependencies import get_client_address

logger = logging.getLogger(__name__)

# Successful requests to these paths are not logged
QUIET_PATHS: FrozenSet[str] = frozenset({"/health", "/docs", "/openapi.json"})


def status_log_level(status_code: int) -> int:
    if status_code >= 500:
        return logging.ERROR
    if status_code >= 400:
        return logging.WARNING
    return logging.INFO


def _user_id(request: Request) -> Optional[str]:
    user = getattr(request.state, "user", None)
    if isinstance(user, dict):
        user_id = user.get("id")
    else:
        user_id = getattr(user, "id", None)
    return str(user_id) if user_id else None


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Request id, logging context and one access line per request."""

    def __init__(self, app, quiet_paths: Optional[FrozenSet[str]] = None):
        super().__init__(app)
        self.quiet_paths = quiet_paths if quiet_paths is not None else QUIET_PATHS

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        set_request_context(request_id=request_id, user_id=_user_id(request))

        fields = {
            "http_method": request.method,
            "http_path": request.url.path,
            "client_ip": get_client_address(request) or "-",
        }
        started = time.perf_counter()
        try:
            try:
                response = await call_next(request)
            except Exception as exc:
                elapsed_ms = (time.perf_counter() - started) * 1000
                logger.error(
                    "%s %s raised %s after %.1fms",
                    request.method,
                    request.url.path,
                    type(exc).__name__,
                    elapsed_ms,
                    extra={**fields, "duration_ms": round(elapsed_ms, 2)},
                    exc_info=True,
                )
                raise

            elapsed_ms = (time.perf_counter() - started) * 1000
            response.headers["X-Request-ID"] = request_id
            response.headers["X-Response-Time"] = f"{elapsed_ms:.2f}ms"

            level = status_log_level(response.status_code)
            if level > logging.INFO or request.url.path not in self.quiet_paths:
                logger.log(
                    level,
                    "%s %s -> %d in %.1fms",
                    request.method,
                    request.url.path,
                    response.status_code,
                    elapsed_ms,
                    extra={**fields, "http_status": response.status_code, "duration_ms": round(elapsed_ms, 2)},
                )
            return response
        finally:
            clear_request_context()
