"""
Exception handlers for the usage-sync API.

Every error leaves the service in one shape:

    {"success": false, "error": "<message>", "error_code": "<ErrorCode>", "details": {...}}

Messages and details pass through a public filter first: text that looks
like a credential or a connection string is replaced wholesale, paths and
IP addresses are masked, and only whitelisted detail keys survive.
Client errors are logged at WARNING; server errors at ERROR and sent to
Sentry when it is configured.
"""

import logging
import re
import uuid
from typing import Any, Dict, List, Optional

import sentry_sdk
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from usage_sync.config import get_settings
from usage_sync.exceptions import ErrorCode, UsageSyncException

logger = logging.getLogger(__name__)

GENERIC_MESSAGE = "An error occurred while processing your request"
MAX_MESSAGE_LENGTH = 500

_SECRET_TEXT = re.compile(
    r"\b(?:api[_-]?key|token|secret|password|authorization|credentials?|bearer|cookie)\b"
    r"|\b(?:postgres(?:ql)?|redis)://"
    r"|/home/|/etc/",
    re.IGNORECASE,
)
_FILE_PATH = re.compile(r"[/\\][\w./\\-]+\.\w+")
_IP_ADDRESS = re.compile(r"\b\d{1,3}(?:\.\d{1,3}){3}\b")

PUBLIC_DETAIL_KEYS = frozenset({
    "field",
    "errors",
    "resource_type",
    "resource_id",
    "limit",
    "current_usage",
    "reset_time",
    "service",
    "error_reference",
})

# Status codes raised as plain HTTPException (routing, method checks)
HTTP_STATUS_ERROR_CODES = {
    400: ErrorCode.INVALID_INPUT,
    401: ErrorCode.AUTHENTICATION_REQUIRED,
    404: ErrorCode.RESOURCE_NOT_FOUND,
    405: ErrorCode.VALIDATION_ERROR,
    422: ErrorCode.VALIDATION_ERROR,
    429: ErrorCode.QUOTA_EXCEEDED,
    502: ErrorCode.AUTHORITY_UNAVAILABLE,
    503: ErrorCode.STORE_UNAVAILABLE,
}


def public_message(message: str) -> str:
    """The form of an error message that may be shown to a client."""
    if not message:
        return message
    if _SECRET_TEXT.search(message):
        return GENERIC_MESSAGE
    message = _IP_ADDRESS.sub("[ip]", _FILE_PATH.sub("[path]", message))
    if len(message) > MAX_MESSAGE_LENGTH:
        message = message[:MAX_MESSAGE_LENGTH] + "..."
    return message


def _public_value(value: Any) -> Any:
    if isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, str):
        return public_message(value)
    if isinstance(value, dict):
        return {
            str(k): _public_value(v)
            for k, v in value.items()
            if isinstance(v, (str, bool, int, float))
        }
    if isinstance(value, (list, tuple)):
        items = [_public_value(item) for item in value[:10]]
        return [item for item in items if item is not None]
    return None


def public_details(details: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Whitelisted detail keys with primitive (or flat dict) values."""
    result: Dict[str, Any] = {}
    for key, value in (details or {}).items():
        if key not in PUBLIC_DETAIL_KEYS:
            continue
        cleaned = _public_value(value)
        if cleaned is not None:
            result[key] = cleaned
    return result


def error_response(
    status_code: int,
    message: str,
    error_code: ErrorCode,
    details: Optional[Dict[str, Any]] = None,
) -> JSONResponse:
    content: Dict[str, Any] = {
        "success": False,
        "error": public_message(message),
        "error_code": error_code.value,
    }
    cleaned = public_details(details)
    if cleaned:
        content["details"] = cleaned
    return JSONResponse(status_code=status_code, content=content)


def report_to_sentry(
    exc: Exception,
    request: Optional[Request] = None,
    extra_context: Optional[Dict[str, Any]] = None,
) -> Optional[str]:
    """
    Send an exception to Sentry, tagged with the request it came from.

    Returns the Sentry event id, or None when Sentry is not configured.
    """
    try:
        if not sentry_sdk.get_client().is_active():
            return None

        with sentry_sdk.new_scope() as scope:
            if request is not None:
                scope.set_context("request", {"method": request.method, "path": request.url.path})
                request_id = getattr(request.state, "request_id", None)
                if request_id:
                    scope.set_tag("request_id", request_id)
            if extra_context:
                scope.set_context("extra", extra_context)
            return sentry_sdk.capture_exception(exc)
    except Exception as e:
        logger.warning("Failed to report exception to Sentry: %s", e)
        return None


def _validation_messages(errors: List[Dict[str, Any]]) -> List[Dict[str, str]]:
    messages = []
    for error in errors[:10]:
        field = ".".join(str(part) for part in error.get("loc", ()) if part != "body") or "request"
        error_type = error.get("type", "")
        if error_type == "missing":
            text = f"Field '{field}' is required"
        elif error_type == "dict_type":
            text = f"Field '{field}' must be an object"
        else:
            text = public_message(error.get("msg", "Invalid value"))
        messages.append({"field": field, "message": text})
    return messages


async def usage_sync_exception_handler(request: Request, exc: UsageSyncException) -> JSONResponse:
    summary = f"{type(exc).__name__} on {request.method} {request.url.path}: {exc.message}"
    if exc.internal_message:
        summary = f"{summary} ({exc.internal_message})"

    if exc.status_code >= 500:
        logger.error(summary)
        report_to_sentry(exc, request)
    else:
        logger.warning(summary)

    return error_response(exc.status_code, exc.message, exc.error_code, exc.details)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = _validation_messages(exc.errors())
    logger.warning(
        "Validation failed on %s %s: %s",
        request.method,
        request.url.path,
        ", ".join(e["field"] for e in errors),
    )
    message = errors[0]["message"] if len(errors) == 1 else f"Validation failed with {len(errors)} error(s)"
    return error_response(
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        message,
        ErrorCode.VALIDATION_ERROR,
        {"errors": errors},
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    detail = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
    level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
    logger.log(level, "HTTP %d on %s %s: %s", exc.status_code, request.method, request.url.path, detail)
    return error_response(
        exc.status_code,
        detail,
        HTTP_STATUS_ERROR_CODES.get(exc.status_code, ErrorCode.INTERNAL_ERROR),
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """500 with a short reference id that support can find in the logs."""
    reference = uuid.uuid4().hex[:8]
    logger.error(
        "Unhandled %s [ref:%s] on %s %s",
        type(exc).__name__,
        reference,
        request.method,
        request.url.path,
        exc_info=exc,
    )
    report_to_sentry(exc, request, extra_context={"error_reference": reference})

    if get_settings().is_production:
        message = "An unexpected error occurred. Please try again later."
    else:
        message = f"Internal server error: {type(exc).__name__}"
    return error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        message,
        ErrorCode.INTERNAL_ERROR,
        {"error_reference": reference},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(UsageSyncException, usage_sync_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
