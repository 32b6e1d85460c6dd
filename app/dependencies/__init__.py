"""
FastAPI dependencies for the usage-sync API.

Caller identity is resolved upstream: the authentication middleware sets
request.state.user (the user record) and request.state.auth_key (the
caller's authorization token). These dependencies only read them.

Usage:
    from app.dependencies import get_services, require_user

    @router.post("/me/paymentSync")
    async def payment_sync(
        user: UserRecord = Depends(require_user),
        services: ServiceContainer = Depends(get_services),
    ):
        ...
"""

import logging
from typing import Optional

from fastapi import Depends, Request

from usage_sync.exceptions import AuthenticationError
from usage_sync.types.users import UserRecord

from app.services import ServiceContainer

logger = logging.getLogger(__name__)


def get_services(request: Request) -> ServiceContainer:
    """The service container built at startup."""
    return request.app.state.services


def get_current_user(request: Request) -> Optional[UserRecord]:
    """The authenticated user, or None for anonymous callers."""
    user = getattr(request.state, "user", None)
    if user is None or isinstance(user, UserRecord):
        return user
    return UserRecord.model_validate(user)


def require_user(user: Optional[UserRecord] = Depends(get_current_user)) -> UserRecord:
    """The authenticated user; anonymous callers are rejected."""
    if user is None:
        raise AuthenticationError()
    return user


def get_auth_key(request: Request) -> Optional[str]:
    """The caller's authorization token, when the auth layer recorded one."""
    return getattr(request.state, "auth_key", None)


def get_client_address(request: Request) -> Optional[str]:
    """
    Best-effort network address of the caller.

    Prefers the address reported by the CDN edge over the socket peer.
    """
    address = request.headers.get("cf-connecting-ip")
    if address:
        return address.strip()
    if request.client:
        return request.client.host
    return None


__all__ = [
    "get_services",
    "get_current_user",
    "require_user",
    "get_auth_key",
    "get_client_address",
]
