"""
User endpoints: usage window, payment sync, payment lookup and settings.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, status

from usage_sync.exceptions import InvalidInputError
from usage_sync.types.usage import usage_key
from usage_sync.types.users import UserRecord

from ..dependencies import (
    get_auth_key,
    get_client_address,
    get_current_user,
    get_services,
    require_user,
)
from ..models import (
    AcceptedResponse,
    PaymentBody,
    PaymentResponse,
    SettingsRequest,
    SettingsResponse,
    UsageBody,
    UsageResponse,
)
from ..services import ServiceContainer

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/users", tags=["users"])


@router.get("/me/usage", response_model=UsageResponse)
async def get_usage(
    user: Optional[UserRecord] = Depends(get_current_user),
    address: Optional[str] = Depends(get_client_address),
    services: ServiceContainer = Depends(get_services),
) -> UsageResponse:
    """
    Current usage window for the caller.

    Authenticated callers are keyed by user id, anonymous callers by network
    address. The window is created or reset as needed before it is returned.
    """
    key = usage_key(user.id if user else None, address)
    if key is None:
        raise InvalidInputError("Unable to identify the caller", field="key")

    record = await services.usage.get_or_create(key)
    return UsageResponse(usage=UsageBody.from_record(record))


@router.post(
    "/me/paymentSync",
    response_model=AcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def payment_sync(
    user: UserRecord = Depends(require_user),
    auth_key: Optional[str] = Depends(get_auth_key),
    services: ServiceContainer = Depends(get_services),
) -> AcceptedResponse:
    """
    Pull the caller's entitlement from the payment authorities.

    Always answers 202: the outcome (applied or nothing found) is not
    reported to the client.
    """
    entitlement = await services.payments.sync(user.id, user.tg_id, auth_key)
    if entitlement is None:
        logger.info(f"Payment sync for user {user.id}: no active entitlement")
    else:
        logger.info(f"Payment sync for user {user.id}: plan {entitlement.plan}")
    return AcceptedResponse()


@router.get("/{tg_id}/payment", response_model=PaymentResponse)
async def get_payment(
    tg_id: str,
    services: ServiceContainer = Depends(get_services),
) -> PaymentResponse:
    """Entitlement stored for the user with this external id."""
    entitlement = await services.payments.lookup(tg_id)
    return PaymentResponse(payment=PaymentBody.from_entitlement(entitlement))


@router.patch("/me/settings", response_model=SettingsResponse)
async def update_settings(
    body: SettingsRequest,
    user: UserRecord = Depends(require_user),
    auth_key: Optional[str] = Depends(get_auth_key),
    services: ServiceContainer = Depends(get_services),
) -> SettingsResponse:
    """Merge the given keys into the caller's settings."""
    settings = await services.users.update_settings(user.id, body.settings, auth_key)
    return SettingsResponse(settings=settings)
