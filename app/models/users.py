"""
Pydantic models for the user endpoints.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from usage_sync.types.payments import PaymentEntitlement
from usage_sync.types.usage import UsageRecord


class UsageBody(BaseModel):
    """Usage window as exposed to clients."""

    key: str
    usage: int = Field(..., ge=0, description="Usage within the current window")
    expire: datetime = Field(..., description="End of the current window (UTC)")

    @classmethod
    def from_record(cls, record: UsageRecord) -> "UsageBody":
        return cls(key=record.key, usage=record.count, expire=record.expires_at)


class UsageResponse(BaseModel):
    usage: UsageBody


class PaymentBody(BaseModel):
    subscription_id: Optional[str] = None
    midtrans_id: Optional[str] = None
    plan: Optional[str] = None

    @classmethod
    def from_entitlement(cls, entitlement: PaymentEntitlement) -> "PaymentBody":
        return cls(**entitlement.as_fields())


class PaymentResponse(BaseModel):
    """Entitlement stored for a user, in the authority wire format."""

    payment: PaymentBody


class AcceptedResponse(BaseModel):
    accepted: bool = True


class SettingsRequest(BaseModel):
    """Settings keys to merge over the stored ones."""

    settings: Dict[str, Any]


class SettingsResponse(BaseModel):
    settings: Dict[str, Any]
