"""
Pydantic models for payment entitlements.

An entitlement is three fields embedded on the user record. Regional payment
authorities report it as:

    {"payment": {"subscription_id": ..., "midtrans_id": ..., "plan": ...}}
"""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


class Plan(str, Enum):
    """Plans known to this service. Authorities may report others."""

    FREE = "free"
    PREMIUM = "premium"
    PROFESSIONAL = "professional"
    PRO = "pro"


FREE_PLAN = Plan.FREE.value


class PaymentEntitlement(BaseModel):
    """Billing references and plan for one user."""

    subscription_id: Optional[str] = Field(
        default=None,
        description="Subscription reference at the card/PayPal provider",
    )
    midtrans_id: Optional[str] = Field(
        default=None,
        description="Reference at the Midtrans payment processor",
    )
    plan: Optional[str] = Field(default=None, description="Plan name")

    @property
    def is_active(self) -> bool:
        """True when the plan is present and not the free sentinel."""
        return bool(self.plan) and self.plan != FREE_PLAN

    def as_fields(self) -> dict:
        """The user-record columns this entitlement writes."""
        return {
            "subscription_id": self.subscription_id,
            "midtrans_id": self.midtrans_id,
            "plan": self.plan,
        }


class AuthorityPaymentResponse(BaseModel):
    """Body returned by a payment authority."""

    payment: PaymentEntitlement


def parse_authority_response(body: Any) -> PaymentEntitlement:
    """
    Parse an authority response body.

    Raises:
        ValueError: If the body does not have the expected shape.
    """
    if not isinstance(body, dict):
        raise ValueError("authority response is not a JSON object")
    return AuthorityPaymentResponse.model_validate(body).payment
