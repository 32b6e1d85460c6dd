"""
Pydantic model for the user record fields this service reads and writes.
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from .payments import PaymentEntitlement

# Columns that may be changed through a partial update
UPDATABLE_USER_FIELDS = frozenset({
    "plan",
    "subscription_id",
    "midtrans_id",
    "settings",
    "username",
})


class UserRecord(BaseModel):
    """A stored user, keyed by internal id and by external (Telegram) id."""

    id: str = Field(..., min_length=1)
    tg_id: str = Field(..., min_length=1, description="External numeric identity")
    username: Optional[str] = None
    plan: Optional[str] = None
    subscription_id: Optional[str] = None
    midtrans_id: Optional[str] = None
    settings: Dict[str, Any] = Field(default_factory=dict)

    @property
    def entitlement(self) -> PaymentEntitlement:
        """Read-only projection of the entitlement fields."""
        return PaymentEntitlement(
            subscription_id=self.subscription_id,
            midtrans_id=self.midtrans_id,
            plan=self.plan,
        )
