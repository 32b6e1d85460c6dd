"""
Pydantic models for per-identity usage windows.

A usage record is keyed by the caller identity:
- "u:<user id>" for authenticated callers
- "ip:<address>" for anonymous callers
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

USER_KEY_PREFIX = "u:"
ADDRESS_KEY_PREFIX = "ip:"


class UsageRecord(BaseModel):
    """
    Usage counter for one identity within the current window.

    At most one record exists per key. The count is only meaningful after
    the window has been checked against the current time.
    """

    key: str = Field(..., min_length=1, description="Identity discriminator")
    count: int = Field(default=0, ge=0, description="Usage within the current window")
    expires_at: datetime = Field(..., description="End of the current window (UTC)")

    def is_expired(self, now: datetime) -> bool:
        """True once the wall clock has reached the end of the window."""
        return now >= self.expires_at


def usage_key(user_id: Optional[str] = None, address: Optional[str] = None) -> Optional[str]:
    """
    Build the usage key for a caller.

    An authenticated user id always wins over the network address so the
    same subject maps to the same key. Returns None when neither is known.
    """
    if user_id:
        return f"{USER_KEY_PREFIX}{user_id}"
    if address:
        return f"{ADDRESS_KEY_PREFIX}{address}"
    return None
