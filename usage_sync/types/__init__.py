"""Data models for usage-sync."""

from .payments import (
    FREE_PLAN,
    AuthorityPaymentResponse,
    PaymentEntitlement,
    Plan,
    parse_authority_response,
)
from .usage import ADDRESS_KEY_PREFIX, USER_KEY_PREFIX, UsageRecord, usage_key
from .users import UPDATABLE_USER_FIELDS, UserRecord

__all__ = [
    "FREE_PLAN",
    "AuthorityPaymentResponse",
    "PaymentEntitlement",
    "Plan",
    "parse_authority_response",
    "ADDRESS_KEY_PREFIX",
    "USER_KEY_PREFIX",
    "UsageRecord",
    "usage_key",
    "UPDATABLE_USER_FIELDS",
    "UserRecord",
]
