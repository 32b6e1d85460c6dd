"""Pydantic models for the usage-sync API."""

from .users import (
    AcceptedResponse,
    PaymentBody,
    PaymentResponse,
    SettingsRequest,
    SettingsResponse,
    UsageBody,
    UsageResponse,
)

__all__ = [
    "AcceptedResponse",
    "PaymentBody",
    "PaymentResponse",
    "SettingsRequest",
    "SettingsResponse",
    "UsageBody",
    "UsageResponse",
]
