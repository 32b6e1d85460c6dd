"""Utility modules for usage-sync."""

from .cache import TTLCache
from .logging import clear_request_context, set_request_context, setup_logging, timed

__all__ = [
    "TTLCache",
    "setup_logging",
    "set_request_context",
    "clear_request_context",
    "timed",
]
