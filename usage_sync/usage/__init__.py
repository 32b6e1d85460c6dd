"""
Usage tracking module.

Per-identity usage windows with lazy expiry.
"""

from .tracker import UsageTracker, normalize, utc_now

__all__ = [
    "UsageTracker",
    "normalize",
    "utc_now",
]
