"""
usage-sync: per-identity usage windows and payment entitlement reconciliation.
"""

__version__ = "1.0.0"
