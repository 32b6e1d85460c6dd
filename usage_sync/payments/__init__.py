"""
Payment entitlement module.

Regional authority clients and the reconciler that applies their answers.
"""

from .authorities import PaymentAuthority, build_authorities
from .reconciler import PaymentReconciler

__all__ = [
    "PaymentAuthority",
    "PaymentReconciler",
    "build_authorities",
]
