"""Middleware components for the usage-sync application."""

from .logging import RequestLoggingMiddleware

__all__ = ["RequestLoggingMiddleware"]
