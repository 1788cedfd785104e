"""Middleware package for the Code Bridge service."""

from .security import SecurityMiddleware, RequestLoggingMiddleware, RateLimiter
from .metrics import MetricsMiddleware

__all__ = [
    "SecurityMiddleware",
    "RequestLoggingMiddleware",
    "RateLimiter",
    "MetricsMiddleware",
]
