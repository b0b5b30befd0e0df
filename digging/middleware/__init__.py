"""Middleware package exports."""

from digging.middleware.logging import RequestLoggingMiddleware
from digging.middleware.rate_limit import RateLimitMiddleware
from digging.middleware.security_headers import SecurityHeadersMiddleware

__all__ = [
    "RateLimitMiddleware",
    "RequestLoggingMiddleware",
    "SecurityHeadersMiddleware",
]
