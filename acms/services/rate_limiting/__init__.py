"""
Rate Limiting Services

Fixed-window counters in the shared store: address-keyed general and auth
scopes in middleware, identity-keyed user scope as a request dependency.
"""

from .middleware import RateLimitingMiddleware
from .rate_limiter import (
    RATE_LIMIT_MESSAGES,
    RateLimitConfig,
    RateLimiter,
    RateLimitExceededHTTPException,
    RateLimitResult,
)

__all__ = [
    "RATE_LIMIT_MESSAGES",
    "RateLimitConfig",
    "RateLimitExceededHTTPException",
    "RateLimitResult",
    "RateLimiter",
    "RateLimitingMiddleware",
]
