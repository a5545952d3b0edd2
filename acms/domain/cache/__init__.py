"""
Cache domain: typed keys, read results and the cached principal.
"""

from .principal import Principal, Role, strip_secret_fields
from .results import CacheOutcome, CacheResult
from .value_objects import (
    TTL,
    CacheKey,
    KeyNamespaceError,
    KeyPattern,
    RateLimitKey,
    RateLimitScope,
)

__all__ = [
    "CacheKey",
    "CacheOutcome",
    "CacheResult",
    "KeyNamespaceError",
    "KeyPattern",
    "Principal",
    "RateLimitKey",
    "RateLimitScope",
    "Role",
    "TTL",
    "strip_secret_fields",
]
