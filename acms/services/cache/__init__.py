"""
Cache services: generic cache, principal read-through and invalidation hooks.
"""

from .cache_service import CacheService
from .invalidation import CacheInvalidationService, InvalidationReport
from .principal_cache import PrincipalCache, PrincipalNotFoundError

__all__ = [
    "CacheInvalidationService",
    "CacheService",
    "InvalidationReport",
    "PrincipalCache",
    "PrincipalNotFoundError",
]
