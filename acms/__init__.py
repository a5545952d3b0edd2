"""
ACMS Backend

Academic administration portal backend: Redis-backed read-through cache
with pattern-based invalidation and distributed request-rate limiting.
"""

from .constants import APP_NAME, APP_VERSION

__version__ = APP_VERSION

__all__ = ["APP_NAME", "APP_VERSION", "__version__"]
