"""
Cache read results.

Every cache read returns a CacheResult instead of a bare value, so the
"degrade to miss" policy is visible at the call site: ERROR carries the
reason and callers treat it exactly like MISS.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


class CacheOutcome(str, Enum):
    """Outcome of a cache read."""

    HIT = "hit"
    MISS = "miss"
    ERROR = "error"  # store failure or corrupt entry; treated as a miss


@dataclass(frozen=True)
class CacheResult(Generic[T]):
    """Outcome of a cache read plus the value on a hit."""

    outcome: CacheOutcome
    value: Optional[T] = None
    error: Optional[str] = None

    @classmethod
    def hit(cls, value: T) -> "CacheResult[T]":
        return cls(CacheOutcome.HIT, value)

    @classmethod
    def miss(cls) -> "CacheResult[T]":
        return cls(CacheOutcome.MISS)

    @classmethod
    def failed(cls, error: str) -> "CacheResult[T]":
        return cls(CacheOutcome.ERROR, error=error)

    @property
    def is_hit(self) -> bool:
        return self.outcome is CacheOutcome.HIT

    @property
    def is_error(self) -> bool:
        return self.outcome is CacheOutcome.ERROR

    def value_or_none(self) -> Optional[T]:
        """The cached value on a hit, None on a miss or error."""
        return self.value if self.is_hit else None
