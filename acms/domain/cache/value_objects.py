"""
Cache Value Objects

Immutable, validated key types for the shared key-value store.

Cache entries and rate-limit counters live in the same address space, so
each namespace gets its own constructor:

- CacheKey     ``{domain}:{entityId}[:{qualifier}]`` / ``{domain}:{qualifier}:{entityId}``
- KeyPattern   glob over cache keys, always anchored on a literal domain
- RateLimitKey ``rl:{scope}:{subject}``

A CacheKey or KeyPattern can never start with the reserved ``rl`` domain,
so no cache read, write or pattern eviction can touch a rate-limit counter.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Union
from urllib.parse import quote

from ...constants import (
    ANNOUNCEMENTS_DOMAIN,
    ATTENDANCE_DOMAIN,
    DASHBOARD_DOMAIN,
    KEY_SEPARATOR,
    MARKS_DOMAIN,
    MAX_KEY_LENGTH,
    PRINCIPAL_DOMAIN,
    RATE_LIMIT_PREFIX,
)

_DOMAIN_RE = re.compile(r"^[a-z][a-z0-9_-]*$")
_COMPONENT_RE = re.compile(r"^[A-Za-z0-9_.@+%~-]+$")
_GLOB_CHARS = frozenset("*?[]")
WILDCARD = "*"


class KeyNamespaceError(ValueError):
    """Raised when a key violates the namespace rules."""


def _validate_domain(domain: str) -> str:
    if not domain or not _DOMAIN_RE.match(domain):
        raise KeyNamespaceError(f"Invalid cache domain: {domain!r}")
    if domain == RATE_LIMIT_PREFIX:
        raise KeyNamespaceError(
            f"Cache domain {RATE_LIMIT_PREFIX!r} is reserved for rate-limit counters"
        )
    return domain


def _validate_component(component: Union[str, int]) -> str:
    value = str(component)
    if not _COMPONENT_RE.match(value):
        raise KeyNamespaceError(f"Invalid key component: {value!r}")
    return value


def _check_length(value: str) -> None:
    if len(value) > MAX_KEY_LENGTH:
        raise KeyNamespaceError(f"Key too long (max {MAX_KEY_LENGTH} characters)")


def encode_component(component: Union[str, int]) -> str:
    """
    Percent-encode an identifier so it is a valid key component.

    Identifiers already made of safe characters pass through unchanged;
    everything else (including '%' itself) is escaped, so distinct
    identifiers always map to distinct components.
    """
    return quote(str(component), safe="@+")


@dataclass(frozen=True)
class CacheKey:
    """
    Exact cache key.

    Prefer the named builders: they percent-encode identifiers, while
    ``build`` and ``parse`` take components verbatim and exist for domains
    owned by collaborators that have no dedicated builder yet.
    """

    value: str

    def __post_init__(self) -> None:
        if not self.value:
            raise KeyNamespaceError("Cache key cannot be empty")
        _check_length(self.value)

        segments = self.value.split(KEY_SEPARATOR)
        if not 2 <= len(segments) <= 3:
            raise KeyNamespaceError(
                f"Cache key must have 2 or 3 segments: {self.value!r}"
            )
        _validate_domain(segments[0])
        for segment in segments[1:]:
            _validate_component(segment)

    @property
    def domain(self) -> str:
        return self.value.split(KEY_SEPARATOR, 1)[0]

    @classmethod
    def build(cls, domain: str, *parts: Union[str, int]) -> "CacheKey":
        """Create a key from a domain and one or two components."""
        return cls(KEY_SEPARATOR.join([domain, *(str(part) for part in parts)]))

    @classmethod
    def parse(cls, value: Union[str, "CacheKey"]) -> "CacheKey":
        """Validate a raw string (or pass through an existing key)."""
        if isinstance(value, CacheKey):
            return value
        if isinstance(value, RateLimitKey):
            raise KeyNamespaceError("Rate-limit keys cannot be used as cache keys")
        return cls(value)

    @classmethod
    def principal(cls, identity: Union[str, int]) -> "CacheKey":
        """Cached principal snapshot: ``principal:{identity}``."""
        return cls.build(PRINCIPAL_DOMAIN, encode_component(identity))

    @classmethod
    def attendance(cls, student_id: Union[str, int]) -> "CacheKey":
        return cls.build(ATTENDANCE_DOMAIN, encode_component(student_id))

    @classmethod
    def attendance_by_subject(cls, student_id: Union[str, int]) -> "CacheKey":
        return cls.build(ATTENDANCE_DOMAIN, "subjects", encode_component(student_id))

    @classmethod
    def marks(cls, student_id: Union[str, int]) -> "CacheKey":
        return cls.build(MARKS_DOMAIN, encode_component(student_id))

    @classmethod
    def marks_summary(cls, student_id: Union[str, int]) -> "CacheKey":
        return cls.build(MARKS_DOMAIN, "summary", encode_component(student_id))

    @classmethod
    def dashboard_stats(cls, identity: Union[str, int], role: str) -> "CacheKey":
        """Per-user dashboard statistics, suffixed by the role they were built for."""
        return cls.build(DASHBOARD_DOMAIN, encode_component(identity), role)

    @classmethod
    def announcements(cls, audience: str = "all") -> "CacheKey":
        return cls.build(ANNOUNCEMENTS_DOMAIN, audience)

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class KeyPattern:
    """
    Glob pattern for bulk eviction.

    Every segment is either a literal component or ``*``; the first segment
    is always a literal, non-reserved domain.
    """

    value: str

    def __post_init__(self) -> None:
        if not self.value:
            raise KeyNamespaceError("Key pattern cannot be empty")
        _check_length(self.value)

        segments = self.value.split(KEY_SEPARATOR)
        if len(segments) < 2:
            raise KeyNamespaceError(
                f"Key pattern must include a domain and at least one segment: {self.value!r}"
            )
        if any(char in _GLOB_CHARS for char in segments[0]):
            raise KeyNamespaceError(
                f"Key pattern must start with a literal domain: {self.value!r}"
            )
        _validate_domain(segments[0])
        for segment in segments[1:]:
            if segment != WILDCARD:
                _validate_component(segment)

    @property
    def domain(self) -> str:
        return self.value.split(KEY_SEPARATOR, 1)[0]

    @classmethod
    def build(cls, domain: str, *parts: Union[str, int]) -> "KeyPattern":
        return cls(KEY_SEPARATOR.join([domain, *(str(part) for part in parts)]))

    @classmethod
    def parse(cls, value: Union[str, "KeyPattern"]) -> "KeyPattern":
        if isinstance(value, KeyPattern):
            return value
        return cls(value)

    @classmethod
    def domain_wide(cls, domain: str) -> "KeyPattern":
        """Every key of a domain: ``{domain}:*``."""
        return cls.build(domain, WILDCARD)

    @classmethod
    def qualified(cls, domain: str, entity_id: Union[str, int]) -> "KeyPattern":
        """Every qualified view of an entity: ``{domain}:*:{entityId}``."""
        return cls.build(domain, WILDCARD, encode_component(entity_id))

    @classmethod
    def dashboard_stats_for(cls, identity: Union[str, int]) -> "KeyPattern":
        """Dashboard statistics of one user regardless of role suffix."""
        return cls.build(DASHBOARD_DOMAIN, encode_component(identity), WILDCARD)

    @classmethod
    def dashboard_stats_for_role(cls, role: str) -> "KeyPattern":
        """Dashboard statistics of every user viewing as ``role``."""
        return cls.build(DASHBOARD_DOMAIN, WILDCARD, role)

    def __str__(self) -> str:
        return self.value


class RateLimitScope(str, Enum):
    """Rate-limit scopes, each with its own counter family and ceiling."""

    GENERAL = "general"
    AUTH = "auth"
    USER = "user"


@dataclass(frozen=True)
class RateLimitKey:
    """Rate-limit counter key: ``rl:{scope}:{subject}``."""

    scope: RateLimitScope
    subject: str

    def __post_init__(self) -> None:
        if not isinstance(self.scope, RateLimitScope):
            raise KeyNamespaceError(f"Invalid rate limit scope: {self.scope!r}")
        if not self.subject:
            raise KeyNamespaceError("Rate limit subject cannot be empty")
        # IPv6 addresses contain ':' so only whitespace and glob characters are banned
        if any(char.isspace() or char in _GLOB_CHARS for char in self.subject):
            raise KeyNamespaceError(f"Invalid rate limit subject: {self.subject!r}")
        _check_length(self.value)

    @property
    def value(self) -> str:
        return KEY_SEPARATOR.join([RATE_LIMIT_PREFIX, self.scope.value, self.subject])

    @classmethod
    def for_scope(cls, scope: Union[RateLimitScope, str], subject: str) -> "RateLimitKey":
        return cls(RateLimitScope(scope), str(subject))

    @classmethod
    def for_user(cls, identity: Union[str, int]) -> "RateLimitKey":
        """Per-user counter; the identity is percent-encoded like cache keys."""
        return cls(RateLimitScope.USER, encode_component(identity))

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class TTL:
    """Time to live for cache entries, in seconds."""

    seconds: int

    def __post_init__(self) -> None:
        if self.seconds <= 0:
            raise ValueError("TTL must be positive")
        if self.seconds > 86400 * 365:
            raise ValueError("TTL too large (max 1 year)")

    @classmethod
    def minutes(cls, minutes: int) -> "TTL":
        return cls(minutes * 60)

    @classmethod
    def hours(cls, hours: int) -> "TTL":
        return cls(hours * 3600)

    @classmethod
    def principal(cls) -> "TTL":
        """Principal snapshot TTL (15 minutes)."""
        return cls.minutes(15)
