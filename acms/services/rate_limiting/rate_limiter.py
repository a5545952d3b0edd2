"""
Rate Limiter Service

Fixed-window request counters in the shared key-value store, one counter
per scope and subject (``rl:{scope}:{subject}``, user identities
percent-encoded):

1. INCR the counter.
2. If the new count is 1, EXPIRE it after the window. Later increments in
   the same window never touch the expiry.
3. Compare the count with the scope's ceiling.

INCR takes no TTL, so a crash between steps 1 and 2 leaves a counter
without expiry. Such counters are detected (TTL -1) and logged but not
repaired; ``reset_rate_limit`` clears them. Setting ``atomic_increment``
runs both steps in one Lua script instead.

When the store is unavailable every check fails open.
"""

import logging
from datetime import timedelta
from typing import Dict, Optional, Tuple, Union

from fastapi import HTTPException, status
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
from pydantic import BaseModel, Field

from ...constants import get_current_timestamp
from ...core.config import Settings
from ...domain.cache.value_objects import RateLimitKey, RateLimitScope
from ...infrastructure.redis.exceptions import StoreException
from ...infrastructure.redis.store import KeyValueStore

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

RATE_LIMIT_MESSAGES = {
    RateLimitScope.GENERAL: "Too many requests from this IP, please try again later.",
    RateLimitScope.AUTH: "Too many authentication attempts, please try again later.",
    RateLimitScope.USER: "Too many requests, please try again later.",
}

ScopeLike = Union[RateLimitScope, str]


class RateLimitResult(BaseModel):
    """Result of rate limit check."""

    allowed: bool = Field(..., description="Whether request is allowed")
    current_count: int = Field(..., description="Current request count")
    remaining_requests: int = Field(..., description="Remaining requests")
    reset_seconds: int = Field(..., description="Seconds until the window resets")
    limit: int = Field(..., description="Rate limit threshold")
    window: int = Field(..., description="Time window in seconds")
    identifier: str = Field(..., description="Rate limit subject")
    limit_type: str = Field(..., description="Rate limit scope")
    retry_after: Optional[int] = Field(None, description="Retry-After header value")
    degraded: bool = Field(
        False, description="Store unavailable; request allowed without counting"
    )

    @property
    def reset_at(self) -> str:
        """Window reset as an ISO 8601 UTC instant, e.g. ``2024-05-01T12:01:00.000Z``."""
        reset = get_current_timestamp() + timedelta(seconds=self.reset_seconds)
        return reset.isoformat(timespec="milliseconds").replace("+00:00", "Z")


class RateLimitConfig(BaseModel):
    """Rate limit configuration."""

    requests_per_window: int = Field(..., ge=1, description="Number of allowed requests")
    window_seconds: int = Field(..., ge=1, description="Time window in seconds")


class RateLimitExceededHTTPException(HTTPException):
    """429 raised by the per-identity limiter dependency."""

    def __init__(self, result: RateLimitResult, message: Optional[str] = None):
        self.result = result
        super().__init__(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=message
            or RATE_LIMIT_MESSAGES.get(
                RateLimitScope(result.limit_type), "Too many requests"
            ),
            headers={
                "Retry-After": str(result.retry_after or result.reset_seconds),
                "X-RateLimit-Limit": str(result.limit),
                "X-RateLimit-Remaining": "0",
                "X-RateLimit-Reset": result.reset_at,
            },
        )


class RateLimiter:
    """
    Distributed fixed-window rate limiter.

    The store is the only source of truth, so every process sharing it
    enforces the same counters. No in-process state is kept.
    """

    DEFAULT_LIMITS = {
        RateLimitScope.GENERAL: RateLimitConfig(requests_per_window=100, window_seconds=60),
        RateLimitScope.AUTH: RateLimitConfig(requests_per_window=5, window_seconds=60),
        RateLimitScope.USER: RateLimitConfig(requests_per_window=200, window_seconds=60),
    }

    # Returns {count, ttl}; EXPIRE only on the increment that created the key
    ATOMIC_INCREMENT_SCRIPT = """
    local current = redis.call('INCR', KEYS[1])
    if current == 1 then
        redis.call('EXPIRE', KEYS[1], ARGV[1])
    end
    return {current, redis.call('TTL', KEYS[1])}
    """

    def __init__(
        self,
        store: KeyValueStore,
        limits: Optional[Dict[RateLimitScope, RateLimitConfig]] = None,
        atomic_increment: bool = False,
    ):
        self.store = store
        self.limits = dict(self.DEFAULT_LIMITS)
        if limits:
            self.limits.update(limits)
        self.atomic_increment = atomic_increment

    @classmethod
    def from_settings(cls, settings: Settings, store: KeyValueStore) -> "RateLimiter":
        window = settings.RATE_LIMIT_WINDOW_SECONDS
        return cls(
            store,
            limits={
                RateLimitScope.GENERAL: RateLimitConfig(
                    requests_per_window=settings.RATE_LIMIT_GENERAL_MAX,
                    window_seconds=window,
                ),
                RateLimitScope.AUTH: RateLimitConfig(
                    requests_per_window=settings.RATE_LIMIT_AUTH_MAX,
                    window_seconds=window,
                ),
                RateLimitScope.USER: RateLimitConfig(
                    requests_per_window=settings.RATE_LIMIT_USER_MAX,
                    window_seconds=window,
                ),
            },
            atomic_increment=settings.RATE_LIMIT_ATOMIC_INCREMENT,
        )

    def config_for(self, scope: ScopeLike) -> RateLimitConfig:
        return self.limits[RateLimitScope(scope)]

    @staticmethod
    def _key(scope: ScopeLike, subject: str) -> RateLimitKey:
        scope = RateLimitScope(scope)
        if scope == RateLimitScope.USER:
            return RateLimitKey.for_user(subject)
        return RateLimitKey(scope, str(subject))

    async def check_ip_rate_limit(self, ip_address: str) -> RateLimitResult:
        """General traffic, keyed by client address."""
        return await self.hit(RateLimitScope.GENERAL, ip_address)

    async def check_auth_rate_limit(self, ip_address: str) -> RateLimitResult:
        """Authentication endpoints, keyed by client address."""
        return await self.hit(RateLimitScope.AUTH, ip_address)

    async def check_user_rate_limit(self, user_id: str) -> RateLimitResult:
        """Authenticated traffic, keyed by resolved identity."""
        return await self.hit(RateLimitScope.USER, user_id)

    async def hit(self, scope: ScopeLike, subject: str) -> RateLimitResult:
        """
        Count one request against ``scope``/``subject`` and decide.

        Args:
            scope: Rate limit scope
            subject: Client address or identity

        Returns:
            Rate limit check result; ``degraded`` is set when the store
            could not be reached and the request was let through
        """
        scope = RateLimitScope(scope)
        config = self.config_for(scope)
        key = self._key(scope, subject)

        with tracer.start_as_current_span("rate_limiter.hit") as span:
            span.set_attribute("rate_limit.scope", scope.value)
            span.set_attribute("rate_limit.limit", config.requests_per_window)
            span.set_attribute("rate_limit.window", config.window_seconds)

            try:
                if self.atomic_increment:
                    count, ttl = await self._increment_atomic(key, config)
                else:
                    count, ttl = await self._increment(key, config)
            except StoreException as e:
                logger.warning(
                    f"Rate limit check failed open for {key}: {e.message}",
                    extra={"error_code": e.error_code, "scope": scope.value},
                )
                span.set_status(Status(StatusCode.ERROR, e.message))
                return self._fail_open(scope, str(subject), config)

            limit = config.requests_per_window
            allowed = count <= limit
            reset_seconds = ttl if ttl > 0 else config.window_seconds

            span.set_attribute("rate_limit.count", count)
            span.set_attribute("rate_limit.allowed", allowed)

            if not allowed:
                logger.warning(
                    f"Rate limit exceeded for {key}",
                    extra={
                        "scope": scope.value,
                        "current": count,
                        "limit": limit,
                        "window": config.window_seconds,
                        "reset_seconds": reset_seconds,
                    },
                )

            return RateLimitResult(
                allowed=allowed,
                current_count=count,
                remaining_requests=max(0, limit - count),
                reset_seconds=reset_seconds,
                limit=limit,
                window=config.window_seconds,
                identifier=str(subject),
                limit_type=scope.value,
                retry_after=None if allowed else reset_seconds,
            )

    async def _increment(
        self, key: RateLimitKey, config: RateLimitConfig
    ) -> Tuple[int, int]:
        count = await self.store.incr(key.value)
        if count == 1:
            await self.store.expire(key.value, config.window_seconds)
            return count, config.window_seconds
        return count, await self._remaining_ttl(key, count, config)

    async def _increment_atomic(
        self, key: RateLimitKey, config: RateLimitConfig
    ) -> Tuple[int, int]:
        count, ttl = await self.store.eval(
            self.ATOMIC_INCREMENT_SCRIPT, 1, key.value, config.window_seconds
        )
        return int(count), int(ttl)

    async def _remaining_ttl(
        self, key: RateLimitKey, count: int, config: RateLimitConfig
    ) -> int:
        """Seconds left in the window; the window length if unknown."""
        try:
            ttl = await self.store.ttl(key.value)
        except StoreException as e:
            logger.debug(f"Could not read TTL for {key}: {e.message}")
            return config.window_seconds

        if ttl == -1:
            logger.warning(
                f"Rate limit counter {key} has no expiry (count={count}); "
                "it persists until reset",
                extra={"scope": key.scope.value, "current": count},
            )
        if ttl <= 0:
            return config.window_seconds
        return ttl

    def _fail_open(
        self, scope: RateLimitScope, subject: str, config: RateLimitConfig
    ) -> RateLimitResult:
        return RateLimitResult(
            allowed=True,
            current_count=0,
            remaining_requests=config.requests_per_window,
            reset_seconds=config.window_seconds,
            limit=config.requests_per_window,
            window=config.window_seconds,
            identifier=subject,
            limit_type=scope.value,
            retry_after=None,
            degraded=True,
        )

    async def get_rate_limit_status(
        self, scope: ScopeLike, subject: str
    ) -> RateLimitResult:
        """
        Current counter state without consuming a request.

        ``allowed`` reports whether the next request would pass.
        """
        scope = RateLimitScope(scope)
        config = self.config_for(scope)
        key = self._key(scope, subject)

        try:
            raw = await self.store.get(key.value)
            count = int(raw) if raw is not None else 0
            ttl = await self.store.ttl(key.value) if count else -2
        except (StoreException, ValueError) as e:
            logger.error(f"Failed to get rate limit status for {key}: {e}")
            return self._fail_open(scope, str(subject), config)

        if ttl == -1:
            logger.warning(f"Rate limit counter {key} has no expiry (count={count})")

        limit = config.requests_per_window
        return RateLimitResult(
            allowed=count < limit,
            current_count=count,
            remaining_requests=max(0, limit - count),
            reset_seconds=ttl if ttl > 0 else config.window_seconds,
            limit=limit,
            window=config.window_seconds,
            identifier=str(subject),
            limit_type=scope.value,
            retry_after=None,
        )

    async def reset_rate_limit(self, scope: ScopeLike, subject: str) -> bool:
        """
        Delete a counter.

        This is the only explicit removal of a counter and the remedy for
        counters left without an expiry.

        Returns:
            True if reset successful
        """
        key = self._key(scope, subject)
        try:
            await self.store.delete(key.value)
        except StoreException as e:
            logger.error(f"Failed to reset rate limit for {key}: {e.message}")
            return False

        logger.info(f"Reset rate limit for {key}")
        return True

    async def refund(self, scope: ScopeLike, subject: str) -> Optional[int]:
        """
        Give back one request, e.g. when a counted request should not have been.

        Returns:
            The counter after the decrement, or None if the store failed
        """
        key = self._key(scope, subject)
        try:
            count = await self.store.decr(key.value)
            if count <= 0:
                # DECR on an expired counter recreates it without a TTL
                await self.store.delete(key.value)
                return 0
            return count
        except StoreException as e:
            logger.warning(f"Failed to refund rate limit for {key}: {e.message}")
            return None
