"""
Cache Service

Generic read/write/evict operations over the shared key-value store with
JSON serialization and pattern-based bulk eviction.

Every operation fails open: a store error is logged and reported as a miss
(reads), a False result (writes) or a zero count (pattern eviction). The
cache is a latency optimization, so callers must never depend on it for
correctness.
"""

import inspect
import json
from typing import Any, Awaitable, Callable, List, Optional, Union

import structlog
from opentelemetry import trace
from pydantic import BaseModel

from ...domain.cache.results import CacheResult
from ...domain.cache.value_objects import TTL, CacheKey, KeyPattern
from ...infrastructure.redis.exceptions import StoreException
from ...infrastructure.redis.store import KeyValueStore

logger = structlog.get_logger(__name__)
tracer = trace.get_tracer(__name__)

KeyLike = Union[CacheKey, str]
PatternLike = Union[KeyPattern, str]
TTLLike = Union[TTL, int, None]
ComputeFn = Callable[[], Union[Awaitable[Any], Any]]


def _ttl_seconds(ttl: TTLLike) -> Optional[int]:
    if ttl is None:
        return None
    if isinstance(ttl, TTL):
        return ttl.seconds
    return TTL(int(ttl)).seconds


class CacheService:
    """
    Domain-agnostic cache over a KeyValueStore.

    Keys are CacheKey instances (raw strings are validated through
    ``CacheKey.parse``), so no call here can address a rate-limit counter.
    """

    def __init__(self, store: KeyValueStore, delete_batch_size: int = 500):
        if delete_batch_size <= 0:
            raise ValueError("delete_batch_size must be positive")
        self.store = store
        self.delete_batch_size = delete_batch_size

    async def lookup(self, key: KeyLike) -> CacheResult[Any]:
        """
        Read a key and report HIT, MISS or ERROR.

        A hit is decided by key existence in the store, so an explicitly
        cached ``[]``, ``{}``, ``0`` or ``false`` is a hit. Store failures and
        undecodable entries come back as ERROR.
        """
        cache_key = CacheKey.parse(key)

        with tracer.start_as_current_span("cache_service.lookup") as span:
            span.set_attribute("cache.key", cache_key.value)

            try:
                raw = await self.store.get(cache_key.value)
            except StoreException as e:
                logger.warning(
                    "Cache read failed, treating as miss",
                    key=cache_key.value,
                    error_code=e.error_code,
                    error=e.message,
                )
                span.set_attribute("cache.outcome", "error")
                return CacheResult.failed(e.message)

            if raw is None:
                span.set_attribute("cache.outcome", "miss")
                return CacheResult.miss()

            try:
                value = json.loads(raw)
            except (TypeError, ValueError) as e:
                logger.warning(
                    "Corrupt cache entry, treating as miss",
                    key=cache_key.value,
                    error=str(e),
                )
                span.set_attribute("cache.outcome", "error")
                return CacheResult.failed(f"Corrupt cache entry: {e}")

            span.set_attribute("cache.outcome", "hit")
            return CacheResult.hit(value)

    async def get(self, key: KeyLike) -> Any:
        """Cached value, or None on a miss or any error."""
        result = await self.lookup(key)
        return result.value_or_none()

    async def set(self, key: KeyLike, value: Any, ttl: TTLLike = None) -> bool:
        """
        Serialize ``value`` to JSON and store it.

        Args:
            key: Cache key
            value: JSON-serializable payload (pydantic models are dumped first)
            ttl: Expiry in seconds or TTL; None stores without expiry

        Returns:
            True if the write reached the store
        """
        cache_key = CacheKey.parse(key)
        ttl_seconds = _ttl_seconds(ttl)

        with tracer.start_as_current_span("cache_service.set") as span:
            span.set_attribute("cache.key", cache_key.value)
            if ttl_seconds is not None:
                span.set_attribute("cache.ttl", ttl_seconds)

            if isinstance(value, BaseModel):
                value = value.model_dump(mode="json")

            try:
                payload = json.dumps(value, default=str)
            except (TypeError, ValueError) as e:
                logger.error(
                    "Cache value is not serializable, write dropped",
                    key=cache_key.value,
                    error=str(e),
                )
                return False

            try:
                await self.store.set(cache_key.value, payload, ttl_seconds)
            except StoreException as e:
                logger.warning(
                    "Cache write failed, dropped",
                    key=cache_key.value,
                    error_code=e.error_code,
                    error=e.message,
                )
                span.set_status(trace.Status(trace.StatusCode.ERROR, e.message))
                return False

            return True

    async def delete(self, key: KeyLike) -> bool:
        """Delete one key. Deleting an absent key succeeds."""
        cache_key = CacheKey.parse(key)

        try:
            await self.store.delete(cache_key.value)
        except StoreException as e:
            logger.warning(
                "Cache delete failed",
                key=cache_key.value,
                error_code=e.error_code,
                error=e.message,
            )
            return False
        return True

    async def delete_by_pattern(self, pattern: PatternLike) -> int:
        """
        Delete every key matching a glob pattern.

        Keys are enumerated with SCAN and removed with UNLINK in batches.
        The fan-out is not atomic: if the store fails part way, the keys
        already removed stay removed and the count so far is returned.

        Returns:
            Number of keys deleted
        """
        key_pattern = KeyPattern.parse(pattern)

        with tracer.start_as_current_span("cache_service.delete_by_pattern") as span:
            span.set_attribute("cache.pattern", key_pattern.value)

            try:
                keys = await self.store.scan(key_pattern.value)
            except StoreException as e:
                logger.warning(
                    "Cache pattern scan failed",
                    pattern=key_pattern.value,
                    error_code=e.error_code,
                    error=e.message,
                )
                return 0

            deleted = 0
            for batch in self._batches(keys):
                try:
                    deleted += await self.store.unlink(*batch)
                except StoreException as e:
                    logger.warning(
                        "Cache pattern delete interrupted",
                        pattern=key_pattern.value,
                        deleted=deleted,
                        remaining=len(keys) - deleted,
                        error_code=e.error_code,
                        error=e.message,
                    )
                    break

            span.set_attribute("cache.deleted", deleted)
            if deleted:
                logger.debug(
                    "Cache pattern evicted", pattern=key_pattern.value, deleted=deleted
                )
            return deleted

    def _batches(self, keys: List[str]) -> List[List[str]]:
        size = self.delete_batch_size
        return [keys[i : i + size] for i in range(0, len(keys), size)]

    async def get_or_set(self, key: KeyLike, compute: ComputeFn, ttl: TTLLike = None) -> Any:
        """
        Read-through lookup.

        On a hit the cached value is returned. Otherwise ``compute`` runs
        (sync or async); a non-None result is cached and returned. Errors
        raised by ``compute`` propagate unchanged.
        """
        cache_key = CacheKey.parse(key)

        result = await self.lookup(cache_key)
        if result.is_hit:
            return result.value

        value = compute()
        if inspect.isawaitable(value):
            value = await value

        if value is not None:
            await self.set(cache_key, value, ttl)
        return value
