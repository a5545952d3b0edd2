"""
Principal Cache

Read-through resolution of authenticated identities. Every authenticated
request resolves its principal here; the user repository is consulted only
on a miss.

Handlers that change a user's role, counsellor assignment or existence must
call ``invalidate`` (directly or through CacheInvalidationService) before
returning. The TTL only bounds staleness when that is forgotten.
"""

from typing import Any, Dict, Optional

import structlog
from pydantic import ValidationError

from ...domain.cache.principal import Principal
from ...domain.cache.value_objects import TTL, CacheKey, KeyNamespaceError
from ...repositories.users import UserRepository
from .cache_service import CacheService

logger = structlog.get_logger(__name__)


class PrincipalNotFoundError(Exception):
    """Raised when an identity has no matching user record."""

    def __init__(self, identity: str):
        self.identity = identity
        super().__init__(f"Principal not found: {identity}")


class PrincipalCache:
    def __init__(
        self,
        cache: CacheService,
        repository: UserRepository,
        ttl: Optional[TTL] = None,
    ):
        self.cache = cache
        self.repository = repository
        self.ttl = ttl or TTL.principal()

    async def resolve(self, identity: str) -> Principal:
        """
        Resolve an identity to its principal snapshot.

        Identities too long to form a cache key are loaded on every call.

        Raises:
            PrincipalNotFoundError: If no user record exists. Nothing is cached.
        """
        try:
            key = CacheKey.principal(identity)
        except KeyNamespaceError as e:
            logger.warning(
                "Principal not cacheable, loading directly",
                identity=identity,
                error=str(e),
            )
            return Principal.model_validate(await self._load(identity))

        data = await self.cache.get_or_set(
            key, lambda: self._load(identity), self.ttl
        )

        try:
            return Principal.model_validate(data)
        except ValidationError as e:
            # Entry written by an incompatible release; drop it and reload
            logger.warning(
                "Cached principal failed validation, reloading",
                identity=identity,
                error=str(e),
            )
            await self.cache.delete(key)
            data = await self._load(identity)
            await self.cache.set(key, data, self.ttl)
            return Principal.model_validate(data)

    async def _load(self, identity: str) -> Dict[str, Any]:
        record = await self.repository.get_by_id(identity)
        if record is None:
            raise PrincipalNotFoundError(identity)
        return Principal.from_record(record).to_cache()

    async def invalidate(self, identity: str) -> bool:
        """Evict the cached snapshot for ``identity``."""
        try:
            key = CacheKey.principal(identity)
        except KeyNamespaceError:
            # never cached, so nothing to evict
            return True
        return await self.cache.delete(key)
