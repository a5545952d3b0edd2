"""
Request dependencies: service lookup, principal resolution, per-identity
rate limiting and role checks.

Services live on ``app.state`` (see ``main.create_app``).
"""

from typing import Callable, Optional

import structlog
from fastapi import Depends, HTTPException, Request, Response, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ..core.config import Settings
from ..domain.cache.principal import Principal, Role
from ..domain.cache.value_objects import KeyNamespaceError
from ..repositories.users import UserRepository
from ..services.auth.token_verifier import AuthenticationError, TokenVerifier
from ..services.cache.cache_service import CacheService
from ..services.cache.invalidation import CacheInvalidationService
from ..services.cache.principal_cache import PrincipalCache, PrincipalNotFoundError
from ..services.rate_limiting.rate_limiter import (
    RateLimiter,
    RateLimitExceededHTTPException,
)

logger = structlog.get_logger()

bearer_scheme = HTTPBearer(auto_error=False)


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_cache_service(request: Request) -> CacheService:
    return request.app.state.cache_service


def get_principal_cache(request: Request) -> PrincipalCache:
    return request.app.state.principal_cache


def get_invalidation_service(request: Request) -> CacheInvalidationService:
    return request.app.state.invalidation_service


def get_rate_limiter(request: Request) -> RateLimiter:
    return request.app.state.rate_limiter


def get_user_repository(request: Request) -> UserRepository:
    return request.app.state.user_repository


def get_token_verifier(request: Request) -> TokenVerifier:
    return request.app.state.token_verifier


async def get_current_principal(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    verifier: TokenVerifier = Depends(get_token_verifier),
    principal_cache: PrincipalCache = Depends(get_principal_cache),
) -> Principal:
    """
    Resolve the bearer token to a principal.

    Token failures never touch the cache. Unknown identities are rejected
    and not cached.
    """
    token = credentials.credentials if credentials else None

    try:
        identity = verifier.verify(token)
    except AuthenticationError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=e.message,
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        principal = await principal_cache.resolve(identity)
    except PrincipalNotFoundError:
        logger.info("Token for unknown identity rejected", identity=identity)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found, token invalid",
            headers={"WWW-Authenticate": "Bearer"},
        )

    request.state.principal = principal
    return principal


async def get_rate_limited_principal(
    response: Response,
    principal: Principal = Depends(get_current_principal),
    rate_limiter: RateLimiter = Depends(get_rate_limiter),
    settings: Settings = Depends(get_app_settings),
) -> Principal:
    """Resolved principal, counted against the per-identity limit."""
    if not settings.RATE_LIMIT_ENABLED:
        return principal

    try:
        result = await rate_limiter.check_user_rate_limit(principal.id)
    except KeyNamespaceError as e:
        logger.warning(
            "Identity unusable as a rate limit key, not limiting",
            identity=principal.id,
            error=str(e),
        )
        return principal

    if not result.allowed:
        raise RateLimitExceededHTTPException(result)

    if not result.degraded:
        response.headers["X-RateLimit-Limit"] = str(result.limit)
        response.headers["X-RateLimit-Remaining"] = str(result.remaining_requests)
        response.headers["X-RateLimit-Reset"] = result.reset_at
    return principal


def require_roles(*roles: Role) -> Callable:
    """Dependency factory admitting only principals with one of ``roles``."""
    allowed = [Role(role) for role in roles]

    async def _require_roles(
        principal: Principal = Depends(get_rate_limited_principal),
    ) -> Principal:
        if not principal.has_role(*allowed):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Access denied. Required role: "
                + " or ".join(role.value for role in allowed),
            )
        return principal

    return _require_roles
