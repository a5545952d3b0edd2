"""
ACMS Backend - FastAPI application factory.

The key-value store is constructed here, connected in the lifespan and
injected into the cache service and rate limiter. Nothing below this module
creates its own connection.
"""

from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware

from .constants import APP_NAME, APP_VERSION
from .core.config import Settings, get_settings
from .core.logging import configure_logging
from .domain.cache.value_objects import TTL
from .infrastructure.redis.store import KeyValueStore
from .repositories.users import UserRepository
from .services.auth.token_verifier import TokenVerifier
from .services.cache.cache_service import CacheService
from .services.cache.invalidation import CacheInvalidationService
from .services.cache.principal_cache import PrincipalCache
from .services.rate_limiting.middleware import RateLimitingMiddleware
from .services.rate_limiting.rate_limiter import RateLimiter, RateLimitExceededHTTPException
from .api.endpoints.admin import router as admin_router
from .api.endpoints.health import router as health_router
from .api.endpoints.users import router as users_router

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Connect the shared store on startup and close it on shutdown."""
    settings: Settings = app.state.settings
    store: KeyValueStore = app.state.store

    logger.info("Starting ACMS API", version=APP_VERSION, environment=settings.ENVIRONMENT)

    connected = await store.connect()
    if not connected:
        logger.warning(
            "Key-value store unavailable, cache and rate limiting will fail open"
        )

    yield

    logger.info("Shutting down ACMS API")
    try:
        await store.close()
    except Exception as e:
        logger.error("Error during application shutdown", error=str(e))


def create_app(
    settings: Optional[Settings] = None,
    user_repository: Optional[UserRepository] = None,
    token_verifier: Optional[TokenVerifier] = None,
    store: Optional[KeyValueStore] = None,
) -> FastAPI:
    """
    Build the application.

    Args:
        settings: Application settings (defaults to environment settings)
        user_repository: Persistence for user records
        token_verifier: Bearer token verifier (defaults to one built from settings)
        store: Unconnected key-value store (defaults to one built from settings)
    """
    settings = settings or get_settings()
    if user_repository is None:
        raise ValueError("create_app requires a user_repository")

    configure_logging(settings)

    store = store or KeyValueStore.from_settings(settings)
    cache_service = CacheService(store)
    rate_limiter = RateLimiter.from_settings(settings, store)

    app = FastAPI(
        title=APP_NAME,
        description="Academic portal API with read-through caching and rate limiting",
        version=APP_VERSION,
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.store = store
    app.state.cache_service = cache_service
    app.state.principal_cache = PrincipalCache(
        cache_service, user_repository, TTL(settings.PRINCIPAL_CACHE_TTL)
    )
    app.state.invalidation_service = CacheInvalidationService(cache_service)
    app.state.rate_limiter = rate_limiter
    app.state.user_repository = user_repository
    app.state.token_verifier = token_verifier or TokenVerifier.from_settings(settings)

    app.add_middleware(
        RateLimitingMiddleware,
        rate_limiter=rate_limiter,
        auth_path_prefix=settings.AUTH_PATH_PREFIX,
        exclude_paths=settings.rate_limit_exclude_paths_list,
        trust_proxy_headers=settings.RATE_LIMIT_TRUST_PROXY_HEADERS,
        enabled=settings.RATE_LIMIT_ENABLED,
    )

    # Added last so it wraps the limiter and 429s carry CORS headers
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health_router)
    app.include_router(users_router)
    app.include_router(admin_router)

    @app.exception_handler(RateLimitExceededHTTPException)
    async def rate_limit_exceeded_handler(
        request: Request, exc: RateLimitExceededHTTPException
    ) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "message": exc.detail},
            headers=exc.headers,
        )

    @app.get("/")
    async def root():
        return {"message": f"{APP_NAME} is running", "version": APP_VERSION}

    return app
