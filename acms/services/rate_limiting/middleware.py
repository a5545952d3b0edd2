"""
Rate Limiting Middleware

Address-keyed limits for every request: the general scope always, plus the
much tighter auth scope on authentication paths. Per-identity limits run
later, after the principal is resolved (see ``api.dependencies``).
"""

import logging
from typing import Callable, Iterable, Optional

from fastapi import Request, Response, status
from opentelemetry import trace
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from ...domain.cache.value_objects import KeyNamespaceError, RateLimitScope
from .rate_limiter import RATE_LIMIT_MESSAGES, RateLimiter, RateLimitResult

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class RateLimitingMiddleware(BaseHTTPMiddleware):
    """
    FastAPI middleware for address-keyed rate limiting.

    Rejected requests get a 429 JSON body ``{"success": false, "message": ...}``
    and ``Retry-After``; allowed ones carry ``RateLimit-Limit``,
    ``RateLimit-Remaining`` and ``RateLimit-Reset`` (seconds).
    """

    def __init__(
        self,
        app,
        rate_limiter: RateLimiter,
        auth_path_prefix: str = "/api/auth",
        exclude_paths: Optional[Iterable[str]] = None,
        trust_proxy_headers: bool = False,
        enabled: bool = True,
    ):
        super().__init__(app)
        self.rate_limiter = rate_limiter
        self.auth_path_prefix = auth_path_prefix.rstrip("/")
        self.exclude_paths = set(exclude_paths if exclude_paths is not None else ["/health", "/"])
        self.trust_proxy_headers = trust_proxy_headers
        self.enabled = enabled

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if not self.enabled or request.url.path in self.exclude_paths:
            return await call_next(request)

        with tracer.start_as_current_span("rate_limiting_middleware.dispatch") as span:
            span.set_attribute("http.method", request.method)
            span.set_attribute("http.path", request.url.path)

            client_ip = self._get_client_ip(request)
            try:
                result = await self._apply_rate_limits(request, client_ip, span)
            except KeyNamespaceError as e:
                logger.warning(f"Unusable client address {client_ip!r}, not limiting: {e}")
                return await call_next(request)

            if not result.allowed:
                return self._create_rate_limit_response(result, span)

            response = await call_next(request)
            if not result.degraded:
                self._add_rate_limit_headers(response, result)
            return response

    def _is_auth_path(self, path: str) -> bool:
        return path == self.auth_path_prefix or path.startswith(self.auth_path_prefix + "/")

    def _get_client_ip(self, request: Request) -> str:
        """Get client IP address from request."""
        if self.trust_proxy_headers:
            forwarded_for = request.headers.get("X-Forwarded-For")
            if forwarded_for:
                # First hop is the original client
                return forwarded_for.split(",")[0].strip()

            real_ip = request.headers.get("X-Real-IP")
            if real_ip:
                return real_ip.strip()

        return request.client.host if request.client else "unknown"

    async def _apply_rate_limits(
        self, request: Request, client_ip: str, span
    ) -> RateLimitResult:
        result = await self.rate_limiter.check_ip_rate_limit(client_ip)
        span.set_attribute("rate_limit.general.allowed", result.allowed)
        if not result.allowed:
            span.set_attribute("rate_limit.blocked_by", RateLimitScope.GENERAL.value)
            return result

        if self._is_auth_path(request.url.path):
            auth_result = await self.rate_limiter.check_auth_rate_limit(client_ip)
            span.set_attribute("rate_limit.auth.allowed", auth_result.allowed)
            if not auth_result.allowed:
                span.set_attribute("rate_limit.blocked_by", RateLimitScope.AUTH.value)
            if auth_result.allowed and auth_result.degraded:
                return result
            return auth_result

        return result

    def _create_rate_limit_response(self, result: RateLimitResult, span) -> JSONResponse:
        """Create HTTP 429 Too Many Requests response."""
        span.set_attribute("http.status_code", status.HTTP_429_TOO_MANY_REQUESTS)

        response = JSONResponse(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            content={
                "success": False,
                "message": RATE_LIMIT_MESSAGES[RateLimitScope(result.limit_type)],
            },
        )
        self._add_rate_limit_headers(response, result)
        response.headers["Retry-After"] = str(result.retry_after or result.reset_seconds)
        return response

    def _add_rate_limit_headers(self, response: Response, result: RateLimitResult) -> None:
        response.headers["RateLimit-Limit"] = str(result.limit)
        response.headers["RateLimit-Remaining"] = str(result.remaining_requests)
        response.headers["RateLimit-Reset"] = str(result.reset_seconds)
