"""
Health check endpoint.
"""

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse

from ...constants import APP_VERSION, get_current_timestamp

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(request: Request) -> JSONResponse:
    """
    Report process and key-value store health.

    Returns 503 when the store does not answer; the API itself keeps
    serving requests in that state because cache and limiter fail open.
    """
    store_health = await request.app.state.store.health_check()
    healthy = store_health["status"] == "healthy"

    return JSONResponse(
        status_code=status.HTTP_200_OK if healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "OK" if healthy else "DEGRADED",
            "timestamp": get_current_timestamp().isoformat(),
            "version": APP_VERSION,
            "environment": request.app.state.settings.ENVIRONMENT,
            "redis": store_health,
        },
    )
