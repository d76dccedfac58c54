"""Health check endpoint.

The database is required: without it the service answers 503. The
rate-limit cache is reported but does not fail the check, since OTP
endpoints return a system error on their own when it is unreachable.
"""

from fastapi import APIRouter, Response, status
from pydantic import BaseModel

from otpauth.core import check_db_connection, get_cache_store, settings

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    status: str
    version: str
    database: str
    cache: str


@router.get(
    "/health",
    response_model=HealthResponse,
    responses={
        status.HTTP_200_OK: {"description": "Service is healthy"},
        status.HTTP_503_SERVICE_UNAVAILABLE: {"description": "Database is unavailable"},
    },
)
async def health_check(response: Response) -> HealthResponse:
    db_healthy = await check_db_connection()
    cache_healthy = await get_cache_store().ping()

    if not db_healthy:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        overall = "unhealthy"
    else:
        overall = "healthy" if cache_healthy else "degraded"

    return HealthResponse(
        status=overall,
        version=settings.app_version,
        database="connected" if db_healthy else "disconnected",
        cache="connected" if cache_healthy else "disconnected",
    )
