"""Health check endpoints."""

from fastapi import APIRouter, Request, status
from pydantic import BaseModel

from healthqueue.config import settings
from healthqueue.core.redis_client import check_redis_connection
from healthqueue.database import check_database_connection

router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str
    version: str
    environment: str


class DetailedHealthResponse(HealthResponse):
    """Health of the service and of its backing stores."""

    database: str
    cache: str
    realtime_subscribers: dict[str, int]


@router.get(
    "/health",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
    summary="Basic health check",
)
async def health_check() -> HealthResponse:
    """Liveness probe."""
    return HealthResponse(
        status="healthy",
        version=settings.app_version,
        environment=settings.environment,
    )


@router.get(
    "/health/detailed",
    response_model=DetailedHealthResponse,
    status_code=status.HTTP_200_OK,
    summary="Detailed health check",
)
async def detailed_health_check(request: Request) -> DetailedHealthResponse:
    """
    Readiness probe.

    The queue needs the database; Redis only caches doctor profiles, so a
    cache outage reports ``degraded`` rather than ``unhealthy``.

    Returns:
        Status of the database, the cache and the realtime hub
    """
    db_healthy = await check_database_connection()
    cache_healthy = await check_redis_connection()

    if not db_healthy:
        overall = "unhealthy"
    elif not cache_healthy:
        overall = "degraded"
    else:
        overall = "healthy"

    return DetailedHealthResponse(
        status=overall,
        version=settings.app_version,
        environment=settings.environment,
        database="healthy" if db_healthy else "unhealthy",
        cache="healthy" if cache_healthy else "unhealthy",
        realtime_subscribers=request.app.state.hub.connected_counts(),
    )


@router.get(
    "/ping",
    status_code=status.HTTP_200_OK,
    summary="Simple ping",
)
async def ping() -> dict[str, str]:
    """Return pong."""
    return {"message": "pong"}
