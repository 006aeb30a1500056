"""Health check endpoints."""

from fastapi import APIRouter, status
from pydantic import BaseModel

from clinichub.config import settings
from clinichub.core.redis_client import check_redis_connection
from clinichub.database import check_database_connection

router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str
    version: str
    environment: str


class DetailedHealthResponse(HealthResponse):
    """Health check including backing services."""

    database: str
    redis: str
    email: str


def _component(healthy: bool) -> str:
    return "healthy" if healthy else "unhealthy"


@router.get(
    "/health",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
    tags=["Health"],
    summary="Basic health check",
)
async def health_check() -> HealthResponse:
    """Report that the API process is up."""
    return HealthResponse(
        status="healthy",
        version=settings.app_version,
        environment=settings.environment,
    )


@router.get(
    "/health/detailed",
    response_model=DetailedHealthResponse,
    status_code=status.HTTP_200_OK,
    tags=["Health"],
    summary="Detailed health check",
)
async def detailed_health_check() -> DetailedHealthResponse:
    """
    Health of the API and the services it depends on.

    The store is required for scheduling; Redis only carries live
    notifications, the cache and rate limits, so losing it degrades the
    service without stopping bookings. Email is reported but never
    affects the overall status.
    """
    db_healthy = await check_database_connection()
    redis_healthy = await check_redis_connection()

    if not db_healthy:
        overall = "unhealthy"
    elif not redis_healthy:
        overall = "degraded"
    else:
        overall = "healthy"

    return DetailedHealthResponse(
        status=overall,
        version=settings.app_version,
        environment=settings.environment,
        database=_component(db_healthy),
        redis=_component(redis_healthy),
        email="configured" if settings.email_enabled else "disabled",
    )


@router.get(
    "/ping",
    status_code=status.HTTP_200_OK,
    tags=["Health"],
    summary="Simple ping",
)
async def ping() -> dict[str, str]:
    """Simple ping endpoint."""
    return {"message": "pong"}
