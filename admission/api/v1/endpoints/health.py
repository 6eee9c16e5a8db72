"""Health check endpoints."""

from fastapi import APIRouter, status
from pydantic import BaseModel
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from admission.config import settings
from admission.core.redis_client import check_redis_connection
from admission.database import check_database_connection
from admission.dependencies import DatabaseSession
from admission.models.appointments import appointment_state_transitions

router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str
    version: str
    environment: str


class DetailedHealthResponse(HealthResponse):
    """Detailed health check response model."""

    database: str
    redis: str
    transition_rules: int | None = None


@router.get(
    "/health",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
    summary="Basic health check",
)
async def health_check() -> HealthResponse:
    """Basic health status."""
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
async def detailed_health_check(db: DatabaseSession) -> DetailedHealthResponse:
    """
    Detailed health check with database, Redis and rule table status.

    An empty transition table is reported as degraded: every status change
    would be rejected.
    """
    db_healthy = await check_database_connection()
    redis_healthy = await check_redis_connection()

    rule_count: int | None = None
    if db_healthy:
        try:
            result = await db.execute(
                select(func.count()).select_from(appointment_state_transitions)
            )
            rule_count = result.scalar() or 0
        except SQLAlchemyError:
            rule_count = None

    healthy = db_healthy and redis_healthy and bool(rule_count)

    return DetailedHealthResponse(
        status="healthy" if healthy else "degraded",
        version=settings.app_version,
        environment=settings.environment,
        database="healthy" if db_healthy else "unhealthy",
        redis="healthy" if redis_healthy else "unhealthy",
        transition_rules=rule_count,
    )


@router.get(
    "/ping",
    status_code=status.HTTP_200_OK,
    summary="Simple ping",
)
async def ping() -> dict[str, str]:
    """Simple ping."""
    return {"message": "pong"}
