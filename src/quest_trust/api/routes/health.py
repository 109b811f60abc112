"""Health check endpoint.

Verifies database connectivity and, when the replay guard is enabled,
Redis connectivity. Used by container healthchecks and load balancers.
"""

from __future__ import annotations

from fastapi import APIRouter
from sqlalchemy import text

from quest_trust.infrastructure.database.engine import get_engine
from quest_trust.infrastructure.redis_client import get_redis
from quest_trust.logging_config import get_logger
from quest_trust.schemas.health import HealthResponse

router = APIRouter(tags=["Health"])
logger = get_logger(__name__)


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Returns the health status of the application and its dependencies.",
)
async def health_check() -> HealthResponse:
    """Check connectivity to the database and Redis."""
    db_status = "unknown"
    redis_status = "disabled"

    try:
        async with get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
        db_status = "healthy"
    except Exception as exc:
        db_status = "unhealthy"
        logger.error("health.db_check_failed", error_type=type(exc).__name__)

    redis = get_redis()
    if redis is not None:
        try:
            await redis.ping()
            redis_status = "healthy"
        except Exception as exc:
            redis_status = "unhealthy"
            logger.error("health.redis_check_failed", error_type=type(exc).__name__)

    overall = "ok" if db_status == "healthy" and redis_status != "unhealthy" else "degraded"

    return HealthResponse(
        status=overall,
        version="0.1.0",
        database=db_status,
        redis=redis_status,
    )
