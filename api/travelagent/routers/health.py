"""
Health Check Endpoints
"""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import text

from travelagent.config import settings
from travelagent.utils import redis as redis_utils
from travelagent.utils.database import get_db

router = APIRouter()


@router.get("/health")
async def health_check():
    """Basic health check"""
    return {"status": "healthy", "service": "travelagent-api"}


@router.get("/health/ready")
async def readiness_check(db: AsyncSession = Depends(get_db)):
    """
    Readiness check - the database is required, Redis only degrades caching
    """
    checks = {
        "postgres": False,
        "redis": False,
    }

    # Check PostgreSQL
    try:
        await db.execute(text("SELECT 1"))
        checks["postgres"] = True
    except Exception as e:
        checks["postgres_error"] = str(e)

    # Check Redis
    if not settings.CACHE_ENABLED:
        checks["redis"] = "disabled"
    elif redis_utils.redis_client is None:
        checks["redis_error"] = "not initialized"
    else:
        try:
            await redis_utils.redis_client.ping()
            checks["redis"] = True
        except Exception as e:
            checks["redis_error"] = str(e)

    if not checks["postgres"]:
        status = "unavailable"
    elif checks["redis"] is False:
        status = "degraded"
    else:
        status = "ready"

    return {
        "status": status,
        "checks": checks
    }


@router.get("/health/live")
async def liveness_check():
    """Liveness check - is the service running"""
    return {"status": "alive"}
