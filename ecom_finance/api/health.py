"""
Health check endpoint.
/health always returns 200; database and Redis reachability are reported,
not enforced.
"""

from fastapi import APIRouter
from redis import Redis
from sqlalchemy import text

from ecom_finance.config import settings
from ecom_finance.models.database import async_session_factory

router = APIRouter(tags=["health"])


async def _database_ok() -> tuple[bool, str | None]:
    try:
        async with async_session_factory() as session:
            result = await session.execute(text("SELECT 1"))
            return result.scalar() == 1, None
    except Exception as e:
        return False, str(e)[:200]


def _redis_ok() -> bool:
    try:
        return bool(Redis.from_url(settings.REDIS_URL, socket_connect_timeout=1).ping())
    except Exception:
        return False


@router.get("/health")
async def health_check():
    db_ok, db_error = await _database_ok()
    response = {
        "status": "healthy" if db_ok else "degraded",
        "version": settings.APP_VERSION,
        "database": "connected" if db_ok else "unreachable",
        "queue": "connected" if _redis_ok() else "unreachable",
    }
    if db_error:
        response["database_error"] = db_error
    return response


@router.get("/health/ready")
async def readiness_check():
    """Readiness probe: ready only when the database answers."""
    db_ok, _ = await _database_ok()
    return {"ready": db_ok}
