"""Health check endpoint."""

from fastapi import APIRouter, Depends, Request
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from flashdeals.dependencies import get_db
from flashdeals.schemas import HealthCheckResponse
from flashdeals.services.cache_service import CacheService, get_cache

router = APIRouter()


@router.get("/health", response_model=HealthCheckResponse)
async def health_check(
    request: Request,
    db: AsyncSession = Depends(get_db),
    cache: CacheService = Depends(get_cache),
):
    """Return service health status.

    The database must answer for an ``ok`` status. Redis is reported but a
    disabled cache does not degrade the service.
    """
    services = {}

    try:
        result = await db.execute(text("SELECT 1"))
        result.scalar()
        db_status = "ok"
    except Exception as e:
        db_status = f"error: {str(e)}"
    services["database"] = db_status

    if not cache.enabled:
        redis_status = "disabled"
    else:
        redis_status = "ok" if await cache.health_check() else "error: ping failed"
    services["redis"] = redis_status

    scheduler = getattr(request.app.state, "scheduler", None)
    scheduler_status = "running" if scheduler and scheduler.is_running() else "stopped"
    services["scheduler"] = scheduler_status

    healthy = db_status == "ok" and redis_status in ("ok", "disabled")
    return HealthCheckResponse(
        status="ok" if healthy else "degraded",
        database=db_status,
        redis=redis_status,
        scheduler=scheduler_status,
        services=services,
    )
