"""
DevMatch — Health checks.

``/health`` answers as long as the process is up.  ``/health/deep`` checks
the database and, when configured, Redis; a failing dependency marks the
service ``degraded`` rather than failing the check.
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.api.deps import get_change_feed, get_redis, get_session_factory
from app.services.change_feed import ChangeFeed

logger = structlog.get_logger("devmatch.api.health")

router = APIRouter()


@router.get("/health", summary="Liveness check")
async def health_liveness() -> dict:
    return {"status": "healthy"}


@router.get("/health/deep", summary="Readiness check")
async def health_deep(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    redis=Depends(get_redis),
    feed: ChangeFeed = Depends(get_change_feed),
) -> dict:
    result: dict = {
        "status": "healthy",
        "database": "connected",
        "redis": "not_configured",
        "live_subscriptions": feed.subscription_count,
    }

    try:
        async with session_factory() as session:
            await session.execute(text("SELECT 1"))
    except Exception as exc:
        logger.error("health_db_failure", error=str(exc))
        result["database"] = f"error: {exc}"
        result["status"] = "degraded"

    if redis is not None:
        try:
            await redis.ping()
            result["redis"] = "connected"
        except Exception as exc:
            logger.error("health_redis_failure", error=str(exc))
            result["redis"] = f"error: {exc}"
            result["status"] = "degraded"

    return result
