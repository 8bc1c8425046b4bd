"""
DevMatch — FastAPI application.

Startup wires the long-lived collaborators (error tracking, database pool,
optional Redis behind the rate limiter); shutdown drains in-flight requests,
closes every live chat subscription and releases the pools.  Domain errors
raised by the services are turned into JSON responses here.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from app.api import deps, health
from app.api.router import router as api_router
from app.config import get_settings
from app.database import engine
from app.errors import DevMatchError, RateLimitedError
from app.logging_config import configure_logging
from app.middleware import RequestContextMiddleware, TimeoutMiddleware, active_requests
from app.services.rate_limiter import build_rate_limiter
from app.utils.error_tracking import capture_exception, init_error_tracking

settings = get_settings()
configure_logging(settings.LOG_LEVEL)

logger = structlog.get_logger("devmatch")

DRAIN_TIMEOUT_SECONDS = 15


async def _open_redis():
    if not settings.REDIS_URL:
        logger.info("redis_skip", reason="REDIS_URL not configured")
        return None

    import redis.asyncio as aioredis

    client = aioredis.from_url(
        settings.REDIS_URL,
        decode_responses=True,
        socket_connect_timeout=5,
    )
    try:
        await client.ping()
    except Exception:
        # The in-process limiter still works; health/deep reports the outage.
        logger.exception("redis_connect_failed")
        await client.aclose()
        return None
    logger.info("redis_connected")
    return client


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    logger.info("startup_begin", environment=settings.ENVIRONMENT, log_level=settings.LOG_LEVEL)

    init_error_tracking(settings)

    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))
    logger.info("database_pool_initialised", backend=engine.url.get_backend_name())

    redis = await _open_redis()
    deps.set_redis(redis)
    deps.configure_rate_limiter(
        build_rate_limiter(settings.REDIS_URL if redis is not None else None)
    )

    logger.info("startup_complete")
    yield
    logger.info("shutdown_begin", in_flight=active_requests.count)

    await active_requests.drain(DRAIN_TIMEOUT_SECONDS)
    feed = deps.get_change_feed()
    open_subscriptions = feed.subscription_count
    feed.close_all()
    logger.info("chat_subscriptions_closed", count=open_subscriptions)

    if redis is not None:
        await redis.aclose()
        deps.set_redis(None)
        logger.info("redis_closed")

    await engine.dispose()
    logger.info("shutdown_complete")


app = FastAPI(
    title="DevMatch",
    description="Developer matching: profiles, swipes, mutual matches and chat",
    version="1.0.0",
    lifespan=lifespan,
    docs_url=None if settings.is_production else "/docs",
    redoc_url=None if settings.is_production else "/redoc",
)

# Last added runs first: CORS, then the timeout, then request context.
app.add_middleware(RequestContextMiddleware)
app.add_middleware(TimeoutMiddleware, timeout_seconds=settings.REQUEST_TIMEOUT_SECONDS)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(DevMatchError)
async def devmatch_error_handler(request: Request, exc: DevMatchError) -> JSONResponse:
    """Map a domain error to its status code; report access-policy failures."""
    content: dict = {"detail": exc.detail}
    headers = None
    if isinstance(exc, RateLimitedError):
        content["retry_after"] = exc.retry_after
        headers = {"Retry-After": str(exc.retry_after)}

    log = logger.bind(path=request.url.path, error=type(exc).__name__, status=exc.status_code)
    if exc.reportable:
        log.warning("request_rejected", reason=exc.message)
        capture_exception(exc, operation=f"{request.method} {request.url.path}")
    else:
        log.info("request_rejected")
    return JSONResponse(status_code=exc.status_code, content=content, headers=headers)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled_exception", path=request.url.path)
    capture_exception(exc, operation=f"{request.method} {request.url.path}")
    detail = "Internal server error" if settings.is_production else str(exc)
    return JSONResponse(status_code=500, content={"detail": detail})


app.include_router(health.router, tags=["health"])
app.include_router(api_router, prefix="/api/v1")
