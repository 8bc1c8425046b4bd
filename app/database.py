"""
DevMatch — Async engine, session factory and the request-scoped session.

PostgreSQL through ``asyncpg`` is the production store.  ``sqlite+aiosqlite``
URLs are accepted for local experiments and the test-suite; connection-pool
tuning only applies to server-backed dialects.
"""

from __future__ import annotations

from typing import AsyncGenerator

import structlog
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from app.config import get_settings

logger = structlog.get_logger("devmatch.database")


class Base(DeclarativeBase):
    """Declarative base for the ``profiles``, ``swipes``, ``matches`` and
    ``messages`` tables (see ``app.models``)."""


def _normalise_url(url: str) -> str:
    # Hosting providers hand out ``postgres://`` URLs; SQLAlchemy needs the
    # async driver named explicitly.
    for prefix in ("postgresql://", "postgres://"):
        if url.startswith(prefix):
            return "postgresql+asyncpg://" + url[len(prefix):]
    return url


def _create_engine() -> AsyncEngine:
    settings = get_settings()
    url = _normalise_url(settings.DATABASE_URL)

    options: dict = {"echo": settings.LOG_LEVEL.upper() == "DEBUG"}
    if not url.startswith("sqlite"):
        options.update(
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
            pool_timeout=30,
            pool_recycle=1800,
            pool_pre_ping=True,
        )

    engine = create_async_engine(url, **options)
    logger.info("database_engine_created", backend=engine.url.get_backend_name())
    return engine


engine = _create_engine()

async_session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: one session per request.

    Commits when the endpoint returns normally and rolls back when it
    raises, so a service only flushes and never decides the outcome of the
    request's transaction.  ``MessageService.send_message`` is the one
    exception: it commits early so subscribers only hear about stored rows.
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
