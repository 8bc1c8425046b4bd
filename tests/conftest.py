"""Shared pytest fixtures for DevMatch tests.

Tests run against an in-memory SQLite database through aiosqlite.  One
connection is shared (``StaticPool``) so every session sees the same data;
tests must finish one session's transaction before starting another.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import uuid
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import app.models  # noqa: F401  (registers every table on Base.metadata)
from app.database import Base
from app.models.match import Match, Swipe
from app.models.profile import Profile
from app.services.change_feed import ChangeFeed
from app.services.rate_limiter import InMemoryRateLimiter

USER_X = uuid.UUID("11111111-1111-1111-1111-111111111111")
USER_Y = uuid.UUID("22222222-2222-2222-2222-222222222222")
USER_Z = uuid.UUID("33333333-3333-3333-3333-333333333333")

BASE_TIME = datetime(2025, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


async def _sqlite_engine(foreign_keys: bool = False):
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool)

    # pysqlite's own transaction handling breaks SAVEPOINT; let SQLAlchemy
    # emit BEGIN itself.
    @event.listens_for(engine.sync_engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        if foreign_keys:
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    return engine


@pytest_asyncio.fixture
async def engine():
    engine = await _sqlite_engine()
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def fk_session_factory():
    """Sessions on a separate database that enforces foreign keys."""
    engine = await _sqlite_engine(foreign_keys=True)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def statement_log(engine):
    """Collect every SELECT the engine sends to the database."""
    statements: list[str] = []

    def _record(conn, cursor, statement, parameters, context, executemany):
        if statement.lstrip().upper().startswith("SELECT"):
            statements.append(statement)

    event.listen(engine.sync_engine, "before_cursor_execute", _record)
    yield statements
    event.remove(engine.sync_engine, "before_cursor_execute", _record)


@pytest.fixture
def feed():
    return ChangeFeed(queue_size=16)


@pytest.fixture
def rate_limiter():
    return InMemoryRateLimiter()


def make_profile(user_id, name, minutes=0, **overrides) -> Profile:
    fields = {
        "id": user_id,
        "name": name,
        "bio": f"{name} builds things",
        "skills": ["python"],
        "interests": ["open source"],
        "created_at": BASE_TIME + timedelta(minutes=minutes),
    }
    fields.update(overrides)
    return Profile(**fields)


@pytest_asyncio.fixture
async def profiles(db_session):
    """Xavier, Yara and Zed, committed."""
    rows = [
        make_profile(USER_X, "Xavier", minutes=0),
        make_profile(USER_Y, "Yara", minutes=1),
        make_profile(USER_Z, "Zed", minutes=2),
    ]
    db_session.add_all(rows)
    await db_session.commit()
    return {p.id: p for p in rows}


@pytest_asyncio.fixture
async def match_xy(db_session, profiles):
    """A committed X/Y match backed by two likes."""
    db_session.add_all([
        Swipe(user_id=USER_X, target_user_id=USER_Y, is_like=True),
        Swipe(user_id=USER_Y, target_user_id=USER_X, is_like=True),
    ])
    match = Match(user1_id=USER_X, user2_id=USER_Y, created_at=BASE_TIME)
    db_session.add(match)
    await db_session.commit()
    return match
