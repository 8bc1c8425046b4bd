"""
DevMatch — Shared FastAPI dependencies.

The caller's identity arrives from the upstream auth gateway in the
``X-User-Id`` header.  Long-lived collaborators (change feed, rate limiter)
are process singletons; tests replace them through
``app.dependency_overrides``.
"""

from __future__ import annotations

import uuid

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import get_settings
from app.database import async_session_factory
from app.services.change_feed import ChangeFeed
from app.services.matching_service import MatchingService
from app.services.message_service import MessageService
from app.services.profile_service import ProfileService
from app.services.rate_limiter import InMemoryRateLimiter, RateLimiter
from app.services.swipe_service import SwipeService

USER_HEADER = "X-User-Id"

# ── Singletons ───────────────────────────────────────────────────────────────

_change_feed: ChangeFeed | None = None
_rate_limiter: RateLimiter | None = None
_redis = None


def get_change_feed() -> ChangeFeed:
    global _change_feed
    if _change_feed is None:
        _change_feed = ChangeFeed(queue_size=get_settings().CHANGE_FEED_QUEUE_SIZE)
    return _change_feed


def get_rate_limiter() -> RateLimiter:
    global _rate_limiter
    if _rate_limiter is None:
        _rate_limiter = InMemoryRateLimiter()
    return _rate_limiter


def configure_rate_limiter(limiter: RateLimiter) -> None:
    """Install the limiter chosen at startup (memory or Redis)."""
    global _rate_limiter
    _rate_limiter = limiter


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    return async_session_factory


def get_redis():
    """Shared Redis client, or ``None`` when REDIS_URL is not configured."""
    return _redis


def set_redis(client) -> None:
    global _redis
    _redis = client


# ── Identity ─────────────────────────────────────────────────────────────────

def parse_user_id(raw: str | None) -> uuid.UUID:
    if not raw:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Missing {USER_HEADER} header.",
        )
    try:
        return uuid.UUID(raw)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid {USER_HEADER} header.",
        )


def get_current_user_id(
    x_user_id: str | None = Header(default=None, alias=USER_HEADER),
) -> uuid.UUID:
    return parse_user_id(x_user_id)


# ── Services ─────────────────────────────────────────────────────────────────

def get_matching_service() -> MatchingService:
    return MatchingService()


def get_swipe_service(
    rate_limiter: RateLimiter = Depends(get_rate_limiter),
    matching_service: MatchingService = Depends(get_matching_service),
) -> SwipeService:
    return SwipeService(rate_limiter, matching_service)


def get_message_service(
    feed: ChangeFeed = Depends(get_change_feed),
    rate_limiter: RateLimiter = Depends(get_rate_limiter),
    matching_service: MatchingService = Depends(get_matching_service),
) -> MessageService:
    return MessageService(feed, rate_limiter, matching_service)


def get_profile_service(
    rate_limiter: RateLimiter = Depends(get_rate_limiter),
) -> ProfileService:
    return ProfileService(rate_limiter)
