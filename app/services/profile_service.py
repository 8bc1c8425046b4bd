"""
DevMatch — Profile lifecycle, discovery feed and avatar upload.

Each authenticated identity owns exactly one profile, created once at
onboarding and only ever changed by its owner.  Discovery returns other
users' profiles the caller has not swiped on yet, newest first.
"""

from __future__ import annotations

import asyncio
import uuid

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.errors import (
    NotFoundError,
    ProfileExistsError,
    ProfileValidationError,
    RateLimitedError,
)
from app.models.profile import Profile
from app.schemas.profile import ProfileCreate, ProfileUpdate
from app.services.rate_limiter import RATE_LIMITS, RateLimiter
from app.services.swipe_service import swiped_targets_query
from app.utils import storage
from app.utils.error_tracking import capture_exception
from app.utils.identity import IdentityLike, as_identity
from app.utils.images import CONTENT_TYPES, optimize_image

logger = structlog.get_logger("devmatch.profile_service")


class ProfileService:
    """Owner-scoped profile operations."""

    def __init__(self, rate_limiter: RateLimiter) -> None:
        self.rate_limiter = rate_limiter

    async def _throttle(self, key: str, budget_name: str) -> None:
        decision = await self.rate_limiter.check(key, RATE_LIMITS[budget_name])
        if not decision.allowed:
            logger.warning("profile_rate_limited", key=key, retry_after=decision.retry_after)
            raise RateLimitedError(key, decision.retry_after or 1)

    async def create_profile(
        self,
        user_id: IdentityLike,
        payload: ProfileCreate,
        db_session: AsyncSession,
    ) -> Profile:
        owner = as_identity(user_id)
        log = logger.bind(user_id=str(owner))

        if await db_session.get(Profile, owner) is not None:
            log.info("create_profile_duplicate")
            raise ProfileExistsError()

        profile = Profile(id=owner, **payload.model_dump())
        try:
            async with db_session.begin_nested():
                db_session.add(profile)
                await db_session.flush()
        except IntegrityError:
            log.info("create_profile_duplicate", reason="race")
            raise ProfileExistsError()

        log.info("profile_created", skills=len(profile.skills), interests=len(profile.interests))
        return profile

    async def get_profile(self, user_id: IdentityLike, db_session: AsyncSession) -> Profile:
        profile = await db_session.get(Profile, as_identity(user_id))
        if profile is None:
            raise NotFoundError(f"Profile {user_id} not found.")
        return profile

    async def update_profile(
        self,
        user_id: IdentityLike,
        payload: ProfileUpdate,
        db_session: AsyncSession,
    ) -> Profile:
        """Apply the fields present in ``payload`` to the owner's profile."""
        owner = as_identity(user_id)
        await self._throttle(f"profile_update:{owner}", "PROFILE_UPDATE")

        profile = await self.get_profile(owner, db_session)
        update_data = payload.model_dump(exclude_unset=True, exclude_none=True)
        if not update_data:
            raise ProfileValidationError("No profile fields to update.")
        for field, value in update_data.items():
            setattr(profile, field, value)

        await db_session.flush()
        logger.info("profile_updated", user_id=str(owner), updated_fields=list(update_data))
        return profile

    async def discover(
        self,
        user_id: IdentityLike,
        db_session: AsyncSession,
        limit: int | None = None,
    ) -> list[Profile]:
        """Profiles other than the caller's that the caller has not swiped on."""
        me = as_identity(user_id)
        limit = limit or get_settings().DISCOVER_PAGE_SIZE

        swiped = swiped_targets_query(me)
        stmt = (
            select(Profile)
            .where(Profile.id != me, Profile.id.not_in(swiped))
            .order_by(Profile.created_at.desc())
            .limit(limit)
        )
        profiles = list((await db_session.execute(stmt)).scalars().all())
        logger.info("discover_feed", user_id=str(me), count=len(profiles), limit=limit)
        return profiles

    async def upload_photo(
        self,
        user_id: IdentityLike,
        data: bytes,
        db_session: AsyncSession,
    ) -> str | None:
        """Resize, upload and attach an avatar.

        Returns the public URL, or ``None`` if any step failed; the stored
        ``photo_url`` only changes after a successful upload.
        """
        owner = as_identity(user_id)
        log = logger.bind(user_id=str(owner))
        await self._throttle(f"image_upload:{owner}", "IMAGE_UPLOAD")

        profile = await self.get_profile(owner, db_session)
        settings = get_settings()

        optimized = await asyncio.to_thread(
            optimize_image,
            data,
            max_width=settings.IMAGE_MAX_DIMENSION,
            max_height=settings.IMAGE_MAX_DIMENSION,
            quality=settings.IMAGE_QUALITY,
            fmt="JPEG",
        )
        if optimized is None:
            log.info("photo_rejected", reason="unreadable_image")
            return None

        path = f"avatars/{owner}/{uuid.uuid4().hex}.jpg"
        try:
            url = await asyncio.to_thread(
                storage.upload_file, path, optimized, CONTENT_TYPES["JPEG"]
            )
        except Exception as exc:
            log.warning("photo_upload_failed", error=str(exc))
            capture_exception(exc, operation="upload_photo", user_id=owner)
            return None

        profile.photo_url = url
        await db_session.flush()
        log.info("photo_uploaded", path=path, bytes=len(optimized))
        return url
