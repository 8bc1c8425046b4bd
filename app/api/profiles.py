"""
DevMatch — Profiles API

Endpoints for onboarding, profile edits, avatar upload and the discovery
feed.  Every write is scoped to the caller's own profile.
"""

from __future__ import annotations

import uuid

import structlog
from fastapi import APIRouter, Depends, File, Query, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_user_id, get_profile_service
from app.database import get_db
from app.models.profile import Profile
from app.schemas.profile import (
    PhotoUploadResponse,
    ProfileCreate,
    ProfileResponse,
    ProfileUpdate,
)
from app.services.profile_service import ProfileService

logger = structlog.get_logger("devmatch.api.profiles")

router = APIRouter()

MAX_UPLOAD_BYTES = 10 * 1024 * 1024


# ──────────────────────────────────────────────────────────────────────────────
# POST / — Create own profile (onboarding)
# ──────────────────────────────────────────────────────────────────────────────

@router.post(
    "",
    response_model=ProfileResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create the caller's profile",
)
async def create_profile(
    payload: ProfileCreate,
    user_id: uuid.UUID = Depends(get_current_user_id),
    service: ProfileService = Depends(get_profile_service),
    db: AsyncSession = Depends(get_db),
) -> Profile:
    return await service.create_profile(user_id, payload, db)


# ──────────────────────────────────────────────────────────────────────────────
# GET /discover — Candidate feed
# ──────────────────────────────────────────────────────────────────────────────

@router.get(
    "/discover",
    response_model=list[ProfileResponse],
    summary="Profiles the caller has not swiped on yet",
)
async def discover(
    limit: int = Query(20, ge=1, le=100, description="Max candidates to return"),
    user_id: uuid.UUID = Depends(get_current_user_id),
    service: ProfileService = Depends(get_profile_service),
    db: AsyncSession = Depends(get_db),
) -> list[Profile]:
    return await service.discover(user_id, db, limit=limit)


# ──────────────────────────────────────────────────────────────────────────────
# GET|PUT /me — Own profile
# ──────────────────────────────────────────────────────────────────────────────

@router.get("/me", response_model=ProfileResponse, summary="Get the caller's profile")
async def get_own_profile(
    user_id: uuid.UUID = Depends(get_current_user_id),
    service: ProfileService = Depends(get_profile_service),
    db: AsyncSession = Depends(get_db),
) -> Profile:
    return await service.get_profile(user_id, db)


@router.put("/me", response_model=ProfileResponse, summary="Update the caller's profile")
async def update_own_profile(
    payload: ProfileUpdate,
    user_id: uuid.UUID = Depends(get_current_user_id),
    service: ProfileService = Depends(get_profile_service),
    db: AsyncSession = Depends(get_db),
) -> Profile:
    """Only fields present in the request body are applied."""
    return await service.update_profile(user_id, payload, db)


# ──────────────────────────────────────────────────────────────────────────────
# POST /me/photo — Avatar upload
# ──────────────────────────────────────────────────────────────────────────────

@router.post(
    "/me/photo",
    response_model=PhotoUploadResponse,
    summary="Upload and attach an avatar image",
)
async def upload_photo(
    file: UploadFile = File(..., description="Image file"),
    user_id: uuid.UUID = Depends(get_current_user_id),
    service: ProfileService = Depends(get_profile_service),
    db: AsyncSession = Depends(get_db),
) -> PhotoUploadResponse:
    """Resize to the configured bounding box, re-encode as JPEG and store.

    ``uploaded`` is false (and ``photo_url`` absent) when any step fails.
    """
    log = logger.bind(user_id=str(user_id), filename=file.filename)
    data = await file.read(MAX_UPLOAD_BYTES + 1)
    if len(data) > MAX_UPLOAD_BYTES:
        log.info("photo_too_large", bytes=len(data))
        return PhotoUploadResponse(photo_url=None, uploaded=False)

    url = await service.upload_photo(user_id, data, db)
    return PhotoUploadResponse(photo_url=url, uploaded=url is not None)


# ──────────────────────────────────────────────────────────────────────────────
# GET /{profile_id} — Any profile by id
# ──────────────────────────────────────────────────────────────────────────────

@router.get("/{profile_id}", response_model=ProfileResponse, summary="Get a profile by id")
async def get_profile(
    profile_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    service: ProfileService = Depends(get_profile_service),
    db: AsyncSession = Depends(get_db),
) -> Profile:
    return await service.get_profile(profile_id, db)
