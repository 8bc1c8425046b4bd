"""
DevMatch — Matches API

The caller's match list (with peer profile, last message and received
count) and single-match lookup.
"""

from __future__ import annotations

import uuid

import structlog
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_user_id, get_matching_service
from app.database import get_db
from app.schemas.match import MatchDetail, MatchSummary
from app.services.matching_service import MatchingService

logger = structlog.get_logger("devmatch.api.matching")

router = APIRouter()


# ──────────────────────────────────────────────────────────────────────────────
# GET / — List the caller's matches
# ──────────────────────────────────────────────────────────────────────────────

@router.get(
    "",
    response_model=list[MatchSummary],
    summary="List the caller's matches, most recent first",
)
async def list_matches(
    user_id: uuid.UUID = Depends(get_current_user_id),
    service: MatchingService = Depends(get_matching_service),
    db: AsyncSession = Depends(get_db),
) -> list[MatchSummary]:
    return await service.list_matches(user_id, db)


# ──────────────────────────────────────────────────────────────────────────────
# GET /{match_id} — Match details
# ──────────────────────────────────────────────────────────────────────────────

@router.get(
    "/{match_id}",
    response_model=MatchDetail,
    summary="Get a match the caller participates in, with both profiles",
)
async def get_match(
    match_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    service: MatchingService = Depends(get_matching_service),
    db: AsyncSession = Depends(get_db),
) -> MatchDetail:
    return await service.get_match_detail(match_id, user_id, db)
