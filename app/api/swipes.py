"""
DevMatch — Swipes API

Recording a like or pass.  A like that completes a mutual like returns the
match it produced.
"""

from __future__ import annotations

import uuid

import structlog
from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_user_id, get_swipe_service
from app.database import get_db
from app.schemas.match import SwipeCreate, SwipeResponse
from app.services.swipe_service import SwipeService

logger = structlog.get_logger("devmatch.api.swipes")

router = APIRouter()


@router.post(
    "",
    response_model=SwipeResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Record a swipe",
)
async def record_swipe(
    payload: SwipeCreate,
    user_id: uuid.UUID = Depends(get_current_user_id),
    service: SwipeService = Depends(get_swipe_service),
    db: AsyncSession = Depends(get_db),
) -> SwipeResponse:
    """Insert the caller's swipe on ``target_user_id``.

    Responds 409 when the caller already swiped on the target and 422 for a
    swipe on oneself.
    """
    result = await service.record_swipe(user_id, payload.target_user_id, payload.is_like, db)
    logger.info(
        "record_swipe_complete",
        user_id=str(user_id),
        is_mutual_match=result.is_mutual_match,
    )
    return SwipeResponse(
        swipe_id=result.swipe_id,
        is_like=result.is_like,
        is_mutual_match=result.is_mutual_match,
        is_new_match=result.is_new_match,
        match_id=result.match_id,
    )
