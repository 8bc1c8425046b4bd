"""
DevMatch — Main API Router

Aggregates all sub-routers under a single prefix so that ``app.main``
can mount the entire API surface with one ``include_router`` call.
"""

from fastapi import APIRouter

from app.api import chat, matching, profiles, swipes

router = APIRouter()

router.include_router(profiles.router, prefix="/profiles", tags=["Profiles"])
router.include_router(swipes.router, prefix="/swipes", tags=["Swipes"])
router.include_router(matching.router, prefix="/matches", tags=["Matches"])
router.include_router(chat.router, prefix="/chat", tags=["Chat"])
