from pydantic import BaseModel
from uuid import UUID
from datetime import datetime
from typing import Optional

class ProfileSummary(BaseModel):
    id: UUID
    name: str
    bio: str = ""
    skills: list[str] = []
    photo_url: str = ""

class LastMessageSummary(BaseModel):
    content: str
    created_at: datetime
    sender_id: UUID

class MatchSummary(BaseModel):
    match_id: UUID
    user1_id: UUID
    user2_id: UUID
    created_at: datetime
    profile: ProfileSummary
    last_message: Optional[LastMessageSummary] = None
    unread_count: int = 0

class MatchDetail(BaseModel):
    id: UUID
    user1_id: UUID
    user2_id: UUID
    created_at: datetime
    user1: ProfileSummary
    user2: ProfileSummary

class SwipeCreate(BaseModel):
    target_user_id: UUID
    is_like: bool

class SwipeResponse(BaseModel):
    swipe_id: UUID
    is_like: bool
    is_mutual_match: bool
    is_new_match: bool = False
    match_id: Optional[UUID] = None
