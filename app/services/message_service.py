"""
DevMatch — Chat messages: validation, access policy, insert and publish.

A message may only be written by one of its match's two participants and
only read by them.  Content is validated before any database work.  After
the insert commits, the full row is published on the change feed for live
subscribers of that match.
"""

from __future__ import annotations

from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.errors import AccessDeniedError, MessageValidationError, RateLimitedError
from app.models.message import Message
from app.services.change_feed import ChangeFeed
from app.services.matching_service import MatchingService
from app.services.rate_limiter import RATE_LIMITS, RateLimiter
from app.utils.identity import IdentityLike, as_identity

logger = structlog.get_logger("devmatch.message_service")

MESSAGES_TABLE = "messages"


def validate_content(content: str, max_length: int | None = None) -> str:
    """Return the trimmed content or raise ``MessageValidationError``."""
    if max_length is None:
        max_length = get_settings().MESSAGE_MAX_LENGTH
    cleaned = (content or "").strip()
    if not cleaned:
        raise MessageValidationError("Message cannot be empty")
    if len(cleaned) > max_length:
        raise MessageValidationError("Message too long")
    return cleaned


class MessageService:
    """Send and list messages for a match."""

    def __init__(
        self,
        feed: ChangeFeed,
        rate_limiter: RateLimiter,
        matching_service: MatchingService | None = None,
    ) -> None:
        self.feed = feed
        self.rate_limiter = rate_limiter
        self.matching_service = matching_service or MatchingService()

    async def send_message(
        self,
        match_id: IdentityLike,
        sender_id: IdentityLike,
        content: str,
        db_session: AsyncSession,
        throttle: bool = True,
    ) -> Message:
        """Validate, throttle, authorise, insert, commit and publish.

        The session is committed here so that subscribers are only told
        about rows that exist.  Callers that already spent the sender's
        message budget (a live chat session) pass ``throttle=False``.
        """
        sender = as_identity(sender_id)
        log = logger.bind(match_id=str(match_id), sender_id=str(sender))

        cleaned = validate_content(content)

        if throttle:
            key = f"message:{sender}"
            decision = await self.rate_limiter.check(key, RATE_LIMITS["MESSAGE"])
            if not decision.allowed:
                log.warning("message_rate_limited", retry_after=decision.retry_after)
                raise RateLimitedError(key, decision.retry_after or 1)

        try:
            match = await self.matching_service.get_match(match_id, sender, db_session)
        except AccessDeniedError as exc:
            log.warning("message_access_denied", reason=exc.message)
            raise

        message = Message(match_id=match.id, sender_id=sender, content=cleaned)
        db_session.add(message)
        await db_session.commit()

        log.info("message_sent", message_id=str(message.id), length=len(cleaned))
        self.feed.publish(MESSAGES_TABLE, message.to_row())
        return message

    async def list_messages(
        self,
        match_id: IdentityLike,
        viewer_id: IdentityLike,
        db_session: AsyncSession,
    ) -> list[dict[str, Any]]:
        """All messages of the match, oldest first (id breaks timestamp ties)."""
        match = await self.matching_service.get_match(match_id, viewer_id, db_session)
        stmt = (
            select(Message)
            .where(Message.match_id == match.id)
            .order_by(Message.created_at.asc(), Message.id.asc())
        )
        messages = (await db_session.execute(stmt)).scalars().all()
        return [m.to_row() for m in messages]
