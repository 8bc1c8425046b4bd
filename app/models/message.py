"""
DevMatch — Chat message model.
"""

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.models.profile import _utcnow


class Message(Base):
    __tablename__ = "messages"
    __table_args__ = (
        CheckConstraint(
            "length(content) >= 1 AND length(content) <= 500",
            name="ck_message_content_length",
        ),
        Index("idx_messages_match_created", "match_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    match_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("matches.id", ondelete="CASCADE"), nullable=False, index=True
    )
    sender_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False
    )

    def to_row(self) -> dict[str, Any]:
        """Full field set as delivered to change-feed subscribers."""
        return {
            "id": self.id,
            "match_id": self.match_id,
            "sender_id": self.sender_id,
            "content": self.content,
            "created_at": self.created_at,
        }

    def __repr__(self) -> str:
        return f"<Message {self.id} match={self.match_id} sender={self.sender_id}>"
