"""
DevMatch — Swipe and Match models.

``Swipe`` is the append-only like/pass ledger; ``Match`` is the deduplicated
set of mutual-like pairs keyed on the canonical ``(user1_id, user2_id)``
ordering produced by :func:`app.utils.identity.canonical_pair`.
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.models.profile import _utcnow


class Swipe(Base):
    __tablename__ = "swipes"
    __table_args__ = (
        UniqueConstraint("user_id", "target_user_id", name="uq_swipe_pair"),
        CheckConstraint("user_id <> target_user_id", name="ck_swipe_not_self"),
        Index("idx_swipes_target_user_id", "target_user_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True
    )
    target_user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    is_like: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default="false", nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        verdict = "like" if self.is_like else "pass"
        return f"<Swipe {self.user_id} -> {self.target_user_id} {verdict}>"


class Match(Base):
    __tablename__ = "matches"
    __table_args__ = (
        UniqueConstraint("user1_id", "user2_id", name="uq_match_pair"),
        CheckConstraint("user1_id < user2_id", name="ck_match_canonical_order"),
        Index("idx_matches_user2_id", "user2_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user1_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False,
        comment="Lower identity of the pair",
    )
    user2_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False,
        comment="Higher identity of the pair",
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        server_default=func.now(),
        nullable=False,
        index=True,
    )

    @property
    def participants(self) -> tuple[uuid.UUID, uuid.UUID]:
        return (self.user1_id, self.user2_id)

    def __repr__(self) -> str:
        return f"<Match {self.user1_id} <-> {self.user2_id}>"
