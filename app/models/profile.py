"""
DevMatch — Profile model (one per authenticated identity).
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, DateTime, String, Text, Uuid, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# JSONB on PostgreSQL, plain JSON everywhere else (SQLite in tests).
StringList = JSON().with_variant(JSONB(), "postgresql")


class Profile(Base):
    __tablename__ = "profiles"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, comment="Equals the authenticated identity"
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    bio: Mapped[str] = mapped_column(Text, default="", server_default="", nullable=False)
    skills: Mapped[list] = mapped_column(
        StringList, default=list, nullable=False, comment="Array of skill strings"
    )
    interests: Mapped[list] = mapped_column(
        StringList, default=list, nullable=False, comment="Array of interest strings"
    )
    github_url: Mapped[str] = mapped_column(
        String, default="", server_default="", nullable=False
    )
    portfolio_url: Mapped[str] = mapped_column(
        String, default="", server_default="", nullable=False
    )
    photo_url: Mapped[str] = mapped_column(
        String, default="", server_default="", nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        server_default=func.now(),
        nullable=False,
        index=True,
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), onupdate=_utcnow, nullable=True
    )

    def __repr__(self) -> str:
        return f"<Profile {self.name!r} id={self.id}>"
