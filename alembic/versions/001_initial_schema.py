"""Initial schema — profiles, swipes, matches and messages.

Revision ID: 001_initial
Revises:
Create Date: 2025-01-01 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # ── 1. profiles ─────────────────────────────────────────────────
    op.create_table(
        "profiles",
        sa.Column(
            "id",
            postgresql.UUID(as_uuid=True),
            primary_key=True,
            comment="Equals the authenticated identity",
        ),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("bio", sa.Text, server_default="", nullable=False),
        sa.Column(
            "skills",
            postgresql.JSONB,
            server_default=sa.text("'[]'::jsonb"),
            nullable=False,
            comment="Array of skill strings",
        ),
        sa.Column(
            "interests",
            postgresql.JSONB,
            server_default=sa.text("'[]'::jsonb"),
            nullable=False,
            comment="Array of interest strings",
        ),
        sa.Column("github_url", sa.String, server_default="", nullable=False),
        sa.Column("portfolio_url", sa.String, server_default="", nullable=False),
        sa.Column("photo_url", sa.String, server_default="", nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_profiles_created_at", "profiles", ["created_at"])

    # ── 2. swipes ───────────────────────────────────────────────────
    op.create_table(
        "swipes",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "user_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("profiles.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "target_user_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("profiles.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("is_like", sa.Boolean, server_default="false", nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.UniqueConstraint("user_id", "target_user_id", name="uq_swipe_pair"),
        sa.CheckConstraint("user_id <> target_user_id", name="ck_swipe_not_self"),
    )
    op.create_index("ix_swipes_user_id", "swipes", ["user_id"])
    op.create_index("idx_swipes_target_user_id", "swipes", ["target_user_id"])

    # ── 3. matches ──────────────────────────────────────────────────
    op.create_table(
        "matches",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "user1_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("profiles.id", ondelete="CASCADE"),
            nullable=False,
            comment="Lower identity of the pair",
        ),
        sa.Column(
            "user2_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("profiles.id", ondelete="CASCADE"),
            nullable=False,
            comment="Higher identity of the pair",
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.UniqueConstraint("user1_id", "user2_id", name="uq_match_pair"),
        sa.CheckConstraint("user1_id < user2_id", name="ck_match_canonical_order"),
    )
    op.create_index("idx_matches_user2_id", "matches", ["user2_id"])
    op.create_index("ix_matches_created_at", "matches", ["created_at"])

    # ── 4. messages ─────────────────────────────────────────────────
    op.create_table(
        "messages",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "match_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("matches.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "sender_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("profiles.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("content", sa.Text, nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.CheckConstraint(
            "length(content) >= 1 AND length(content) <= 500",
            name="ck_message_content_length",
        ),
    )
    op.create_index("ix_messages_match_id", "messages", ["match_id"])
    op.create_index("ix_messages_sender_id", "messages", ["sender_id"])
    op.create_index(
        "idx_messages_match_created", "messages", ["match_id", "created_at"]
    )


def downgrade() -> None:
    # Drop in reverse order (children / dependents first).
    op.drop_index("idx_messages_match_created", table_name="messages")
    op.drop_index("ix_messages_sender_id", table_name="messages")
    op.drop_index("ix_messages_match_id", table_name="messages")
    op.drop_table("messages")

    op.drop_index("ix_matches_created_at", table_name="matches")
    op.drop_index("idx_matches_user2_id", table_name="matches")
    op.drop_table("matches")

    op.drop_index("idx_swipes_target_user_id", table_name="swipes")
    op.drop_index("ix_swipes_user_id", table_name="swipes")
    op.drop_table("swipes")

    op.drop_index("ix_profiles_created_at", table_name="profiles")
    op.drop_table("profiles")
