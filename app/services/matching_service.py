"""
DevMatch — Mutual-match derivation and the match list aggregator.

Derivation runs on the swipe write path, inside the same transaction as the
swipe insert:

  1. a pass never produces a match;
  2. a like produces a match only when the reverse like already exists;
  3. the match row is keyed on the canonical ``(low, high)`` pair and its
     insertion is idempotent: a duplicate-key violation caused by a
     concurrent derivation for the same pair is a benign race and resolves
     to the row that won.

On PostgreSQL the pair is additionally serialised with a transaction-scoped
advisory lock so two near-simultaneous reverse likes cannot both miss each
other and leave the pair unmatched.

The aggregator builds the match list view with two statements regardless of
how many matches the user has: matches joined with both participant
profiles, then every message of those matches.  A single match is read with
the same join.
"""

from __future__ import annotations

import hashlib
import uuid
from typing import Any

import structlog
from sqlalchemy import Select, and_, or_, select, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from app.errors import AccessDeniedError, NotFoundError
from app.models.match import Match, Swipe
from app.models.message import Message
from app.models.profile import Profile
from app.schemas.match import LastMessageSummary, MatchDetail, MatchSummary, ProfileSummary
from app.utils.identity import IdentityLike, as_identity, canonical_pair, other_participant

logger = structlog.get_logger("devmatch.matching_service")


def _pair_lock_key(low: uuid.UUID, high: uuid.UUID) -> int:
    digest = hashlib.blake2b(low.bytes + high.bytes, digest_size=8).digest()
    return int.from_bytes(digest, "big", signed=True)


def _with_profiles() -> Select:
    """Matches outer-joined with both participant profiles: ``(match, p1, p2)`` rows."""
    profile1 = aliased(Profile, name="profile1")
    profile2 = aliased(Profile, name="profile2")
    return (
        select(Match, profile1, profile2)
        .outerjoin(profile1, profile1.id == Match.user1_id)
        .outerjoin(profile2, profile2.id == Match.user2_id)
    )


class MatchingService:
    """Match Store operations: derivation, reads and aggregation."""

    # ── Derivation ───────────────────────────────────────────────────────

    async def derive_match(
        self,
        swipe: Swipe,
        db_session: AsyncSession,
    ) -> tuple[Match | None, bool]:
        """Materialise a Match if ``swipe`` completes a mutual like.

        Parameters
        ----------
        swipe:
            The swipe that was just inserted (already flushed).
        db_session:
            The session carrying the swipe's transaction.

        Returns
        -------
        tuple[Match | None, bool]
            The pair's match row (new or pre-existing) and whether this call
            created it.  ``(None, False)`` when the swipe is a pass or the
            like is one-sided.
        """
        if not swipe.is_like:
            return None, False

        low, high = canonical_pair(swipe.user_id, swipe.target_user_id)
        await self._lock_pair(low, high, db_session)

        reverse_stmt = select(Swipe.id).where(
            Swipe.user_id == swipe.target_user_id,
            Swipe.target_user_id == swipe.user_id,
            Swipe.is_like.is_(True),
        )
        reverse = (await db_session.execute(reverse_stmt)).scalar_one_or_none()
        if reverse is None:
            logger.debug(
                "mutual_like_absent",
                user_id=str(swipe.user_id),
                target_user_id=str(swipe.target_user_id),
            )
            return None, False

        match, created = await self.insert_match_idempotent(low, high, db_session)
        if created:
            logger.info(
                "match_created",
                match_id=str(match.id),
                user1_id=str(low),
                user2_id=str(high),
            )
        return match, created

    async def insert_match_idempotent(
        self,
        low: uuid.UUID,
        high: uuid.UUID,
        db_session: AsyncSession,
    ) -> tuple[Match, bool]:
        """Insert the canonical pair unless it exists.  Returns ``(match, created)``."""
        existing = await self.find_match(low, high, db_session)
        if existing is not None:
            return existing, False

        try:
            async with db_session.begin_nested():
                match = Match(user1_id=low, user2_id=high)
                db_session.add(match)
                await db_session.flush()
        except IntegrityError:
            # Another derivation for the same pair committed first.
            logger.info("match_insert_race_resolved", user1_id=str(low), user2_id=str(high))
            winner = await self.find_match(low, high, db_session)
            if winner is None:
                raise
            return winner, False

        return match, True

    async def find_match(
        self,
        low: uuid.UUID,
        high: uuid.UUID,
        db_session: AsyncSession,
    ) -> Match | None:
        stmt = select(Match).where(Match.user1_id == low, Match.user2_id == high)
        return (await db_session.execute(stmt)).scalar_one_or_none()

    async def _lock_pair(
        self,
        low: uuid.UUID,
        high: uuid.UUID,
        db_session: AsyncSession,
    ) -> None:
        if db_session.get_bind().dialect.name != "postgresql":
            return
        await db_session.execute(
            text("SELECT pg_advisory_xact_lock(:key)"),
            {"key": _pair_lock_key(low, high)},
        )

    # ── Reads ────────────────────────────────────────────────────────────

    async def get_match(
        self,
        match_id: IdentityLike,
        viewer_id: IdentityLike,
        db_session: AsyncSession,
    ) -> Match:
        """Return a match the viewer participates in.

        Raises ``NotFoundError`` for unknown ids and ``AccessDeniedError``
        when the viewer is not one of the two participants.
        """
        match = await db_session.get(Match, as_identity(match_id))
        if match is None:
            raise NotFoundError(f"Match {match_id} not found.")
        if not self.is_participant(match, viewer_id):
            raise AccessDeniedError(f"{viewer_id} is not a participant of match {match_id}")
        return match

    async def get_match_detail(
        self,
        match_id: IdentityLike,
        viewer_id: IdentityLike,
        db_session: AsyncSession,
    ) -> MatchDetail:
        """A match the viewer participates in, with both participant summaries.

        One statement; raises like ``get_match``.
        """
        stmt = _with_profiles().where(Match.id == as_identity(match_id))
        row = (await db_session.execute(stmt)).one_or_none()
        if row is None:
            raise NotFoundError(f"Match {match_id} not found.")
        match, p1, p2 = row
        if not self.is_participant(match, viewer_id):
            raise AccessDeniedError(f"{viewer_id} is not a participant of match {match_id}")
        return MatchDetail(
            id=match.id,
            user1_id=match.user1_id,
            user2_id=match.user2_id,
            created_at=match.created_at,
            user1=self._profile_summary(match.user1_id, p1),
            user2=self._profile_summary(match.user2_id, p2),
        )

    @staticmethod
    def is_participant(match: Match, user_id: IdentityLike) -> bool:
        return as_identity(user_id) in match.participants

    # ── Match list aggregator ────────────────────────────────────────────

    async def list_matches(
        self,
        user_id: IdentityLike,
        db_session: AsyncSession,
    ) -> list[MatchSummary]:
        """Build the match list for ``user_id``, most recent match first.

        Uses at most two statements: matches outer-joined with both
        participant profiles, then all messages of those matches newest
        first.  ``unread_count`` is the total number of messages received
        from the peer; there is no persisted read marker.
        """
        me = as_identity(user_id)
        log = logger.bind(user_id=str(me))

        matches_stmt = (
            _with_profiles()
            .where(or_(Match.user1_id == me, Match.user2_id == me))
            .order_by(Match.created_at.desc(), Match.id.desc())
        )
        rows = (await db_session.execute(matches_stmt)).all()
        if not rows:
            log.info("list_matches_complete", count=0)
            return []

        match_ids = [row[0].id for row in rows]
        messages_stmt = (
            select(Message.match_id, Message.sender_id, Message.content, Message.created_at)
            .where(Message.match_id.in_(match_ids))
            .order_by(Message.created_at.desc(), Message.id.desc())
        )
        message_rows = (await db_session.execute(messages_stmt)).all()

        peer_by_match: dict[uuid.UUID, uuid.UUID] = {
            m.id: other_participant(m.participants, me) for m, _, _ in rows
        }
        latest: dict[uuid.UUID, Any] = {}
        received: dict[uuid.UUID, int] = {}
        for msg in message_rows:
            latest.setdefault(msg.match_id, msg)
            if msg.sender_id == peer_by_match[msg.match_id]:
                received[msg.match_id] = received.get(msg.match_id, 0) + 1

        items: list[MatchSummary] = []
        for match, p1, p2 in rows:
            peer_id = peer_by_match[match.id]
            peer_profile = p2 if match.user1_id == me else p1
            last = latest.get(match.id)
            items.append(
                MatchSummary(
                    match_id=match.id,
                    user1_id=match.user1_id,
                    user2_id=match.user2_id,
                    created_at=match.created_at,
                    profile=self._profile_summary(peer_id, peer_profile),
                    last_message=LastMessageSummary(
                        content=last.content,
                        created_at=last.created_at,
                        sender_id=last.sender_id,
                    ) if last is not None else None,
                    unread_count=received.get(match.id, 0),
                )
            )

        log.info("list_matches_complete", count=len(items), messages=len(message_rows))
        return items

    @staticmethod
    def _profile_summary(peer_id: uuid.UUID, profile: Profile | None) -> ProfileSummary:
        if profile is None:
            return ProfileSummary(id=peer_id, name="Unknown", bio="", skills=[], photo_url="")
        return ProfileSummary(
            id=profile.id,
            name=profile.name,
            bio=profile.bio or "",
            skills=list(profile.skills or []),
            photo_url=profile.photo_url or "",
        )

    # ── Reconciliation ───────────────────────────────────────────────────

    async def reconcile_missing_matches(
        self,
        db_session: AsyncSession,
        dry_run: bool = False,
    ) -> list[tuple[uuid.UUID, uuid.UUID]]:
        """Create matches for mutual-like pairs that have none.

        Derivation failures are suppressed on the write path, so a pair can
        be left without its match.  This sweep finds such pairs and inserts
        them through the same idempotent path.  Returns the repaired pairs
        (or, with ``dry_run``, the pairs that would be repaired).
        """
        forward = aliased(Swipe, name="forward")
        reverse = aliased(Swipe, name="reverse")
        stmt = (
            select(forward.user_id, forward.target_user_id)
            .join(
                reverse,
                and_(
                    reverse.user_id == forward.target_user_id,
                    reverse.target_user_id == forward.user_id,
                    reverse.is_like.is_(True),
                ),
            )
            .outerjoin(
                Match,
                and_(
                    Match.user1_id == forward.user_id,
                    Match.user2_id == forward.target_user_id,
                ),
            )
            .where(
                forward.is_like.is_(True),
                forward.user_id < forward.target_user_id,
                Match.id.is_(None),
            )
        )
        missing = [
            canonical_pair(row.user_id, row.target_user_id)
            for row in (await db_session.execute(stmt)).all()
        ]
        logger.info("reconcile_scan_complete", missing=len(missing), dry_run=dry_run)

        if dry_run:
            return missing

        repaired: list[tuple[uuid.UUID, uuid.UUID]] = []
        for low, high in missing:
            _, created = await self.insert_match_idempotent(low, high, db_session)
            if created:
                repaired.append((low, high))
                logger.info("reconcile_match_created", user1_id=str(low), user2_id=str(high))
        return repaired
