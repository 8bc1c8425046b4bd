"""
DevMatch — Swipe ledger write path.

A swipe is inserted once per ordered ``(actor, target)`` pair and never
updated.  Match derivation runs right after the insert, in the same
transaction but inside its own savepoint: whatever goes wrong while deriving
the match is logged, reported and rolled back to the savepoint, and the swipe
itself still commits.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass

import structlog
from sqlalchemy import Select, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.errors import NotFoundError, RateLimitedError, SelfSwipeError, SwipeConflictError
from app.models.match import Swipe
from app.models.profile import Profile
from app.services.matching_service import MatchingService
from app.services.rate_limiter import RATE_LIMITS, RateLimiter
from app.utils.error_tracking import capture_exception
from app.utils.identity import IdentityLike, as_identity

logger = structlog.get_logger("devmatch.swipe_service")


def swiped_targets_query(actor: uuid.UUID) -> Select:
    """Targets the actor has already liked or passed, as a subquery-ready select."""
    return select(Swipe.target_user_id).where(Swipe.user_id == actor)


def is_duplicate_pair(exc: IntegrityError) -> bool:
    """Whether ``exc`` is the ``(user_id, target_user_id)`` uniqueness violation."""
    text = str(exc.orig)
    # PostgreSQL names the constraint; SQLite names the columns.
    return "uq_swipe_pair" in text or "swipes.user_id, swipes.target_user_id" in text


@dataclass(frozen=True)
class SwipeResult:
    swipe_id: uuid.UUID
    is_like: bool
    match_id: uuid.UUID | None = None
    is_new_match: bool = False

    @property
    def is_mutual_match(self) -> bool:
        return self.match_id is not None


class SwipeService:
    """Records swipes and runs match derivation on each insert."""

    def __init__(
        self,
        rate_limiter: RateLimiter,
        matching_service: MatchingService | None = None,
    ) -> None:
        self.rate_limiter = rate_limiter
        self.matching_service = matching_service or MatchingService()

    async def record_swipe(
        self,
        actor_id: IdentityLike,
        target_id: IdentityLike,
        is_like: bool,
        db_session: AsyncSession,
    ) -> SwipeResult:
        """Insert a swipe and derive a match if it completes a mutual like.

        Raises
        ------
        SelfSwipeError
            ``actor_id`` equals ``target_id``.
        RateLimitedError
            The actor's swipe budget is exhausted.
        NotFoundError
            The actor or the target has no profile.
        SwipeConflictError
            The actor already swiped on the target.
        """
        actor = as_identity(actor_id)
        target = as_identity(target_id)
        log = logger.bind(user_id=str(actor), target_user_id=str(target), is_like=is_like)

        if actor == target:
            log.info("swipe_rejected", reason="self_swipe")
            raise SelfSwipeError()

        key = f"swipe:{actor}"
        decision = await self.rate_limiter.check(key, RATE_LIMITS["SWIPE"])
        if not decision.allowed:
            log.warning("swipe_rate_limited", retry_after=decision.retry_after)
            raise RateLimitedError(key, decision.retry_after or 1)

        for who in (actor, target):
            if await db_session.get(Profile, who) is None:
                log.info("swipe_rejected", reason="missing_profile", missing=str(who))
                raise NotFoundError(f"Profile {who} not found.")

        swipe = Swipe(user_id=actor, target_user_id=target, is_like=is_like)
        try:
            async with db_session.begin_nested():
                db_session.add(swipe)
                await db_session.flush()
        except IntegrityError as exc:
            if not is_duplicate_pair(exc):
                raise
            log.info("swipe_rejected", reason="duplicate")
            raise SwipeConflictError() from exc

        log.info("swipe_recorded", swipe_id=str(swipe.id))

        match = None
        created = False
        try:
            async with db_session.begin_nested():
                match, created = await self.matching_service.derive_match(swipe, db_session)
        except Exception as exc:
            # The swipe must commit independently of derivation health.
            log.exception("match_derivation_failed", swipe_id=str(swipe.id))
            capture_exception(
                exc,
                operation="derive_match",
                swipe_id=swipe.id,
                user_id=actor,
                target_user_id=target,
            )
            match = None
            created = False

        return SwipeResult(
            swipe_id=swipe.id,
            is_like=is_like,
            match_id=match.id if match is not None else None,
            is_new_match=created,
        )

    async def swiped_target_ids(
        self,
        actor_id: IdentityLike,
        db_session: AsyncSession,
    ) -> set[uuid.UUID]:
        """Identities the actor has already liked or passed."""
        stmt = swiped_targets_query(as_identity(actor_id))
        return set((await db_session.execute(stmt)).scalars().all())
