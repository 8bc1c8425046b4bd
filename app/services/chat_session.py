"""
DevMatch — Live chat session for one match.

A session reconciles two sources that race with each other: a full ordered
fetch of the match's messages and a live change-feed subscription.  Either
may deliver a row the other already delivered, so every inbound row is
deduplicated by id before it is placed in ``(created_at, id)`` order.

States::

    LOADING ──fetch ok──▶ ACTIVE ──send──▶ SENDING ──done──▶ ACTIVE
       │
       └─fetch failed──▶ ERROR_TRANSIENT ──refresh ok──▶ ACTIVE

Once ACTIVE has been reached, later fetch failures are reported but the
session stays ACTIVE.  After ``close()`` nothing in the session changes and
no callback fires.
"""

from __future__ import annotations

import asyncio
import bisect
import enum
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Protocol

import structlog

from app.errors import DevMatchError, MessageValidationError
from app.services.change_feed import ChangeFeed, Subscription, match_filter
from app.services.message_service import MESSAGES_TABLE, validate_content
from app.services.rate_limiter import RATE_LIMITS, RateLimitBudget, RateLimiter
from app.utils.error_tracking import capture_exception
from app.utils.identity import IdentityLike, as_identity

logger = structlog.get_logger("devmatch.chat_session")

Row = dict[str, Any]


class ChatState(str, enum.Enum):
    LOADING = "loading"
    ACTIVE = "active"
    SENDING = "sending"
    ERROR_TRANSIENT = "error_transient"


class MessageBackend(Protocol):
    async def fetch_messages(self, match_id: uuid.UUID, viewer_id: uuid.UUID) -> list[Row]: ...

    async def insert_message(
        self, match_id: uuid.UUID, sender_id: uuid.UUID, content: str
    ) -> Row: ...


@dataclass(frozen=True)
class SendOutcome:
    ok: bool
    message: Row | None = None
    error: str | None = None
    retry_after: int | None = None


def _as_utc(value: Any) -> datetime:
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if not isinstance(value, datetime):
        return datetime.max.replace(tzinfo=timezone.utc)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _order_key(row: Row) -> tuple[datetime, str]:
    return (_as_utc(row.get("created_at")), str(row.get("id")))


class ChatSession:
    """Per-match message view plus the send/receive coordinator."""

    def __init__(
        self,
        match_id: IdentityLike,
        user_id: IdentityLike,
        backend: MessageBackend,
        feed: ChangeFeed,
        rate_limiter: RateLimiter,
        budget: RateLimitBudget = RATE_LIMITS["MESSAGE"],
        on_change: Callable[["ChatSession"], None] | None = None,
    ) -> None:
        self.match_id = as_identity(match_id)
        self.user_id = as_identity(user_id)
        self._backend = backend
        self._feed = feed
        self._rate_limiter = rate_limiter
        self._budget = budget
        self._on_change = on_change

        self.state = ChatState.LOADING
        self.draft = ""
        self.last_error: str | None = None
        self.closed = False

        self._messages: list[Row] = []
        self._keys: list[tuple[datetime, str]] = []
        self._known_ids: set[str] = set()
        self._subscription: Subscription | None = None
        self._pump_task: asyncio.Task | None = None
        self._has_been_active = False

        self._log = logger.bind(match_id=str(self.match_id), user_id=str(self.user_id))

    # ── Read side ────────────────────────────────────────────────────────

    @property
    def messages(self) -> tuple[Row, ...]:
        return tuple(self._messages)

    @property
    def message_ids(self) -> list[str]:
        return [str(m["id"]) for m in self._messages]

    # ── Lifecycle ────────────────────────────────────────────────────────

    async def open(self) -> "ChatSession":
        """Fetch the history, then start the live tail."""
        await self.refresh()
        if self.closed:
            return self
        self._subscription = self._feed.subscribe(MESSAGES_TABLE, match_filter(self.match_id))
        self._pump_task = asyncio.create_task(self._pump(self._subscription))
        self._log.info("chat_session_opened", messages=len(self._messages))
        return self

    async def refresh(self) -> bool:
        """Full fetch merged into the local sequence.  Returns success."""
        try:
            rows = await self._backend.fetch_messages(self.match_id, self.user_id)
        except Exception as exc:
            if self.closed:
                return False
            self.last_error = "Could not load messages."
            self._log.warning("chat_fetch_failed", error=str(exc))
            capture_exception(
                exc, operation="chat_fetch", match_id=self.match_id, user_id=self.user_id
            )
            if not self._has_been_active:
                self.state = ChatState.ERROR_TRANSIENT
            self._notify()
            return False

        if self.closed:
            return False
        for row in rows:
            self._insert(row)
        if self.state in (ChatState.LOADING, ChatState.ERROR_TRANSIENT):
            self.state = ChatState.ACTIVE
        self._has_been_active = True
        self.last_error = None
        self._notify()
        return True

    def close(self) -> None:
        """Release the subscription and stop all further updates."""
        if self.closed:
            return
        self.closed = True
        if self._subscription is not None:
            self._subscription.close()
        if self._pump_task is not None and not self._pump_task.done():
            self._pump_task.cancel()
        self._on_change = None
        self._log.info("chat_session_closed")

    async def __aenter__(self) -> "ChatSession":
        return await self.open()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ── Inbound ──────────────────────────────────────────────────────────

    def apply_event(self, row: Row) -> bool:
        """Place an inbound row unless its id is already known."""
        if self.closed:
            return False
        if str(row.get("match_id")) != str(self.match_id):
            return False
        added = self._insert(row)
        if added:
            self._notify()
        return added

    async def _pump(self, subscription: Subscription) -> None:
        async for row in subscription:
            if self.closed:
                break
            self.apply_event(row)

    def _insert(self, row: Row) -> bool:
        msg_id = str(row.get("id"))
        if msg_id in self._known_ids:
            return False
        key = _order_key(row)
        index = bisect.bisect_right(self._keys, key)
        self._keys.insert(index, key)
        self._messages.insert(index, dict(row))
        self._known_ids.add(msg_id)
        return True

    # ── Outbound ─────────────────────────────────────────────────────────

    async def send(self, content: str | None = None) -> SendOutcome:
        """Send ``content`` (or the current draft).

        Validation and rate-limit rejections leave the draft untouched.  A
        failed insert restores the draft so nothing the user typed is lost.
        """
        if self.closed:
            return SendOutcome(ok=False, error="Chat session is closed.")
        if self.state is ChatState.SENDING:
            return SendOutcome(ok=False, error="A message is already being sent.")

        if content is not None:
            self.draft = content
        original = self.draft

        try:
            cleaned = validate_content(original)
        except MessageValidationError as exc:
            self._log.info("chat_send_invalid", reason=exc.message)
            return SendOutcome(ok=False, error=exc.message)

        decision = await self._rate_limiter.check(f"message:{self.user_id}", self._budget)
        if not decision.allowed:
            self._log.info("chat_send_rate_limited", retry_after=decision.retry_after)
            return SendOutcome(
                ok=False,
                error="Too many messages. Please wait.",
                retry_after=decision.retry_after,
            )

        previous_state = self.state
        self.draft = ""
        self.state = ChatState.SENDING
        self._notify()

        try:
            row = await self._backend.insert_message(self.match_id, self.user_id, cleaned)
        except Exception as exc:
            if self.closed:
                return SendOutcome(ok=False, error="Chat session is closed.")
            self.draft = original
            self.state = ChatState.ACTIVE if self._has_been_active else previous_state
            message = exc.detail if isinstance(exc, DevMatchError) else "Message could not be sent."
            self.last_error = message
            self._log.warning("chat_send_failed", error=str(exc))
            if not isinstance(exc, DevMatchError) or exc.reportable:
                capture_exception(
                    exc, operation="send_message", match_id=self.match_id, user_id=self.user_id
                )
            self._notify()
            return SendOutcome(ok=False, error=message)

        if self.closed:
            return SendOutcome(ok=True, message=row)
        self.state = ChatState.ACTIVE if self._has_been_active else previous_state
        self._insert(row)
        self._notify()
        return SendOutcome(ok=True, message=row)

    # ── Helpers ──────────────────────────────────────────────────────────

    def _notify(self) -> None:
        if self.closed or self._on_change is None:
            return
        self._on_change(self)
