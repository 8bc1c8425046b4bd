"""
DevMatch — Chat API

REST endpoints for message history and sending, plus a WebSocket endpoint
that runs one live ``ChatSession`` per connection.

WebSocket frames (JSON):

  server → client
    {"type": "snapshot", "state": ..., "messages": [...]}
    {"type": "message", "message": {...}}
    {"type": "send_result", "ok": bool, "error": str|null,
     "retry_after": int|null, "message": {...}|null}
    {"type": "state", "state": ..., "error": str|null}

  client → server
    {"type": "send", "content": "..."}
    {"type": "refresh"}
"""

from __future__ import annotations

import asyncio
import contextlib
import uuid
from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect, status
from fastapi.encoders import jsonable_encoder
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.api.deps import (
    USER_HEADER,
    get_change_feed,
    get_current_user_id,
    get_message_service,
    get_rate_limiter,
    get_session_factory,
    parse_user_id,
)
from app.database import get_db
from app.errors import DevMatchError
from app.models.message import Message
from app.schemas.message import MessageCreate, MessageResponse
from app.services.change_feed import ChangeFeed
from app.services.chat_session import ChatSession
from app.services.message_service import MessageService
from app.services.rate_limiter import RateLimiter
from app.utils.error_tracking import capture_exception

logger = structlog.get_logger("devmatch.api.chat")

router = APIRouter()

WS_CLOSE_UNAUTHORISED = 4401
WS_CLOSE_FORBIDDEN = 4403


# ──────────────────────────────────────────────────────────────────────────────
# GET /{match_id}/messages — History
# ──────────────────────────────────────────────────────────────────────────────

@router.get(
    "/{match_id}/messages",
    response_model=list[MessageResponse],
    summary="All messages of a match, oldest first",
)
async def list_messages(
    match_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    service: MessageService = Depends(get_message_service),
    db: AsyncSession = Depends(get_db),
) -> list[dict[str, Any]]:
    return await service.list_messages(match_id, user_id, db)


# ──────────────────────────────────────────────────────────────────────────────
# POST /{match_id}/messages — Send
# ──────────────────────────────────────────────────────────────────────────────

@router.post(
    "/{match_id}/messages",
    response_model=MessageResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Send a message to a match",
)
async def send_message(
    match_id: uuid.UUID,
    payload: MessageCreate,
    user_id: uuid.UUID = Depends(get_current_user_id),
    service: MessageService = Depends(get_message_service),
    db: AsyncSession = Depends(get_db),
) -> Message:
    return await service.send_message(match_id, user_id, payload.content, db)


# ──────────────────────────────────────────────────────────────────────────────
# WS /{match_id}/ws — Live chat session
# ──────────────────────────────────────────────────────────────────────────────

class SessionBoundMessages:
    """``MessageBackend`` that opens a short-lived DB session per call."""

    def __init__(
        self,
        service: MessageService,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        self.service = service
        self.session_factory = session_factory

    async def fetch_messages(self, match_id: uuid.UUID, viewer_id: uuid.UUID) -> list[dict]:
        async with self.session_factory() as db:
            return await self.service.list_messages(match_id, viewer_id, db)

    async def insert_message(
        self, match_id: uuid.UUID, sender_id: uuid.UUID, content: str
    ) -> dict:
        async with self.session_factory() as db:
            message = await self.service.send_message(
                match_id, sender_id, content, db, throttle=False
            )
            return message.to_row()


async def _authorise(
    websocket: WebSocket,
    match_id: uuid.UUID,
    service: MessageService,
    session_factory: async_sessionmaker[AsyncSession],
) -> uuid.UUID | None:
    raw = websocket.headers.get(USER_HEADER) or websocket.query_params.get("user_id")
    try:
        user_id = parse_user_id(raw)
    except HTTPException:
        await websocket.close(code=WS_CLOSE_UNAUTHORISED)
        return None

    try:
        async with session_factory() as db:
            await service.matching_service.get_match(match_id, user_id, db)
    except DevMatchError as exc:
        log = logger.bind(match_id=str(match_id), user_id=str(user_id))
        if exc.reportable:
            log.warning("chat_ws_rejected", reason=exc.message)
            capture_exception(
                exc, operation="chat_ws_connect", match_id=match_id, user_id=user_id
            )
        else:
            log.info("chat_ws_rejected", reason=exc.message)
        await websocket.close(code=WS_CLOSE_FORBIDDEN)
        return None
    return user_id


@router.websocket("/{match_id}/ws")
async def chat_socket(
    websocket: WebSocket,
    match_id: uuid.UUID,
    feed: ChangeFeed = Depends(get_change_feed),
    rate_limiter: RateLimiter = Depends(get_rate_limiter),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> None:
    service = MessageService(feed, rate_limiter)
    user_id = await _authorise(websocket, match_id, service, session_factory)
    if user_id is None:
        return
    await websocket.accept()

    log = logger.bind(match_id=str(match_id), user_id=str(user_id))
    changed: asyncio.Queue[None] = asyncio.Queue()
    forwarded: set[str] = set()
    # Held while a send is in flight so the sender's own row, which the feed
    # may deliver first, is marked forwarded before the forwarder sees it.
    outbound = asyncio.Lock()

    session = ChatSession(
        match_id,
        user_id,
        SessionBoundMessages(service, session_factory),
        feed,
        rate_limiter,
        on_change=lambda _s: changed.put_nowait(None),
    )

    async def send_state(error: str | None) -> None:
        async with outbound:
            await websocket.send_json({
                "type": "state",
                "state": session.state.value,
                "error": error,
            })

    async def forward_new_messages() -> None:
        while True:
            await changed.get()
            async with outbound:
                for row in session.messages:
                    msg_id = str(row["id"])
                    if msg_id in forwarded:
                        continue
                    forwarded.add(msg_id)
                    await websocket.send_json({"type": "message", "message": jsonable_encoder(row)})

    forwarder: asyncio.Task | None = None
    try:
        await session.open()
        async with outbound:
            forwarded.update(session.message_ids)
            await websocket.send_json({
                "type": "snapshot",
                "state": session.state.value,
                "messages": jsonable_encoder(list(session.messages)),
            })
        forwarder = asyncio.create_task(forward_new_messages())
        log.info("chat_ws_connected")

        while True:
            try:
                frame = await websocket.receive_json()
            except (ValueError, KeyError, TypeError) as exc:
                # Non-JSON text or a binary frame.
                log.info("chat_ws_malformed_frame", error=str(exc))
                await send_state("Malformed frame: expected a JSON object.")
                continue

            kind = frame.get("type") if isinstance(frame, dict) else None
            if kind == "send":
                async with outbound:
                    outcome = await session.send(str(frame.get("content", "")))
                    if outcome.message is not None:
                        forwarded.add(str(outcome.message["id"]))
                    await websocket.send_json({
                        "type": "send_result",
                        "ok": outcome.ok,
                        "error": outcome.error,
                        "retry_after": outcome.retry_after,
                        "message": jsonable_encoder(outcome.message),
                    })
            elif kind == "refresh":
                await session.refresh()
                await send_state(session.last_error)
            else:
                await send_state(f"Unknown frame type {kind!r}.")
    except WebSocketDisconnect:
        log.info("chat_ws_disconnected")
    finally:
        session.close()
        if forwarder is not None:
            forwarder.cancel()
            try:
                with contextlib.suppress(asyncio.CancelledError):
                    await forwarder
            except Exception:
                log.exception("chat_ws_forwarder_failed")
