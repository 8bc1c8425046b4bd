"""
DevMatch — HTTP middleware.

``RequestContextMiddleware`` gives every log line emitted while serving a
request the same ``request_id`` (and the caller's ``user_id`` when the
gateway supplied one), and keeps the in-flight count that shutdown drains.
``TimeoutMiddleware`` answers 504 for requests that run too long.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator

import structlog
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

logger = structlog.get_logger("devmatch.http")

REQUEST_ID_HEADER = "X-Request-ID"


class ActiveRequests:
    """Counter of requests currently being served."""

    def __init__(self) -> None:
        self._count = 0
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def count(self) -> int:
        return self._count

    @asynccontextmanager
    async def track(self) -> AsyncIterator[None]:
        self._count += 1
        self._idle.clear()
        try:
            yield
        finally:
            self._count -= 1
            if self._count == 0:
                self._idle.set()

    async def drain(self, timeout: float) -> bool:
        """Wait for the count to reach zero.  Returns False on timeout."""
        try:
            await asyncio.wait_for(self._idle.wait(), timeout=timeout)
            return True
        except asyncio.TimeoutError:
            logger.warning("drain_timeout_exceeded", remaining_requests=self._count)
            return False


active_requests = ActiveRequests()


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Bind request identifiers into structlog and log the outcome."""

    def __init__(self, app, tracker: ActiveRequests = active_requests) -> None:
        super().__init__(app)
        self.tracker = tracker

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)
        caller = request.headers.get("X-User-Id")
        if caller:
            structlog.contextvars.bind_contextvars(caller_id=caller)

        start = time.perf_counter()
        try:
            async with self.tracker.track():
                response = await call_next(request)
        except Exception:
            logger.exception(
                "request_error",
                method=request.method,
                path=request.url.path,
                duration_ms=round((time.perf_counter() - start) * 1000, 2),
            )
            raise
        finally:
            structlog.contextvars.clear_contextvars()

        response.headers[REQUEST_ID_HEADER] = request_id
        logger.info(
            "request_handled",
            request_id=request_id,
            method=request.method,
            path=request.url.path,
            status=response.status_code,
            duration_ms=round((time.perf_counter() - start) * 1000, 2),
        )
        return response


class TimeoutMiddleware(BaseHTTPMiddleware):
    """Return 504 once a request exceeds ``timeout_seconds``."""

    def __init__(self, app, timeout_seconds: float = 30.0) -> None:
        super().__init__(app)
        self.timeout_seconds = timeout_seconds

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        try:
            return await asyncio.wait_for(call_next(request), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning(
                "request_timeout",
                method=request.method,
                path=request.url.path,
                timeout=self.timeout_seconds,
            )
            return JSONResponse(status_code=504, content={"detail": "Request timed out"})
