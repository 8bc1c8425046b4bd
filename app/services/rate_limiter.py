"""
DevMatch — Fixed-window rate limiting.

Rate limiting is a best-effort UX throttle, not a security boundary.  The
limiter is injected into the services that need it so a deployment can swap
the per-process ``InMemoryRateLimiter`` for the shared ``RedisRateLimiter``
without touching call sites.  Both run the ``limits`` fixed-window strategy
and differ only in where the counters live.

Window semantics (both backends):
  * the first attempt for a key opens a window of ``window_seconds``;
  * attempts are admitted while the count is below ``max_attempts``;
  * a denied attempt reports ``retry_after`` = seconds until the window ends.
"""

from __future__ import annotations

import math
import time
from dataclasses import dataclass
from typing import Protocol

import structlog
from limits import RateLimitItem, RateLimitItemPerSecond
from limits.aio.storage import MemoryStorage, RedisStorage, Storage
from limits.aio.strategies import FixedWindowRateLimiter

from app.config import get_settings

logger = structlog.get_logger("devmatch.rate_limiter")

NAMESPACE = "devmatch"


@dataclass(frozen=True)
class RateLimitBudget:
    max_attempts: int
    window_seconds: int

    def as_item(self) -> RateLimitItem:
        return RateLimitItemPerSecond(
            self.max_attempts, self.window_seconds, namespace=NAMESPACE
        )


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    retry_after: int | None = None


RATE_LIMITS: dict[str, RateLimitBudget] = {
    "MESSAGE": RateLimitBudget(max_attempts=30, window_seconds=60),
    "SWIPE": RateLimitBudget(max_attempts=100, window_seconds=60),
    "PROFILE_UPDATE": RateLimitBudget(max_attempts=10, window_seconds=60),
    "IMAGE_UPLOAD": RateLimitBudget(max_attempts=5, window_seconds=5 * 60),
}


class RateLimiter(Protocol):
    async def check(self, key: str, budget: RateLimitBudget) -> RateLimitDecision: ...

    async def reset(self, key: str, budget: RateLimitBudget) -> None: ...

    async def clear(self) -> None: ...


class FixedWindowLimiter:
    """``RateLimiter`` over a ``limits`` async storage backend."""

    def __init__(self, storage: Storage) -> None:
        self.storage = storage
        self.strategy = FixedWindowRateLimiter(storage)

    async def check(self, key: str, budget: RateLimitBudget) -> RateLimitDecision:
        item = budget.as_item()
        if await self.strategy.hit(item, key):
            return RateLimitDecision(allowed=True)

        stats = await self.strategy.get_window_stats(item, key)
        retry_after = max(1, math.ceil(stats.reset_time - time.time()))
        logger.info("rate_limit_denied", key=key, retry_after=retry_after)
        return RateLimitDecision(allowed=False, retry_after=retry_after)

    async def reset(self, key: str, budget: RateLimitBudget) -> None:
        await self.strategy.clear(budget.as_item(), key)

    async def clear(self) -> None:
        await self.storage.reset()


class InMemoryRateLimiter(FixedWindowLimiter):
    """Per-process counters; not shared and not persisted across restarts."""

    def __init__(self) -> None:
        super().__init__(MemoryStorage())


class RedisRateLimiter(FixedWindowLimiter):
    """Counters shared by every instance pointing at the same Redis."""

    def __init__(self, redis_url: str) -> None:
        super().__init__(RedisStorage(redis_url, implementation="redispy"))


def build_rate_limiter(redis_url: str | None = None) -> RateLimiter:
    """Select the configured backend.

    Falls back to the in-process limiter when Redis is requested but no
    reachable server was found at startup.
    """
    settings = get_settings()
    if settings.RATE_LIMIT_BACKEND == "redis":
        if redis_url:
            logger.info("rate_limiter_backend", backend="redis")
            return RedisRateLimiter(redis_url)
        logger.warning("rate_limiter_redis_unavailable", fallback="memory")
    return InMemoryRateLimiter()
