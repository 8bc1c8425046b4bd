"""Unit tests for the fixed-window rate limiters."""
import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from limits.aio.storage import Storage

from app.errors import RateLimitedError
from app.services.rate_limiter import (
    RATE_LIMITS,
    FixedWindowLimiter,
    InMemoryRateLimiter,
    RateLimitBudget,
    RedisRateLimiter,
    build_rate_limiter,
)


def test_budget_table():
    assert RATE_LIMITS == {
        "MESSAGE": RateLimitBudget(30, 60),
        "SWIPE": RateLimitBudget(100, 60),
        "PROFILE_UPDATE": RateLimitBudget(10, 60),
        "IMAGE_UPLOAD": RateLimitBudget(5, 300),
    }


def test_budget_maps_to_fixed_window_item():
    item = RATE_LIMITS["IMAGE_UPLOAD"].as_item()
    assert item.amount == 5
    assert item.get_expiry() == 300


class TestInMemoryRateLimiter:

    @pytest.mark.asyncio
    async def test_admits_up_to_budget_then_denies(self):
        limiter = InMemoryRateLimiter()
        budget = RATE_LIMITS["MESSAGE"]

        for _ in range(30):
            assert (await limiter.check("message:x", budget)).allowed

        decision = await limiter.check("message:x", budget)
        assert not decision.allowed
        assert 1 <= decision.retry_after <= 60

    @pytest.mark.asyncio
    async def test_window_expiry_resets_count(self):
        limiter = InMemoryRateLimiter()
        budget = RateLimitBudget(max_attempts=1, window_seconds=1)

        assert (await limiter.check("k", budget)).allowed
        assert not (await limiter.check("k", budget)).allowed
        await asyncio.sleep(1.2)
        assert (await limiter.check("k", budget)).allowed

    @pytest.mark.asyncio
    async def test_keys_are_independent(self):
        limiter = InMemoryRateLimiter()
        budget = RateLimitBudget(max_attempts=1, window_seconds=60)

        assert (await limiter.check("message:a", budget)).allowed
        assert (await limiter.check("message:b", budget)).allowed
        assert not (await limiter.check("message:a", budget)).allowed

    @pytest.mark.asyncio
    async def test_reset_and_clear(self):
        limiter = InMemoryRateLimiter()
        budget = RateLimitBudget(max_attempts=1, window_seconds=60)

        await limiter.check("a", budget)
        await limiter.check("b", budget)
        await limiter.reset("a", budget)
        assert (await limiter.check("a", budget)).allowed
        assert not (await limiter.check("b", budget)).allowed

        await limiter.clear()
        assert (await limiter.check("b", budget)).allowed


class TestFixedWindowLimiter:

    @pytest.mark.asyncio
    async def test_retry_after_is_rounded_up_from_window_reset(self):
        limiter = FixedWindowLimiter(MagicMock(spec=Storage))
        limiter.strategy = MagicMock()
        limiter.strategy.hit = AsyncMock(return_value=False)
        limiter.strategy.get_window_stats = AsyncMock(
            return_value=MagicMock(reset_time=1001.5, remaining=0)
        )

        with patch("app.services.rate_limiter.time.time", return_value=1000.0):
            decision = await limiter.check("swipe:x", RATE_LIMITS["SWIPE"])

        assert not decision.allowed
        assert decision.retry_after == 2
        limiter.strategy.hit.assert_awaited_once()
        assert limiter.strategy.hit.await_args.args[1] == "swipe:x"

    @pytest.mark.asyncio
    async def test_elapsed_window_still_reports_one_second(self):
        limiter = FixedWindowLimiter(MagicMock(spec=Storage))
        limiter.strategy = MagicMock()
        limiter.strategy.hit = AsyncMock(return_value=False)
        limiter.strategy.get_window_stats = AsyncMock(
            return_value=MagicMock(reset_time=999.0, remaining=0)
        )

        with patch("app.services.rate_limiter.time.time", return_value=1000.0):
            decision = await limiter.check("swipe:x", RATE_LIMITS["SWIPE"])

        assert decision.retry_after == 1

    @pytest.mark.asyncio
    async def test_clear_resets_storage(self):
        storage = MagicMock(spec=Storage)
        storage.reset = AsyncMock()
        limiter = FixedWindowLimiter(storage)

        await limiter.clear()

        storage.reset.assert_awaited_once()


class TestRedisRateLimiter:

    def test_uses_redis_py_storage(self):
        with patch("app.services.rate_limiter.RedisStorage",
                   return_value=MagicMock(spec=Storage)) as storage_cls:
            limiter = RedisRateLimiter("redis://cache:6379/0")

        storage_cls.assert_called_once_with("redis://cache:6379/0", implementation="redispy")
        assert limiter.storage is storage_cls.return_value


class TestBuildRateLimiter:

    def _settings(self, backend):
        settings = MagicMock()
        settings.RATE_LIMIT_BACKEND = backend
        return settings

    def test_memory_backend(self):
        with patch("app.services.rate_limiter.get_settings", return_value=self._settings("memory")):
            assert isinstance(build_rate_limiter("redis://cache:6379/0"), InMemoryRateLimiter)

    def test_redis_backend(self):
        with patch("app.services.rate_limiter.get_settings", return_value=self._settings("redis")), \
                patch("app.services.rate_limiter.RedisStorage", return_value=MagicMock(spec=Storage)):
            assert isinstance(build_rate_limiter("redis://cache:6379/0"), RedisRateLimiter)

    def test_redis_requested_without_server_falls_back(self):
        with patch("app.services.rate_limiter.get_settings", return_value=self._settings("redis")):
            assert isinstance(build_rate_limiter(None), InMemoryRateLimiter)


def test_rate_limited_error_rounds_up():
    assert RateLimitedError("k", 0.2).retry_after == 1
    assert RateLimitedError("k", 12.1).retry_after == 13
    assert RateLimitedError("k", 0).status_code == 429
