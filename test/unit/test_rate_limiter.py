"""
Unit tests for backend/quizgen/services/rate_limiter.py
Tests: SlidingWindowRateLimiter acquire within limit, waiting for the window
to slide, window cleanup, get_info
Uses a manual clock so no test actually sleeps.
"""

import sys
import os
import asyncio
import pytest

BACKEND_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "..", "backend"))
sys.path.insert(0, BACKEND_DIR)

os.environ.setdefault("GOOGLE_API_KEY", "test-google-key")

from quizgen.services.rate_limiter import SlidingWindowRateLimiter, WINDOW_SECONDS


def _limiter(clock, limit=3, window=60):
    return SlidingWindowRateLimiter(limit=limit, window_seconds=window, clock=clock, sleep=clock.sleep)


class TestConstruction:

    def test_window_default(self):
        assert WINDOW_SECONDS == 60

    def test_limit_defaults_to_settings(self):
        from quizgen.core.config import settings
        assert SlidingWindowRateLimiter().limit == settings.AI_RATE_LIMIT_PER_MINUTE

    @pytest.mark.parametrize("limit", [0, -1])
    def test_limit_below_one_rejected(self, limit):
        with pytest.raises(ValueError):
            SlidingWindowRateLimiter(limit=limit)


class TestAcquire:

    @pytest.mark.asyncio
    async def test_within_limit_no_wait(self, manual_clock):
        limiter = _limiter(manual_clock)
        for _ in range(3):
            await limiter.acquire()
        assert manual_clock.sleeps == []

    @pytest.mark.asyncio
    async def test_over_limit_waits_for_oldest_to_expire(self, manual_clock):
        limiter = _limiter(manual_clock)
        await limiter.acquire()
        manual_clock.advance(10)
        await limiter.acquire()
        await limiter.acquire()

        await limiter.acquire()
        # oldest request was at t=1000, now is t=1010 -> 50 s left in its window
        assert manual_clock.sleeps == [pytest.approx(50.0)]

    @pytest.mark.asyncio
    async def test_requests_leave_window(self, manual_clock):
        limiter = _limiter(manual_clock)
        for _ in range(3):
            await limiter.acquire()
        manual_clock.advance(60)
        await limiter.acquire()
        assert manual_clock.sleeps == []

    @pytest.mark.asyncio
    async def test_concurrent_callers_never_exceed_limit(self, manual_clock):
        limiter = _limiter(manual_clock, limit=2)
        await asyncio.gather(*(limiter.acquire() for _ in range(5)))
        timestamps = list(limiter._request_history)
        for ts in timestamps:
            in_window = [t for t in timestamps if ts <= t < ts + limiter.window_seconds]
            assert len(in_window) <= 2


class TestGetInfo:

    @pytest.mark.asyncio
    async def test_empty_window(self, manual_clock):
        info = await _limiter(manual_clock).get_info()
        assert info == {"limit": 3, "remaining": 3, "reset_in": 60}

    @pytest.mark.asyncio
    async def test_partially_used(self, manual_clock):
        limiter = _limiter(manual_clock)
        await limiter.acquire()
        manual_clock.advance(15)
        info = await limiter.get_info()
        assert info["remaining"] == 2
        assert info["reset_in"] == pytest.approx(45.0)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
