"""Sliding-window rate limiter for outbound AI calls.

Callers ``await limiter.acquire()`` before each provider request. When the
window already holds ``limit`` requests the caller is suspended (not
rejected) until the oldest request leaves the window.

Default: ``AI_RATE_LIMIT_PER_MINUTE`` requests per 60 s window.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from typing import Awaitable, Callable, Deque, Dict, Optional

from quizgen.core.config import settings

logger = logging.getLogger(__name__)

WINDOW_SECONDS = 60  # 1 minute window


class SlidingWindowRateLimiter:
    """Process-wide limiter shared by every AI client instance."""

    def __init__(
        self,
        limit: Optional[int] = None,
        window_seconds: float = WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """Initialize the limiter.

        Args:
            limit: Maximum requests per window (defaults to AI_RATE_LIMIT_PER_MINUTE)
            window_seconds: Length of the sliding window in seconds
            clock: Monotonic time source
            sleep: Coroutine used to wait for a free slot

        Raises:
            ValueError: If limit is below 1
        """
        self.limit = limit if limit is not None else settings.AI_RATE_LIMIT_PER_MINUTE
        if self.limit < 1:
            raise ValueError("rate limit must be at least 1 request per window")
        self.window_seconds = window_seconds
        self._clock = clock
        self._sleep = sleep
        self._request_history: Deque[float] = deque()
        self._lock = asyncio.Lock()

    def _clean_old_requests(self, current_time: float) -> None:
        """Drop timestamps that have left the window.

        Args:
            current_time: Current timestamp
        """
        cutoff_time = current_time - self.window_seconds
        while self._request_history and self._request_history[0] <= cutoff_time:
            self._request_history.popleft()

    def _get_request_count(self, current_time: float) -> int:
        """Count requests still inside the window.

        Args:
            current_time: Current timestamp

        Returns:
            Number of requests in the current window
        """
        self._clean_old_requests(current_time)
        return len(self._request_history)

    def _add_request(self, current_time: float) -> None:
        """Record a new request.

        Args:
            current_time: Current timestamp
        """
        self._request_history.append(current_time)

    async def acquire(self) -> None:
        """Wait until a slot is free, then record this request.

        Never rejects: when the window is full the caller sleeps until the
        oldest request expires and then tries again.
        """
        while True:
            async with self._lock:
                current_time = self._clock()
                request_count = self._get_request_count(current_time)
                if request_count < self.limit:
                    self._add_request(current_time)
                    logger.debug(
                        "Rate limit slot acquired: %d/%d in %ss",
                        request_count + 1, self.limit, self.window_seconds,
                    )
                    return
                # Time until the oldest request expires
                wait_for = self._request_history[0] + self.window_seconds - current_time

            logger.warning(
                "AI rate limit reached (%d/%d), waiting %.2fs",
                request_count, self.limit, wait_for,
            )
            # Sleep outside the lock so other callers can inspect the window
            await self._sleep(max(wait_for, 0.0))

    async def get_info(self) -> Dict[str, float]:
        """Get current window status.

        Returns:
            Dict with limit, remaining slots and seconds until the oldest
            request leaves the window
        """
        async with self._lock:
            current_time = self._clock()
            request_count = self._get_request_count(current_time)
            remaining = max(0, self.limit - request_count)
            if request_count > 0:
                reset_in = self._request_history[0] + self.window_seconds - current_time
            else:
                reset_in = self.window_seconds
            return {
                "limit": self.limit,
                "remaining": remaining,
                "reset_in": reset_in,
            }
