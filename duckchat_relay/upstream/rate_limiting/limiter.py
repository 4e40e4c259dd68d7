"""
Fixed-window rate limiting for inbound chat requests.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

import structlog

from ..exceptions import RateLimitError
from .models import RateLimitConfig, RateLimitResult, RateLimitState

logger = structlog.get_logger(__name__)


class FixedWindowRateLimiter:
    """
    Counts requests in a fixed window and rejects once the limit is hit.

    The window is reset lazily by the first check that observes it expired.
    Counter updates happen under an asyncio lock so concurrent handlers on the
    same event loop never lose an increment.
    """

    def __init__(
        self,
        config: RateLimitConfig,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.config = config
        self._clock = clock
        self.state = RateLimitState(window_start=clock())
        self._lock = asyncio.Lock()

    async def check_rate_limit(self) -> RateLimitResult:
        """
        Record one request if the current window has room.

        Returns:
            RateLimitResult with decision and wait time
        """
        async with self._lock:
            now = self._clock()
            window = timedelta(seconds=self.config.window_seconds)
            reset_time = self.state.window_start + window

            if now >= reset_time:
                self.state.window_start = now
                self.state.request_count = 0
                self.state.window_resets += 1
                reset_time = now + window

            self.state.total_requests += 1

            if self.state.request_count < self.config.max_requests:
                self.state.request_count += 1
                return RateLimitResult(
                    allowed=True,
                    wait_time=0.0,
                    current_usage=self.state.request_count,
                    limit_value=self.config.max_requests,
                    reset_time=reset_time,
                )

            self.state.total_rejected += 1
            return RateLimitResult(
                allowed=False,
                wait_time=max(0.0, (reset_time - now).total_seconds()),
                current_usage=self.state.request_count,
                limit_value=self.config.max_requests,
                reset_time=reset_time,
            )

    async def acquire(self) -> None:
        """
        Admit one request or fail immediately.

        Raises:
            RateLimitError: If the window's request budget is exhausted
        """
        result = await self.check_rate_limit()
        if result.allowed:
            return

        logger.warning(
            "Inbound rate limit exceeded",
            current_usage=result.current_usage,
            limit=result.limit_value,
            retry_after=round(result.wait_time, 2),
        )
        raise RateLimitError("Rate limit exceeded", retry_after=result.wait_time)

    def get_statistics(self) -> dict[str, Any]:
        """Get rate limiter statistics."""
        return {
            "window_seconds": self.config.window_seconds,
            "max_requests": self.config.max_requests,
            "current_window_requests": self.state.request_count,
            "total_requests": self.state.total_requests,
            "total_rejected": self.state.total_rejected,
            "window_resets": self.state.window_resets,
        }
