"""
Rate limiting models and dataclasses for the inbound request limiter.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime


@dataclass(frozen=True)
class RateLimitConfig:
    """Configuration for fixed-window rate limiting."""
    window_seconds: float = 60.0
    max_requests: int = 100


@dataclass
class RateLimitState:
    """Current fixed-window state."""
    window_start: datetime = field(default_factory=datetime.now)
    request_count: int = 0

    # Statistics
    total_requests: int = 0
    total_rejected: int = 0
    window_resets: int = 0


@dataclass(frozen=True)
class RateLimitResult:
    """Result of rate limit check."""
    allowed: bool
    wait_time: float  # seconds until the window resets
    current_usage: int
    limit_value: int
    reset_time: datetime | None = None
