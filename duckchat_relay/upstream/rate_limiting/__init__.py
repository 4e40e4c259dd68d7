"""
Rate limiting functionality for the relay's inbound surface.
"""

from .limiter import FixedWindowRateLimiter
from .models import RateLimitConfig, RateLimitResult, RateLimitState

__all__ = [
    "FixedWindowRateLimiter",
    "RateLimitConfig",
    "RateLimitResult",
    "RateLimitState",
]
