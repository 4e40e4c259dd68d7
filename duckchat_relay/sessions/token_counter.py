"""Length-based token estimates used for session accounting."""

from __future__ import annotations

import math

CHARS_PER_TOKEN = 4


def estimate_tokens(text: str) -> int:
    """Approximate the token count of a user message (ceil(len / 4))."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def count_reply_tokens(text: str) -> int:
    """Count a reply by its character length."""
    return len(text)


def count_exchange_tokens(user_message: str, reply: str) -> int:
    return estimate_tokens(user_message) + count_reply_tokens(reply)
