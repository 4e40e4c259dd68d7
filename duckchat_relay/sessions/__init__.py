"""Ephemeral chat sessions."""

from .models import AlternationError, Session
from .store import InMemorySessionStore, SessionStore
from .token_counter import count_reply_tokens, estimate_tokens

__all__ = [
    "AlternationError",
    "InMemorySessionStore",
    "Session",
    "SessionStore",
    "count_reply_tokens",
    "estimate_tokens",
]
