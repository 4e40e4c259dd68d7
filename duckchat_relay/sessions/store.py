"""
In-memory session storage.

Sessions live only as long as the process. The store hands out a per-session
asyncio lock so that a chat turn can read, extend and write back its session
without another turn on the same session interleaving.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncGenerator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import Protocol

from duckchat_relay.sessions.models import Session

logger = logging.getLogger(__name__)


class SessionStore(Protocol):
    """
    Interface for storing and retrieving chat sessions.
    """

    async def get(self, session_id: str) -> Session | None:
        """
        Return a copy of the stored session, or None if it does not exist.
        """
        ...

    async def put(self, session_id: str, session: Session) -> None:
        """
        Store the session under the given id, replacing any previous value.
        """
        ...

    def lock(self, session_id: str) -> AbstractAsyncContextManager[None]:
        """
        Async context manager holding exclusive access to one session id.
        """
        ...


class InMemorySessionStore:
    """Process-local session map with one lock per session id."""

    def __init__(self) -> None:
        self._sessions: dict[str, Session] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    async def get(self, session_id: str) -> Session | None:
        session = self._sessions.get(session_id)
        # Callers mutate their copy; only put() publishes changes
        return session.model_copy(deep=True) if session is not None else None

    async def put(self, session_id: str, session: Session) -> None:
        if session_id not in self._sessions:
            logger.info("Created session %s", session_id)
        self._sessions[session_id] = session.model_copy(deep=True)

    @asynccontextmanager
    async def lock(self, session_id: str) -> AsyncGenerator[None]:
        lock = self._locks.setdefault(session_id, asyncio.Lock())
        async with lock:
            yield

    async def delete(self, session_id: str) -> bool:
        self._locks.pop(session_id, None)
        return self._sessions.pop(session_id, None) is not None

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions
