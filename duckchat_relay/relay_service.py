#!/usr/bin/env python3
"""
Chat Relay Service

This module orchestrates one chat turn against the upstream: it loads the
caller's session, makes sure a VQD token is available, dispatches the
conversation, decodes the upstream stream and commits the exchange back to
the session store.

Two consumption modes share the same pipeline:
- Buffered: the full reply is collected and returned as a ChatResult
- Streaming: fragments are yielded as soon as the decoder produces them

Sessions are only updated after the upstream stream has ended cleanly, so a
failed turn never leaves a dangling user message in the history.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator, Sequence
from contextlib import aclosing
from dataclasses import asdict, dataclass, field

import structlog

from duckchat_relay.logging_utils import operation_context
from duckchat_relay.sessions.models import Session, now_ms
from duckchat_relay.sessions.store import SessionStore
from duckchat_relay.sessions.token_counter import (
    count_reply_tokens,
    estimate_tokens,
)
from duckchat_relay.upstream.client import VQD_HEADER, DuckChatClient
from duckchat_relay.upstream.models import ChatTurn
from duckchat_relay.upstream.streaming import Dialect, StreamDecoder

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ChatResult:
    """Outcome of a buffered chat call."""
    response: str
    model: str
    tokens: int
    timestamp: int
    session_id: str | None = None


@dataclass
class _Exchange:
    """Mutable bookkeeping for one upstream round trip."""
    token: str
    conversation: list[ChatTurn]
    model: str | None
    reply_parts: list[str] = field(default_factory=list)
    next_token: str | None = None

    @property
    def reply(self) -> str:
        return "".join(self.reply_parts)


class ChatRelay:
    """Relays chat turns to the upstream and keeps session state."""

    def __init__(
        self,
        client: DuckChatClient,
        sessions: SessionStore,
        dialect: Dialect = Dialect.DUCKDUCKGO,
        enforce_alternation: bool = True,
    ) -> None:
        self.client = client
        self.sessions = sessions
        self.dialect = dialect
        self.enforce_alternation = enforce_alternation

    @staticmethod
    def new_session_id() -> str:
        return str(uuid.uuid4())

    def new_decoder(self) -> StreamDecoder:
        return StreamDecoder(self.dialect)

    async def _relay(self, exchange: _Exchange) -> AsyncGenerator[str]:
        """Dispatch the conversation and yield decoded reply fragments."""
        async with self.client.dispatch(
            exchange.token, exchange.conversation, exchange.model
        ) as response:
            # The upstream may rotate the token on every answer
            exchange.next_token = response.headers.get(VQD_HEADER) or exchange.token
            decoder = self.new_decoder()
            async for fragment in decoder.iter_text(response.aiter_text()):
                exchange.reply_parts.append(fragment)
                yield fragment
            logger.debug("Upstream stream decoded", **asdict(decoder.get_stats()))

    async def _begin(
        self, session_id: str, message: str, model: str | None
    ) -> tuple[Session, _Exchange]:
        session = await self.sessions.get(session_id) or Session()
        if session.token is None:
            session.token = await self.client.acquire_token()
            session.turns = []
            session.token_count = 0
        exchange = _Exchange(
            token=session.token,
            conversation=session.conversation_with(message),
            model=model,
        )
        return session, exchange

    async def _commit(
        self, session_id: str, session: Session, message: str, exchange: _Exchange
    ) -> None:
        session.token = exchange.next_token or session.token
        session.record_exchange(
            message, exchange.reply, enforce_alternation=self.enforce_alternation
        )
        await self.sessions.put(session_id, session)

    async def chat(
        self,
        message: str,
        model: str | None = None,
        session_id: str | None = None,
    ) -> ChatResult:
        """
        Run one buffered chat turn within a session.

        A missing session id starts a new session; an unknown one is created
        under the given id.
        """
        session_id = session_id or self.new_session_id()
        context = {"session_id": session_id, "model": model}

        async with self.sessions.lock(session_id):
            async with operation_context("chat", context=context):
                session, exchange = await self._begin(session_id, message, model)
                async with aclosing(self._relay(exchange)) as fragments:
                    async for _ in fragments:
                        pass
                await self._commit(session_id, session, message, exchange)

        return ChatResult(
            response=exchange.reply,
            model=self.client.resolve_model(model),
            tokens=session.token_count,
            timestamp=now_ms(),
            session_id=session_id,
        )

    async def stream_chat(
        self,
        message: str,
        session_id: str,
        model: str | None = None,
    ) -> AsyncGenerator[str]:
        """
        Run one streaming chat turn within a session.

        The session lock is held until the stream ends or is closed; the
        exchange is committed only once the upstream finished normally.
        """
        async with self.sessions.lock(session_id):
            async with operation_context(
                "stream_chat", context={"session_id": session_id, "model": model}
            ):
                session, exchange = await self._begin(session_id, message, model)
                async with aclosing(self._relay(exchange)) as fragments:
                    async for fragment in fragments:
                        yield fragment
                await self._commit(session_id, session, message, exchange)

    async def complete(
        self, messages: Sequence[ChatTurn], model: str | None = None
    ) -> ChatResult:
        """Run a stateless buffered completion with a fresh token."""
        async with operation_context("complete", context={"model": model}):
            token = await self.client.acquire_token()
            exchange = _Exchange(token=token, conversation=list(messages), model=model)
            async with aclosing(self._relay(exchange)) as fragments:
                async for _ in fragments:
                    pass

        prompt_tokens = sum(
            estimate_tokens(turn.content) for turn in messages if turn.role == "user"
        )
        return ChatResult(
            response=exchange.reply,
            model=self.client.resolve_model(model),
            tokens=prompt_tokens + count_reply_tokens(exchange.reply),
            timestamp=now_ms(),
        )

    async def stream_complete(
        self, messages: Sequence[ChatTurn], model: str | None = None
    ) -> AsyncGenerator[str]:
        """Run a stateless streaming completion with a fresh token."""
        async with operation_context("stream_complete", context={"model": model}):
            token = await self.client.acquire_token()
            exchange = _Exchange(token=token, conversation=list(messages), model=model)
            async with aclosing(self._relay(exchange)) as fragments:
                async for fragment in fragments:
                    yield fragment

    async def aclose(self) -> None:
        await self.client.close()
