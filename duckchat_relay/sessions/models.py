"""Session state and turn bookkeeping for chat conversations."""

from __future__ import annotations

import time

from pydantic import BaseModel, Field

from duckchat_relay.sessions.token_counter import count_exchange_tokens
from duckchat_relay.upstream.models import ChatTurn, Role


def now_ms() -> int:
    return int(time.time() * 1000)


class AlternationError(ValueError):
    """A turn would repeat the role of the previous turn."""


class Session(BaseModel):
    """
    Conversation state kept between chat calls sharing a session id.
    """
    token: str | None = None
    turns: list[ChatTurn] = Field(default_factory=list)
    token_count: int = 0
    created_at: int = Field(default_factory=now_ms)

    def append_turn(
        self, role: Role, content: str, *, enforce_alternation: bool = True
    ) -> None:
        """
        Append a turn, optionally requiring user/assistant alternation.
        """
        if enforce_alternation:
            expected: Role = "user"
            if self.turns and self.turns[-1].role == "user":
                expected = "assistant"
            if role != expected:
                raise AlternationError(
                    f"Expected a '{expected}' turn, got '{role}'"
                )
        self.turns.append(ChatTurn(role=role, content=content))

    def conversation_with(self, user_message: str) -> list[ChatTurn]:
        """
        Return the turn history plus a pending user turn, without mutating.
        """
        return [*self.turns, ChatTurn(role="user", content=user_message)]

    def record_exchange(
        self,
        user_message: str,
        reply: str,
        *,
        enforce_alternation: bool = True,
    ) -> None:
        """
        Commit a completed user/assistant exchange and update the token count.
        """
        self.append_turn(
            "user", user_message, enforce_alternation=enforce_alternation
        )
        self.append_turn(
            "assistant", reply, enforce_alternation=enforce_alternation
        )
        self.token_count += count_exchange_tokens(user_message, reply)
