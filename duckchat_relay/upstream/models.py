"""
Core upstream models with type safety and validation.

This module provides the foundational types for talking to the chat upstream:
- Conversation turns sent in the chat body
- Upstream endpoint configuration
- Browser identity presented to the upstream
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

from pydantic import BaseModel

Role = Literal["user", "assistant"]


class ChatTurn(BaseModel):
    """One message of a conversation, as sent to the upstream."""
    role: Role
    content: str


@dataclass(frozen=True)
class Identity:
    """Browser identity headers presented to the upstream."""
    user_agent: str
    origin: str
    referer: str

    def headers(self) -> dict[str, str]:
        return {
            "user-agent": self.user_agent,
            "origin": self.origin,
            "referer": self.referer,
        }


@dataclass(frozen=True)
class UpstreamConfig:
    """Upstream endpoint configuration."""
    base_url: str = "https://duckduckgo.com"
    status_path: str = "/duckchat/v1/status"
    chat_path: str = "/duckchat/v1/chat"

    # Timeouts (seconds)
    token_timeout: float = 10.0
    chat_timeout: float = 30.0
    read_timeout: float = 60.0

    # Token retry policy
    token_max_attempts: int = 4
    token_backoff_step: float = 1.0

    # Model code table
    model_table: dict[str, str] = field(default_factory=lambda: {
        "1": "gpt-4o-mini",
        "2": "claude-3-haiku-20240307",
        "3": "meta-llama/Meta-Llama-3.1-70B-Instruct-Turbo",
        "4": "mistralai/Mixtral-8x7B-Instruct-v0.1",
    })
    default_model: str = "1"

    @classmethod
    def from_settings(
        cls,
        upstream: dict[str, Any],
        token: dict[str, Any],
        models: dict[str, Any],
    ) -> UpstreamConfig:
        """Build from the validated Configuration sections."""
        return cls(
            base_url=upstream["base_url"],
            status_path=upstream["status_path"],
            chat_path=upstream["chat_path"],
            token_timeout=float(upstream["token_timeout"]),
            chat_timeout=float(upstream["chat_timeout"]),
            read_timeout=float(upstream["read_timeout"]),
            token_max_attempts=int(token["max_attempts"]),
            token_backoff_step=float(token["backoff_step"]),
            model_table=dict(models["table"]),
            default_model=models["default"],
        )
