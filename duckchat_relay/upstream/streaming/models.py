"""
Streaming-specific dataclasses for the upstream frame decoder.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


class Dialect(Enum):
    """Upstream stream delimiter conventions."""
    SSE = "sse"                # "data: <payload>\n" lines, "[DONE]" sentinel
    DUCKDUCKGO = "duckduckgo"  # bare "data:" delimiter, "[DONE]LIMT_CVRSA" end


class FrameKind(Enum):
    """Classification of a decoded frame."""
    MESSAGE = "message"
    ERROR = "error"
    DONE = "done"
    UNPARSEABLE = "unparseable"


class DecoderState(Enum):
    """Lifecycle of a single decode call."""
    AWAITING_FIRST_BYTE = "awaiting_first_byte"
    STREAMING = "streaming"
    CLOSED = "closed"      # Upstream ended normally
    ERRORED = "errored"    # Error frame or transport failure


@dataclass(frozen=True)
class Frame:
    """One decoded unit of the upstream stream."""
    kind: FrameKind
    raw_data: str
    data: dict[str, Any] | None = None
    text: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class DecoderStats:
    """Frame counters for one decode call."""
    total_frames: int
    message_frames: int
    malformed_frames: int
    ignored_frames: int
    characters: int
