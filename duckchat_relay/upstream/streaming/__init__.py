"""
Streaming functionality for the upstream chat stream.

This package contains:
- Incremental payload splitting for both upstream dialects
- Frame classification and error surfacing
- Buffered and streaming consumption helpers
"""

from .decoder import (
    DUCKDUCKGO_TERMINATOR,
    LineBuffer,
    StreamDecoder,
    parse_payload,
)
from .models import DecoderState, DecoderStats, Dialect, Frame, FrameKind

__all__ = [
    "DUCKDUCKGO_TERMINATOR",
    "DecoderState",
    "DecoderStats",
    "Dialect",
    "Frame",
    "FrameKind",
    "LineBuffer",
    "StreamDecoder",
    "parse_payload",
]
