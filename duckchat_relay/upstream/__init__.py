"""
Upstream chat integration.

This package provides the relay's side of the DuckDuckGo chat protocol:
- VQD token acquisition and chat dispatch over httpx
- Incremental decoding of the upstream stream
- Typed errors carrying HTTP status hints
- Inbound rate limiting
"""

from __future__ import annotations

from .exceptions import (
    ErrorInfo,
    ErrorKind,
    MalformedFrameError,
    RateLimitError,
    RelayError,
    StreamReadError,
    TokenUnavailableError,
    UpstreamHTTPError,
    UpstreamLogicalError,
    UpstreamTimeoutError,
    classify_error_frame,
)
from .models import ChatTurn, Identity, Role, UpstreamConfig

__all__ = [
    "ChatTurn",
    "ErrorInfo",
    "ErrorKind",
    "Identity",
    "MalformedFrameError",
    "RateLimitError",
    "RelayError",
    "Role",
    "StreamReadError",
    "TokenUnavailableError",
    "UpstreamConfig",
    "UpstreamHTTPError",
    "UpstreamLogicalError",
    "UpstreamTimeoutError",
    "classify_error_frame",
]
