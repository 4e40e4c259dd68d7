"""
Error handling for upstream chat operations.

This module provides the relay's error taxonomy with rich context:
- HTTP status hints for the request boundary
- Upstream logical error classification (conversation limit, rate limit, ...)
- Retry guidance for rate limits
- Non-fatal malformed frame reporting
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

HTTP_TOO_MANY_REQUESTS = 429
HTTP_INTERNAL_ERROR = 500
HTTP_GATEWAY_TIMEOUT = 504


class ErrorKind(Enum):
    """Logical error kinds reported inside the upstream stream."""
    CONVERSATION_LIMIT = "conversation_limit"
    RATE_LIMIT = "rate_limit"
    TIMEOUT = "timeout"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ErrorInfo:
    """Status and message hints for an upstream error frame."""
    kind: ErrorKind
    status: int
    message: str


ERROR_TABLE: dict[str, ErrorInfo] = {
    "ERR_CONVERSATION_LIMIT": ErrorInfo(
        ErrorKind.CONVERSATION_LIMIT, HTTP_TOO_MANY_REQUESTS,
        "Conversation limit reached",
    ),
    "ERR_RATELIMIT": ErrorInfo(
        ErrorKind.RATE_LIMIT, HTTP_TOO_MANY_REQUESTS, "Rate limit exceeded"
    ),
    "ERR_TIMEOUT": ErrorInfo(
        ErrorKind.TIMEOUT, HTTP_GATEWAY_TIMEOUT, "Request timeout"
    ),
}

UNKNOWN_ERROR = ErrorInfo(ErrorKind.UNKNOWN, HTTP_INTERNAL_ERROR, "Unknown error")


def classify_error_frame(frame_data: dict[str, Any]) -> ErrorInfo:
    """Map an upstream `{"action": "error", "type": ...}` frame to its hints."""
    return ERROR_TABLE.get(str(frame_data.get("type")), UNKNOWN_ERROR)


class RelayError(Exception):
    """Base relay error with an HTTP status hint."""

    category = "relay_error"

    def __init__(
        self,
        message: str,
        status_code: int = HTTP_INTERNAL_ERROR,
        response_data: dict | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.response_data = response_data or {}


class TokenUnavailableError(RelayError):
    """The upstream status endpoint did not hand out a VQD token."""

    category = "token_error"

    def __init__(self, message: str, attempts: int = 1, **kwargs):
        super().__init__(message, **kwargs)
        self.attempts = attempts


class UpstreamHTTPError(RelayError):
    """The upstream chat endpoint answered with a non-success status."""

    category = "upstream_http_error"

    def __init__(self, upstream_status: int, body: str = "", **kwargs):
        if upstream_status == HTTP_TOO_MANY_REQUESTS:
            message = "Rate limit exceeded"
            status_code = HTTP_TOO_MANY_REQUESTS
        else:
            message = f"Upstream error {upstream_status}"
            status_code = HTTP_INTERNAL_ERROR
        super().__init__(message, status_code=status_code, **kwargs)
        self.upstream_status = upstream_status
        self.body = body


class UpstreamLogicalError(RelayError):
    """An error frame was received inside the upstream stream."""

    category = "upstream_logical_error"

    def __init__(self, info: ErrorInfo, frame_data: dict | None = None):
        super().__init__(
            info.message, status_code=info.status, response_data=frame_data
        )
        self.kind = info.kind

    @classmethod
    def from_frame(cls, frame_data: dict[str, Any]) -> UpstreamLogicalError:
        """Build the typed failure for an error frame via the error table."""
        return cls(classify_error_frame(frame_data), frame_data)


class UpstreamTimeoutError(RelayError):
    """Token fetch, dispatch or a stream read exceeded its timeout."""

    category = "timeout_error"

    def __init__(self, message: str = "Request timeout", **kwargs):
        super().__init__(message, status_code=HTTP_GATEWAY_TIMEOUT, **kwargs)


class StreamReadError(RelayError):
    """The upstream connection failed while the stream was being read."""

    category = "stream_error"


class MalformedFrameError(RelayError):
    """A frame payload was not valid JSON. Never leaves the decoder."""

    category = "malformed_frame"

    def __init__(self, message: str, raw_data: str = "", **kwargs):
        super().__init__(message, **kwargs)
        self.raw_data = raw_data


class RateLimitError(RelayError):
    """Inbound rate limit error with retry information."""

    category = "rate_limit_error"

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        retry_after: float | None = None,
        **kwargs,
    ):
        super().__init__(message, status_code=HTTP_TOO_MANY_REQUESTS, **kwargs)
        self.retry_after = retry_after
