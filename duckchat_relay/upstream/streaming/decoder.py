"""
Incremental decoder for the upstream pseudo-SSE chat stream.

Two delimiter dialects are supported:
- SSE: one payload per line, prefixed with "data: ", ended by "data: [DONE]"
- DuckDuckGo: payloads separated by a bare "data:" token; the end-of-stream
  marker "[DONE]LIMT_CVRSA\\n" is removed before splitting

Chunk boundaries never need to line up with frame boundaries; unterminated
fragments are kept until the next read or the end of the stream.
"""

from __future__ import annotations

import json
import re
from collections.abc import AsyncGenerator, AsyncIterable, Iterable, Iterator

import httpx
import structlog

from ..exceptions import (
    MalformedFrameError,
    StreamReadError,
    UpstreamLogicalError,
    UpstreamTimeoutError,
)
from .models import DecoderState, DecoderStats, Dialect, Frame, FrameKind

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"
DUCKDUCKGO_TERMINATOR = "[DONE]LIMT_CVRSA\n"
# "data:" only delimits at the start of the buffer or of a line
DUCKDUCKGO_DELIMITER = re.compile(r"(?:^|\n)data:")

# Constants
MAX_LOGGED_PAYLOAD = 200

logger = structlog.get_logger(__name__)


class LineBuffer:
    """Splits text on newlines, retaining an unterminated trailing line."""

    def __init__(self) -> None:
        self._buffer = ""

    @property
    def pending(self) -> str:
        return self._buffer

    def feed(self, text: str) -> list[str]:
        """Add text and return the lines it completed."""
        self._buffer += text
        if "\n" not in self._buffer:
            return []
        *lines, self._buffer = self._buffer.split("\n")
        return lines

    def flush(self) -> list[str]:
        """Return whatever is left once the stream has ended."""
        rest, self._buffer = self._buffer, ""
        return [rest] if rest else []


class SSEPayloadSplitter:
    """Extracts payloads from "data: ..." lines."""

    def __init__(self) -> None:
        self._lines = LineBuffer()

    def feed(self, text: str) -> list[str]:
        return self._payloads(self._lines.feed(text))

    def flush(self) -> list[str]:
        return self._payloads(self._lines.flush())

    @staticmethod
    def _payloads(lines: Iterable[str]) -> list[str]:
        payloads = []
        for raw_line in lines:
            line = raw_line.strip()
            # event:, id:, comments and blank separators carry no payload
            if not line.startswith(DATA_PREFIX):
                continue
            payload = line[len(DATA_PREFIX):].strip()
            if payload:
                payloads.append(payload)
        return payloads


class DuckDuckGoPayloadSplitter:
    """Extracts payloads separated by bare "data:" delimiters."""

    def __init__(self) -> None:
        self._buffer = ""

    def feed(self, text: str) -> list[str]:
        self._buffer = (self._buffer + text).replace(DUCKDUCKGO_TERMINATOR, "")
        pieces = DUCKDUCKGO_DELIMITER.split(self._buffer)
        tail = pieces.pop()
        # A payload is complete once the next delimiter or a newline follows it
        if tail.endswith("\n"):
            pieces.append(tail)
            tail = ""
        self._buffer = tail
        return [piece.strip() for piece in pieces if piece.strip()]

    def flush(self) -> list[str]:
        rest = (
            self._buffer
            .replace(DUCKDUCKGO_TERMINATOR, "")
            .replace(DUCKDUCKGO_TERMINATOR.rstrip("\n"), "")
        )
        self._buffer = ""
        pieces = DUCKDUCKGO_DELIMITER.split(rest)
        return [piece.strip() for piece in pieces if piece.strip()]


class StreamDecoder:
    """
    Single-use decoder turning upstream text chunks into classified frames.

    Message frames carry the text fragment; malformed payloads are logged and
    reported as UNPARSEABLE frames; an error frame moves the decoder to
    ERRORED and raises UpstreamLogicalError.
    """

    def __init__(self, dialect: Dialect = Dialect.DUCKDUCKGO):
        self.dialect = dialect
        self.state = DecoderState.AWAITING_FIRST_BYTE
        self._used = False
        self._splitter = (
            SSEPayloadSplitter() if dialect is Dialect.SSE
            else DuckDuckGoPayloadSplitter()
        )
        self.stats = {
            'total_frames': 0,
            'message_frames': 0,
            'malformed_frames': 0,
            'ignored_frames': 0,
            'characters': 0,
        }

    async def decode(self, chunks: AsyncIterable[str]) -> AsyncGenerator[Frame]:
        """
        Decode text chunks into frames until the stream closes.

        In the SSE dialect a "[DONE]" payload ends decoding immediately.

        Raises:
            UpstreamLogicalError: an error frame was received
            UpstreamTimeoutError: a read timed out
            StreamReadError: the connection failed mid-stream
            RuntimeError: the decoder was already used
        """
        if self._used:
            raise RuntimeError("StreamDecoder instances cannot be restarted")
        self._used = True

        try:
            async for chunk in chunks:
                if self.state is DecoderState.AWAITING_FIRST_BYTE:
                    self.state = DecoderState.STREAMING

                for frame in self._frames(self._splitter.feed(chunk)):
                    yield frame
                    if self._is_terminal(frame):
                        self.state = DecoderState.CLOSED
                        return

            for frame in self._frames(self._splitter.flush()):
                yield frame
                if self._is_terminal(frame):
                    break

        except httpx.TimeoutException as e:
            self.state = DecoderState.ERRORED
            logger.error("Upstream stream read timed out", error=str(e))
            raise UpstreamTimeoutError() from e
        except (httpx.TransportError, httpx.StreamError) as e:
            self.state = DecoderState.ERRORED
            logger.error("Upstream stream failed", error=str(e))
            raise StreamReadError(f"Stream error: {e}") from e

        self.state = DecoderState.CLOSED

    async def iter_text(self, chunks: AsyncIterable[str]) -> AsyncGenerator[str]:
        """Yield message fragments in arrival order (streaming mode)."""
        async for frame in self.decode(chunks):
            if frame.kind is FrameKind.MESSAGE and frame.text is not None:
                yield frame.text

    async def collect_text(self, chunks: AsyncIterable[str]) -> str:
        """Join every message fragment into the full reply (buffered mode)."""
        return "".join([fragment async for fragment in self.iter_text(chunks)])

    def _is_terminal(self, frame: Frame) -> bool:
        return (
            self.dialect is Dialect.SSE
            and frame.kind is FrameKind.DONE
            and frame.raw_data == DONE_SENTINEL
        )

    def _frames(self, payloads: Iterable[str]) -> Iterator[Frame]:
        for payload in payloads:
            frame = self.classify(payload)
            self.stats['total_frames'] += 1

            if frame.kind is FrameKind.ERROR:
                self.state = DecoderState.ERRORED
                error = UpstreamLogicalError.from_frame(frame.data or {})
                logger.error(
                    "Upstream reported an error",
                    kind=error.kind.value,
                    upstream_type=(frame.data or {}).get("type"),
                    status_code=error.status_code,
                )
                raise error

            if frame.kind is FrameKind.UNPARSEABLE:
                self.stats['malformed_frames'] += 1
                logger.warning(
                    "Skipping malformed frame",
                    raw_data=payload[:MAX_LOGGED_PAYLOAD],
                    error=frame.error,
                )
            elif frame.kind is FrameKind.MESSAGE:
                self.stats['message_frames'] += 1
                self.stats['characters'] += len(frame.text or "")
            else:
                self.stats['ignored_frames'] += 1

            yield frame

    @staticmethod
    def classify(payload: str) -> Frame:
        """Classify a single payload without any stream state."""
        if payload == DONE_SENTINEL:
            return Frame(kind=FrameKind.DONE, raw_data=payload)

        try:
            data = parse_payload(payload)
        except MalformedFrameError as e:
            return Frame(kind=FrameKind.UNPARSEABLE, raw_data=payload, error=str(e))

        if not isinstance(data, dict):
            return Frame(kind=FrameKind.DONE, raw_data=payload)

        if data.get("action") == "error":
            return Frame(kind=FrameKind.ERROR, raw_data=payload, data=data)

        message = data.get("message")
        if isinstance(message, str) and message:
            return Frame(
                kind=FrameKind.MESSAGE, raw_data=payload, data=data, text=message
            )

        return Frame(kind=FrameKind.DONE, raw_data=payload, data=data)

    def get_stats(self) -> DecoderStats:
        """Get frame counters for this decode call."""
        return DecoderStats(**self.stats)


def parse_payload(payload: str) -> object:
    """Parse a frame payload as JSON, raising MalformedFrameError on failure."""
    try:
        return json.loads(payload)
    except json.JSONDecodeError as e:
        raise MalformedFrameError(
            f"JSON decode error: {e}", raw_data=payload
        ) from e
