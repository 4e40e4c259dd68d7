#!/usr/bin/env python3
"""
Tests for the upstream stream decoder.

Covers both delimiter dialects, chunk boundaries that split lines, malformed
frame recovery, error frames and the decoder state machine.
"""

import json

import httpx
import pytest

from duckchat_relay.upstream.exceptions import (
    StreamReadError,
    UpstreamLogicalError,
    UpstreamTimeoutError,
)
from duckchat_relay.upstream.models import ChatTurn
from duckchat_relay.upstream.streaming import (
    DecoderState,
    Dialect,
    FrameKind,
    LineBuffer,
    StreamDecoder,
)

HELLO_STREAM = 'data: {"message":"Hel"}\n\ndata: {"message":"lo"}\n\ndata: [DONE]\n'


async def chunks_of(*parts: str):
    for part in parts:
        yield part


async def fragments(decoder: StreamDecoder, *parts: str) -> list[str]:
    return [fragment async for fragment in decoder.iter_text(chunks_of(*parts))]


class TestLineBuffer:
    """Test incremental line splitting."""

    def test_retains_partial_line(self):
        buffer = LineBuffer()
        assert buffer.feed("ab\ncd") == ["ab"]
        assert buffer.pending == "cd"
        assert buffer.feed("e\n") == ["cde"]
        assert buffer.pending == ""

    def test_flush_returns_unterminated_tail(self):
        buffer = LineBuffer()
        buffer.feed("data: {}")
        assert buffer.flush() == ["data: {}"]
        assert buffer.flush() == []


class TestSSEDialect:
    """Test "data: " prefixed lines with a [DONE] sentinel."""

    @pytest.mark.asyncio
    async def test_hello_scenario(self):
        decoder = StreamDecoder(Dialect.SSE)
        reply = await decoder.collect_text(chunks_of(HELLO_STREAM))
        assert reply == "Hello"

    @pytest.mark.asyncio
    async def test_n_frames_in_order(self):
        words = ["one ", "two ", "three ", "four"]
        body = "".join(f"data: {json.dumps({'message': w})}\n\n" for w in words)
        body += "data: [DONE]\n"

        result = await fragments(StreamDecoder(Dialect.SSE), body)

        assert result == words

    @pytest.mark.asyncio
    async def test_chunk_boundaries_inside_lines(self):
        """Every single-character split must give the same fragments."""
        result = await fragments(StreamDecoder(Dialect.SSE), *list(HELLO_STREAM))
        assert result == ["Hel", "lo"]

    @pytest.mark.asyncio
    async def test_done_sentinel_stops_decoding(self):
        decoder = StreamDecoder(Dialect.SSE)
        body = HELLO_STREAM + 'data: {"message":"ignored"}\n\n'

        result = await fragments(decoder, body)

        assert result == ["Hel", "lo"]
        assert decoder.state is DecoderState.CLOSED

    @pytest.mark.asyncio
    async def test_non_data_lines_are_ignored(self):
        body = ': keepalive\nevent: message\ndata: {"message":"hi"}\n\n'
        assert await fragments(StreamDecoder(Dialect.SSE), body) == ["hi"]

    @pytest.mark.asyncio
    async def test_final_line_without_newline_is_flushed(self):
        result = await fragments(StreamDecoder(Dialect.SSE), 'data: {"message":"end"}')
        assert result == ["end"]


class TestDuckDuckGoDialect:
    """Test bare "data:" delimiters and the LIMT_CVRSA terminator."""

    @pytest.mark.asyncio
    async def test_hello_scenario(self):
        decoder = StreamDecoder(Dialect.DUCKDUCKGO)
        assert await decoder.collect_text(chunks_of(HELLO_STREAM)) == "Hello"

    @pytest.mark.asyncio
    async def test_terminator_is_never_emitted(self):
        body = (
            'data: {"message":"a"}\n\n'
            "data: [DONE]LIMT_CVRSA\n"
            'data: {"message":"b"}\n\n'
            "data: [DONE]LIMT_CVRSA\n"
        )
        for parts in ([body], list(body)):
            decoder = StreamDecoder(Dialect.DUCKDUCKGO)
            result = await fragments(decoder, *parts)

            assert result == ["a", "b"]
            assert not any("LIMT" in fragment for fragment in result)
            assert decoder.stats["malformed_frames"] == 0

    @pytest.mark.asyncio
    async def test_data_prefix_inside_message_is_kept(self):
        body = (
            'data: {"message": "set data: 1"}\n\n'
            'data: {"message": " and data:2"}\n\n'
            "data: [DONE]LIMT_CVRSA\n"
        )
        for parts in ([body], list(body)):
            decoder = StreamDecoder(Dialect.DUCKDUCKGO)

            assert await decoder.collect_text(chunks_of(*parts)) == "set data: 1 and data:2"
            assert decoder.stats["malformed_frames"] == 0

    @pytest.mark.asyncio
    async def test_terminator_without_trailing_newline(self):
        result = await fragments(
            StreamDecoder(Dialect.DUCKDUCKGO),
            'data: {"message":"x"}\n\ndata: [DONE]LIMT_CVRSA',
        )
        assert result == ["x"]

    @pytest.mark.asyncio
    async def test_payload_split_across_reads(self):
        result = await fragments(
            StreamDecoder(Dialect.DUCKDUCKGO),
            'data: {"mess', 'age":"split"}\n', '\nda', 'ta: {"message":"!"}\n\n',
        )
        assert result == ["split", "!"]

    @pytest.mark.asyncio
    async def test_frames_without_message_are_ignored(self):
        decoder = StreamDecoder(Dialect.DUCKDUCKGO)
        body = 'data: {"role":"assistant"}\n\ndata: {"message":"ok"}\n\n'

        result = await fragments(decoder, body)

        assert result == ["ok"]
        assert decoder.stats["ignored_frames"] == 1


class TestMalformedFrames:
    """Malformed payloads are skipped without aborting the decode."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("dialect", [Dialect.SSE, Dialect.DUCKDUCKGO])
    async def test_skips_invalid_json(self, dialect):
        decoder = StreamDecoder(dialect)
        body = (
            'data: {"message":"a"}\n\n'
            "data: {not json}\n\n"
            'data: {"message":"b"}\n\n'
        )

        result = await fragments(decoder, body)

        assert result == ["a", "b"]
        assert decoder.get_stats().malformed_frames == 1
        assert decoder.state is DecoderState.CLOSED

    @pytest.mark.asyncio
    async def test_unparseable_frame_is_reported_by_decode(self):
        decoder = StreamDecoder(Dialect.SSE)
        frames = [f async for f in decoder.decode(chunks_of("data: oops\n"))]

        assert [f.kind for f in frames] == [FrameKind.UNPARSEABLE]
        assert frames[0].raw_data == "oops"
        assert "JSON decode error" in frames[0].error


class TestErrorFrames:
    """Error frames raise typed failures and stop emission."""

    @pytest.mark.asyncio
    async def test_error_frame_raises_and_stops(self):
        decoder = StreamDecoder(Dialect.DUCKDUCKGO)
        body = (
            'data: {"message":"partial"}\n\n'
            'data: {"action":"error","status":429,"type":"ERR_RATELIMIT"}\n\n'
            'data: {"message":"never"}\n\n'
        )
        seen = []

        with pytest.raises(UpstreamLogicalError) as exc_info:
            async for fragment in decoder.iter_text(chunks_of(body)):
                seen.append(fragment)

        assert seen == ["partial"]
        assert exc_info.value.status_code == 429
        assert exc_info.value.message == "Rate limit exceeded"
        assert decoder.state is DecoderState.ERRORED


class TestDecoderLifecycle:
    """Test the decoder state machine and transport failures."""

    @pytest.mark.asyncio
    async def test_state_transitions(self):
        decoder = StreamDecoder(Dialect.DUCKDUCKGO)
        assert decoder.state is DecoderState.AWAITING_FIRST_BYTE

        stream = decoder.iter_text(chunks_of('data: {"message":"x"}\n\n'))
        assert await anext(stream) == "x"
        assert decoder.state is DecoderState.STREAMING

        assert [f async for f in stream] == []
        assert decoder.state is DecoderState.CLOSED

    @pytest.mark.asyncio
    async def test_decoder_cannot_be_restarted(self):
        decoder = StreamDecoder()
        await decoder.collect_text(chunks_of(HELLO_STREAM))

        with pytest.raises(RuntimeError):
            await decoder.collect_text(chunks_of(HELLO_STREAM))

    @pytest.mark.asyncio
    async def test_read_error_becomes_stream_read_error(self):
        async def broken():
            yield 'data: {"message":"a"}\n\n'
            raise httpx.ReadError("connection reset")

        decoder = StreamDecoder()
        with pytest.raises(StreamReadError):
            await decoder.collect_text(broken())
        assert decoder.state is DecoderState.ERRORED

    @pytest.mark.asyncio
    async def test_read_timeout_becomes_upstream_timeout(self):
        async def stalled():
            yield 'data: {"message":"a"}\n\n'
            raise httpx.ReadTimeout("no data")

        with pytest.raises(UpstreamTimeoutError) as exc_info:
            await StreamDecoder().collect_text(stalled())
        assert exc_info.value.status_code == 504


class TestTurnRoundTrip:
    """A reply fed back as a turn survives JSON encoding unchanged."""

    @pytest.mark.asyncio
    async def test_echo_round_trip(self):
        reply = 'Quotes " and \\ backslashes,\nnew lines and unicode: ü 你好'
        turns = [
            ChatTurn(role="user", content="hi"),
            ChatTurn(role="assistant", content=reply),
            ChatTurn(role="user", content=reply),
        ]

        encoded = json.dumps([turn.model_dump() for turn in turns])
        decoded = [ChatTurn.model_validate(item) for item in json.loads(encoded)]
        assert decoded == turns

        echo = f"data: {json.dumps({'message': decoded[-1].content})}\n\ndata: [DONE]\n"
        decoder = StreamDecoder(Dialect.SSE)
        assert await decoder.collect_text(chunks_of(echo)) == reply
