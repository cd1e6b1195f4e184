"""Tests for the streaming decoder."""

import asyncio
import json
from contextlib import aclosing

import pytest

from app.backend.models import ContentChunk
from app.backend.services.llm.streaming import decode_stream, parse_ndjson_frame


def ndjson(*frames: dict) -> list[str]:
    return [json.dumps(frame) for frame in frames]


async def feed(lines, fail_with: Exception | None = None):
    """Async frame source, optionally failing after the last line."""
    for line in lines:
        await asyncio.sleep(0)
        yield line
    if fail_with is not None:
        raise fail_with


class CloseRecorder:
    """Counts how often the response was closed."""

    def __init__(self):
        self.calls = 0

    async def __call__(self) -> None:
        self.calls += 1


class TestParseNdjsonFrame:
    """Tests for Ollama NDJSON frame parsing."""

    def test_content_frame(self):
        """Test that a content frame becomes a content chunk."""
        chunk = parse_ndjson_frame('{"model": "m", "response": "Hel", "done": false}')
        assert chunk == ContentChunk(content="Hel", done=False)

    def test_done_frame(self):
        """Test that the final frame is terminal."""
        chunk = parse_ndjson_frame('{"response": "", "done": true, "total_duration": 123}')
        assert chunk.done
        assert chunk.is_terminal

    def test_bytes_frame(self):
        """Test that raw bytes are decoded."""
        chunk = parse_ndjson_frame(b'{"response": "\xc3\xbc", "done": false}')
        assert chunk.content == "ü"

    def test_blank_line_is_skipped(self):
        """Test that keep-alive blank lines produce nothing."""
        assert parse_ndjson_frame("") is None
        assert parse_ndjson_frame("   ") is None

    def test_error_frame(self):
        """Test that an error frame becomes an error chunk."""
        chunk = parse_ndjson_frame('{"error": "model runner crashed"}')
        assert chunk.error == "model runner crashed"
        assert chunk.is_terminal

    def test_invalid_json_raises(self):
        """Test that a broken frame raises ValueError."""
        with pytest.raises(ValueError):
            parse_ndjson_frame("{not json")

    def test_non_object_raises(self):
        """Test that a JSON value other than an object is rejected."""
        with pytest.raises(ValueError):
            parse_ndjson_frame("[1, 2, 3]")


class TestDecodeStream:
    """Tests for the producer/consumer stream decoder."""

    @pytest.mark.asyncio
    async def test_content_then_done(self):
        """Test that five content frames and a done frame give six chunks."""
        lines = ndjson(
            *({"response": word, "done": False} for word in ["The ", "quick ", "brown ", "fox ", "jumps"]),
            {"response": "", "done": True},
        )
        close = CloseRecorder()

        chunks = [c async for c in decode_stream(feed(lines), parse_ndjson_frame, close)]

        assert len(chunks) == 6
        assert "".join(c.content for c in chunks) == "The quick brown fox jumps"
        assert chunks[-1].done
        assert not any(c.done for c in chunks[:-1])
        assert close.calls == 1

    @pytest.mark.asyncio
    async def test_frames_after_done_are_ignored(self):
        """Test that the stream ends at the first done chunk."""
        lines = ndjson(
            {"response": "a", "done": False},
            {"response": "", "done": True},
            {"response": "late", "done": False},
        )
        close = CloseRecorder()

        chunks = [c async for c in decode_stream(feed(lines), parse_ndjson_frame, close)]

        assert [c.content for c in chunks] == ["a", ""]
        assert close.calls == 1

    @pytest.mark.asyncio
    async def test_read_failure_becomes_error_chunk(self):
        """Test that a transport failure mid-stream ends with one error chunk."""
        lines = ndjson({"response": "a", "done": False}, {"response": "b", "done": False})
        close = CloseRecorder()

        chunks = [
            c
            async for c in decode_stream(
                feed(lines, fail_with=ConnectionResetError("connection reset")),
                parse_ndjson_frame,
                close,
            )
        ]

        assert [c.content for c in chunks[:2]] == ["a", "b"]
        assert len(chunks) == 3
        assert chunks[-1].error == "connection reset"
        assert close.calls == 1

    @pytest.mark.asyncio
    async def test_malformed_frame_becomes_error_chunk(self):
        """Test that an undecodable frame ends the stream with an error."""
        lines = ['{"response": "a", "done": false}', "{broken"]
        close = CloseRecorder()

        chunks = [c async for c in decode_stream(feed(lines), parse_ndjson_frame, close)]

        assert chunks[0].content == "a"
        assert chunks[-1].error is not None
        assert len(chunks) == 2

    @pytest.mark.asyncio
    async def test_backend_error_frame_ends_stream(self):
        """Test that an error frame is delivered once and ends the stream."""
        lines = ndjson({"response": "a", "done": False}, {"error": "out of memory"}, {"response": "b", "done": False})
        close = CloseRecorder()

        chunks = [c async for c in decode_stream(feed(lines), parse_ndjson_frame, close)]

        assert [c.error for c in chunks] == [None, "out of memory"]

    @pytest.mark.asyncio
    async def test_clean_end_without_done(self):
        """Test that a response ending without a done frame still ends the stream."""
        lines = ndjson({"response": "a", "done": False}, {"response": "b", "done": False})
        close = CloseRecorder()

        chunks = [c async for c in decode_stream(feed(lines), parse_ndjson_frame, close)]

        assert [c.content for c in chunks] == ["a", "b"]
        assert close.calls == 1

    @pytest.mark.asyncio
    async def test_consumer_stops_early(self):
        """Test that closing the stream early stops the producer and closes once."""
        lines = ndjson(*({"response": str(i), "done": False} for i in range(50)))
        close = CloseRecorder()

        async with aclosing(decode_stream(feed(lines), parse_ndjson_frame, close, queue_size=2)) as chunks:
            async for chunk in chunks:
                assert chunk.content == "0"
                break

        assert close.calls == 1

    @pytest.mark.asyncio
    async def test_consumer_cancellation_closes_response(self):
        """Test that cancelling the consuming task still closes the response."""
        never = asyncio.Event()
        close = CloseRecorder()

        async def stalled():
            yield '{"response": "a", "done": false}'
            await never.wait()
            yield '{"response": "", "done": true}'

        received = []

        async def consume():
            async with aclosing(decode_stream(stalled(), parse_ndjson_frame, close)) as chunks:
                async for chunk in chunks:
                    received.append(chunk)

        task = asyncio.create_task(consume())
        while not received:
            await asyncio.sleep(0)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert close.calls == 1
