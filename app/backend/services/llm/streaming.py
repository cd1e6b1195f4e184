"""
Streaming decoder for incremental backend responses.

A background producer reads raw frames from an open response, turns each
one into a ContentChunk and hands it to the consumer through a bounded
queue, so a slow consumer applies backpressure to the producer instead of
letting chunks pile up in memory.
"""

import asyncio
import json
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any, TypeVar

from ...models import ContentChunk

logger = logging.getLogger(__name__)

F = TypeVar("F")

FrameParser = Callable[[F], ContentChunk | None]

# Marks a stream that ended without a terminal frame (clean end-of-stream)
_END = object()


def parse_ndjson_frame(line: str | bytes) -> ContentChunk | None:
    """
    Parse one NDJSON line from an Ollama-style stream.

    Blank keep-alive lines are skipped (None). A frame carrying an
    ``error`` key becomes an error chunk.

    Raises:
        ValueError: If the line is not a JSON object.
    """
    if isinstance(line, bytes):
        line = line.decode("utf-8")
    if not line.strip():
        return None

    frame: Any = json.loads(line)
    if not isinstance(frame, dict):
        raise ValueError(f"Unexpected stream frame: {line[:200]}")

    if frame.get("error"):
        return ContentChunk(error=str(frame["error"]))

    return ContentChunk(
        content=frame.get("response") or "",
        done=bool(frame.get("done", False)),
    )


async def decode_stream(
    frames: AsyncIterator[F],
    parse_frame: FrameParser,
    close: Callable[[], Awaitable[None]],
    queue_size: int = 100,
) -> AsyncIterator[ContentChunk]:
    """
    Republish an incremental response as a lazy sequence of ContentChunk.

    The sequence is finite and single-use: it ends after a done chunk, after
    a single error chunk, or when the response ends cleanly. On any exit
    (exhaustion, consumer break, consumer cancellation) the producer task is
    stopped and ``close`` is awaited exactly once.

    Args:
        frames: Raw frames read from the open response.
        parse_frame: Turns one frame into a chunk, or None to skip it.
        close: Closes the underlying response/connection.
        queue_size: Capacity of the hand-off queue.

    Yields:
        ContentChunk objects in the order the backend produced them.
    """
    queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)

    async def produce() -> None:
        try:
            async for frame in frames:
                chunk = parse_frame(frame)
                if chunk is None:
                    continue
                await queue.put(chunk)
                if chunk.is_terminal:
                    return
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("Stream decode failed: %s", e)
            await queue.put(ContentChunk(error=str(e) or type(e).__name__))
            return
        await queue.put(_END)

    producer = asyncio.create_task(produce())
    try:
        while True:
            item = await queue.get()
            if item is _END:
                break
            yield item
            if item.is_terminal:
                break
    finally:
        producer.cancel()
        await asyncio.gather(producer, return_exceptions=True)
        await close()
