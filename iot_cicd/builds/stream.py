"""Output sinks for clone progress and build output.

This module handles:
- The write-then-flush sink contract shared by the fetcher and the runner
- Copying a child process pipe into a sink as bytes arrive
- Bridging the blocking pipeline thread to an asyncio HTTP response

The clone and the build script are two producers that write to the same
sink strictly one after the other, never concurrently.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import logging
import threading
from dataclasses import dataclass
from typing import IO, TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from iot_cicd.types import PipelineResult

logger = logging.getLogger(__name__)

# Chunk size for reading child process output (bytes)
READ_CHUNK_SIZE = 4096

# Events a response may fall behind before the writer blocks
STREAM_QUEUE_SIZE = 64

# Seconds between checks whether a blocked writer should give up
PUT_POLL_INTERVAL = 0.5


class OutputSink(Protocol):
    """Append-only byte sink with an explicit flush."""

    def write(self, data: bytes) -> int: ...

    def flush(self) -> None: ...


def copy_output(
    source: IO[bytes],
    sink: OutputSink,
    chunk_size: int = READ_CHUNK_SIZE,
) -> int:
    """Copy a pipe into a sink, flushing after every chunk.

    Reads whatever is available rather than waiting for full chunks, so
    the sink sees output as soon as the producer writes it.

    Args:
        source: Binary readable stream (e.g. Popen.stdout).
        sink: Destination sink.
        chunk_size: Maximum bytes per read.

    Returns:
        Total number of bytes copied.
    """
    total = 0
    read = getattr(source, "read1", source.read)
    while chunk := read(chunk_size):
        sink.write(chunk)
        sink.flush()
        total += len(chunk)
    return total


class FileSink:
    """Sink writing to a binary file object, e.g. sys.stdout.buffer."""

    def __init__(self, fileobj: IO[bytes]) -> None:
        self._fileobj = fileobj

    def write(self, data: bytes) -> int:
        return self._fileobj.write(data)

    def flush(self) -> None:
        self._fileobj.flush()


class TranscriptBuffer:
    """Thread-safe in-memory sink."""

    def __init__(self) -> None:
        self._buffer = bytearray()
        self._lock = threading.Lock()

    def write(self, data: bytes) -> int:
        with self._lock:
            self._buffer.extend(data)
        return len(data)

    def flush(self) -> None:
        pass

    def getvalue(self) -> bytes:
        with self._lock:
            return bytes(self._buffer)

    def take(self) -> bytes:
        """Return the buffered bytes and clear the buffer."""
        with self._lock:
            data = bytes(self._buffer)
            self._buffer.clear()
            return data


@dataclass
class StreamEvent:
    """Event passed from the pipeline thread to the response coroutine.

    Attributes:
        kind: "commit" for the first live output, "chunk" for later
            output, "finish" once the pipeline returned.
        data: Output bytes (commit/chunk) or the held transcript (finish).
        result: Pipeline result, only set for "finish".
    """

    kind: str
    data: bytes = b""
    result: PipelineResult | None = None


class ResponseStream:
    """Sink that feeds a streaming HTTP response from a worker thread.

    Output written through ``transcript`` (clone progress) is held back.
    The first byte written to the stream itself commits the response: the
    held transcript and that byte are delivered together, everything after
    is delivered as it arrives. A pipeline that fails before committing can
    therefore still be answered with a failure status.

    At most ``max_pending`` events wait for the response; a writer that
    gets ahead of the client blocks until the client catches up or the
    response is closed. After close() events are dropped.
    """

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        max_pending: int = STREAM_QUEUE_SIZE,
    ) -> None:
        self._loop = loop
        self._queue: asyncio.Queue[StreamEvent] = asyncio.Queue(maxsize=max_pending)
        self._held = TranscriptBuffer()
        self._lock = threading.Lock()
        self._committed = False
        self._closed = False

    @property
    def transcript(self) -> OutputSink:
        """Sink for output that is held until the response commits."""
        return self._held

    @property
    def committed(self) -> bool:
        return self._committed

    @property
    def closed(self) -> bool:
        return self._closed

    def write(self, data: bytes) -> int:
        if not data:
            return 0
        with self._lock:
            if self._committed:
                self._put(StreamEvent("chunk", data))
            else:
                self._committed = True
                self._put(StreamEvent("commit", self._held.take() + data))
        return len(data)

    def flush(self) -> None:
        # Every write is already handed to the event loop.
        pass

    def finish(self, result: PipelineResult | None) -> None:
        """Signal that the pipeline returned (None if it raised)."""
        with self._lock:
            self._put(StreamEvent("finish", self._held.take(), result))

    async def next_event(self) -> StreamEvent:
        return await self._queue.get()

    def close(self) -> None:
        """Stop delivering events, e.g. after the client went away.

        Must be called on the event loop. Unblocks a waiting writer.
        """
        self._closed = True
        while not self._queue.empty():
            self._queue.get_nowait()

    def _put(self, event: StreamEvent) -> None:
        if self._closed:
            logger.debug("Dropping %s event, response is closed", event.kind)
            return

        put = self._queue.put(event)
        try:
            future = asyncio.run_coroutine_threadsafe(put, self._loop)
        except RuntimeError:
            # Event loop closed under a running build; the build goes on.
            put.close()
            logger.debug("Dropping %s event, event loop is closed", event.kind)
            return

        while True:
            try:
                future.result(timeout=PUT_POLL_INTERVAL)
                return
            except concurrent.futures.TimeoutError:
                if self._closed or self._loop.is_closed():
                    future.cancel()
                    logger.debug("Dropping %s event, response is closed", event.kind)
                    return
            except concurrent.futures.CancelledError:
                logger.debug("Dropping %s event, event loop shut down", event.kind)
                return


__all__ = [
    "READ_CHUNK_SIZE",
    "STREAM_QUEUE_SIZE",
    "FileSink",
    "OutputSink",
    "ResponseStream",
    "StreamEvent",
    "TranscriptBuffer",
    "copy_output",
]
