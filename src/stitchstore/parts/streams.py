"""Readable, closeable part content streams.

A part's content is handed around as a ``PartStream``: an object with an
async ``read(size)`` that returns ``b""`` at end of stream and an async
``close()``. Streams backed by files open lazily, so listing parts acquires
no file handles until the merge actually reads them.
"""

from collections.abc import AsyncIterable, AsyncIterator, Iterable
from pathlib import Path
from typing import BinaryIO, Protocol

# Streaming chunk size: 64 KB
CHUNK_SIZE = 64 * 1024


class PartStream(Protocol):
    """Protocol for a readable part content stream."""

    closed: bool

    async def read(self, size: int = -1) -> bytes:
        """Read up to ``size`` bytes (all remaining if negative).

        Returns:
            The bytes read, or ``b""`` at end of stream.
        """
        ...

    async def close(self) -> None:
        """Release the stream. Safe to call more than once."""
        ...


class BytesPartStream:
    """A part stream over an in-memory bytes buffer."""

    def __init__(self, data: bytes) -> None:
        self._data = memoryview(bytes(data))
        self._pos = 0
        self.closed = False

    def __len__(self) -> int:
        return len(self._data)

    async def read(self, size: int = -1) -> bytes:
        if self.closed:
            raise ValueError("I/O operation on closed part stream")
        if size is None or size < 0:
            end = len(self._data)
        else:
            end = min(self._pos + size, len(self._data))
        chunk = self._data[self._pos:end].tobytes()
        self._pos = end
        return chunk

    async def close(self) -> None:
        self.closed = True


class FilePartStream:
    """A part stream over a file on disk, opened on first read.

    Attributes:
        path: The file being streamed.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._fh: BinaryIO | None = None
        self.closed = False

    @property
    def opened(self) -> bool:
        """Whether the underlying file handle has been acquired."""
        return self._fh is not None

    async def read(self, size: int = -1) -> bytes:
        if self.closed:
            raise ValueError("I/O operation on closed part stream")
        if self._fh is None:
            self._fh = open(self.path, "rb")
        return self._fh.read(size)

    async def close(self) -> None:
        if self._fh is not None:
            self._fh.close()
            self._fh = None
        self.closed = True


class IterablePartStream:
    """Adapts an (async) iterable of byte chunks to a PartStream.

    This is how request bodies and generators are fed to ``put_part``
    without buffering the whole body.
    """

    def __init__(self, chunks: AsyncIterable[bytes] | Iterable[bytes]) -> None:
        if isinstance(chunks, AsyncIterable):
            self._aiter: AsyncIterator[bytes] | None = chunks.__aiter__()
            self._iter = None
        else:
            self._aiter = None
            self._iter = iter(chunks)
        self._buffer = b""
        self._exhausted = False
        self.closed = False

    async def _next_chunk(self) -> bytes:
        try:
            if self._aiter is not None:
                return await self._aiter.__anext__()
            return next(self._iter)
        except (StopAsyncIteration, StopIteration):
            self._exhausted = True
            return b""

    async def read(self, size: int = -1) -> bytes:
        if self.closed:
            raise ValueError("I/O operation on closed part stream")
        if size is None or size < 0:
            parts = [self._buffer]
            self._buffer = b""
            while not self._exhausted:
                parts.append(await self._next_chunk())
            return b"".join(parts)

        while len(self._buffer) < size and not self._exhausted:
            self._buffer += await self._next_chunk()
        chunk, self._buffer = self._buffer[:size], self._buffer[size:]
        return chunk

    async def close(self) -> None:
        if self._aiter is not None and hasattr(self._aiter, "aclose"):
            await self._aiter.aclose()
        self._buffer = b""
        self.closed = True


async def iter_chunks(stream: PartStream, chunk_size: int = CHUNK_SIZE) -> AsyncIterator[bytes]:
    """Yield a stream's bytes in chunks of at most ``chunk_size``.

    Args:
        stream: The part stream to drain.
        chunk_size: Maximum chunk length.

    Yields:
        Non-empty byte chunks until the stream is exhausted.
    """
    while True:
        chunk = await stream.read(chunk_size)
        if not chunk:
            break
        yield chunk


async def read_all(stream: PartStream) -> bytes:
    """Drain a stream into a single bytes object."""
    chunks = []
    async for chunk in iter_chunks(stream):
        chunks.append(chunk)
    return b"".join(chunks)


def as_part_stream(
    content: "bytes | PartStream | AsyncIterable[bytes] | Iterable[bytes]",
) -> PartStream:
    """Wrap caller-supplied part content in a PartStream.

    Bytes become a ``BytesPartStream``, objects that already have ``read``
    pass through unchanged, and anything else is treated as an iterable of
    byte chunks.
    """
    if isinstance(content, (bytes, bytearray, memoryview)):
        return BytesPartStream(bytes(content))
    if hasattr(content, "read") and hasattr(content, "close"):
        return content
    return IterablePartStream(content)
