"""Tests for part content streams."""

import pytest

from stitchstore.parts.streams import (
    BytesPartStream,
    FilePartStream,
    IterablePartStream,
    as_part_stream,
    iter_chunks,
    read_all,
)


class TestBytesPartStream:
    """Tests for BytesPartStream."""

    async def test_sized_reads(self):
        stream = BytesPartStream(b"abcdefg")
        assert await stream.read(3) == b"abc"
        assert await stream.read(3) == b"def"
        assert await stream.read(3) == b"g"
        assert await stream.read(3) == b""

    async def test_read_all_remaining(self):
        stream = BytesPartStream(b"abcdefg")
        await stream.read(2)
        assert await stream.read() == b"cdefg"

    async def test_len(self):
        assert len(BytesPartStream(b"12345")) == 5

    async def test_read_after_close(self):
        stream = BytesPartStream(b"x")
        await stream.close()
        assert stream.closed
        with pytest.raises(ValueError):
            await stream.read()


class TestFilePartStream:
    """Tests for FilePartStream."""

    async def test_opens_lazily(self, tmp_path):
        path = tmp_path / "part"
        path.write_bytes(b"file bytes")
        stream = FilePartStream(path)

        assert not stream.opened
        assert await stream.read(4) == b"file"
        assert stream.opened
        await stream.close()
        assert not stream.opened
        assert stream.closed

    async def test_close_without_open(self, tmp_path):
        stream = FilePartStream(tmp_path / "never-created")
        await stream.close()
        await stream.close()
        assert stream.closed

    async def test_missing_file_fails_on_read(self, tmp_path):
        stream = FilePartStream(tmp_path / "missing")
        with pytest.raises(FileNotFoundError):
            await stream.read()


class TestIterablePartStream:
    """Tests for IterablePartStream."""

    async def test_rechunks_sync_iterable(self):
        stream = IterablePartStream([b"ab", b"cde", b"", b"f"])
        assert [c async for c in iter_chunks(stream, 4)] == [b"abcd", b"ef"]

    async def test_async_iterable(self):
        async def gen():
            yield b"hello "
            yield b"world"

        assert await read_all(IterablePartStream(gen())) == b"hello world"

    async def test_read_negative_drains(self):
        stream = IterablePartStream(iter([b"a", b"b", b"c"]))
        assert await stream.read(1) == b"a"
        assert await stream.read(-1) == b"bc"
        assert await stream.read(-1) == b""

    async def test_close_closes_async_generator(self):
        finished = []

        async def gen():
            try:
                yield b"a"
                yield b"b"
            finally:
                finished.append(True)

        stream = IterablePartStream(gen())
        await stream.read(1)
        await stream.close()
        assert finished == [True]


class TestAsPartStream:
    """Tests for as_part_stream()."""

    async def test_bytes(self):
        stream = as_part_stream(b"raw")
        assert isinstance(stream, BytesPartStream)
        assert await read_all(stream) == b"raw"

    async def test_bytearray(self):
        assert isinstance(as_part_stream(bytearray(b"raw")), BytesPartStream)

    async def test_stream_passthrough(self):
        stream = BytesPartStream(b"x")
        assert as_part_stream(stream) is stream

    async def test_iterable(self):
        stream = as_part_stream([b"a", b"b"])
        assert isinstance(stream, IterablePartStream)
        assert await read_all(stream) == b"ab"
