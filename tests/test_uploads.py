"""Tests for the upload session manager."""

import asyncio

import pytest

from stitchstore.cancel import MemoryCancelRegistry
from stitchstore.errors import (
    IncompleteBody,
    InvalidObjectName,
    InvalidPartNumber,
    MergeInProgress,
    NoPartsUploaded,
    NoSuchUpload,
)
from stitchstore.locks import LocalLockManager
from stitchstore.merge import MergeEngine
from stitchstore.models import CompleteMultipart
from stitchstore.parts.memory import MemoryPartStore
from stitchstore.storage.local import LocalFileBackend
from stitchstore.uploads import (
    MAX_PART_NUMBER,
    UploadSessionManager,
    validate_object_name,
)


class YieldingBackend(LocalFileBackend):
    """Local backend that yields to the event loop on every write.

    ``first_write`` is set once the first chunk has been written, so a test
    can act while a merge is in flight.
    """

    def __init__(self, root) -> None:
        super().__init__(root)
        self.first_write = asyncio.Event()

    async def write_at(self, handle, offset, data):
        await super().write_at(handle, offset, data)
        self.first_write.set()
        await asyncio.sleep(0)


def _stored_files(root) -> list:
    return [p for p in root.rglob("*") if p.is_file()]


class TestValidateObjectName:
    """Tests for object name validation."""

    def test_accepts_nested_name(self):
        validate_object_name("videos/2024/clip.mp4")

    def test_rejects_empty(self):
        with pytest.raises(InvalidObjectName):
            validate_object_name("")

    def test_rejects_too_long(self):
        with pytest.raises(InvalidObjectName, match="1024"):
            validate_object_name("a" * 1025)

    def test_accepts_max_length(self):
        validate_object_name("a" * 1024)

    def test_length_counts_utf8_bytes(self):
        with pytest.raises(InvalidObjectName):
            validate_object_name("é" * 513)

    def test_rejects_nul(self):
        with pytest.raises(InvalidObjectName):
            validate_object_name("bad\x00name")

    def test_rejects_absolute(self):
        with pytest.raises(InvalidObjectName):
            validate_object_name("/etc/passwd")

    def test_rejects_parent_segment(self):
        with pytest.raises(InvalidObjectName):
            validate_object_name("a/../../b")

    def test_allows_dots_inside_segment(self):
        validate_object_name("a/..b/c..d")


class TestInitiate:
    """Tests for UploadSessionManager.initiate()."""

    async def test_returns_unique_ids(self, uploads):
        ids = {await uploads.initiate("obj.bin") for _ in range(20)}
        assert len(ids) == 20

    async def test_session_recorded(self, uploads):
        upload_id = await uploads.initiate("obj.bin")
        session = await uploads.get_session(upload_id)
        assert session.object_name == "obj.bin"
        assert session.created_at.endswith("Z")

    async def test_invalid_name_rejected(self, uploads):
        with pytest.raises(InvalidObjectName):
            await uploads.initiate("")
        assert await uploads.list_uploads() == []

    async def test_list_uploads(self, uploads):
        first = await uploads.initiate("a.bin")
        second = await uploads.initiate("b.bin")
        listed = [s.upload_id for s in await uploads.list_uploads()]
        assert set(listed) == {first, second}


class TestUploadPart:
    """Tests for UploadSessionManager.upload_part()."""

    async def test_unknown_upload(self, uploads):
        with pytest.raises(NoSuchUpload):
            await uploads.upload_part("nope", 1, b"data")

    @pytest.mark.parametrize("part_number", [0, -1, MAX_PART_NUMBER + 1, True, 1.5])
    async def test_invalid_part_number(self, uploads, part_number):
        upload_id = await uploads.initiate("obj.bin")
        with pytest.raises(InvalidPartNumber):
            await uploads.upload_part(upload_id, part_number, b"data")

    async def test_boundary_part_numbers(self, uploads):
        upload_id = await uploads.initiate("obj.bin")
        await uploads.upload_part(upload_id, 1, b"a")
        await uploads.upload_part(upload_id, MAX_PART_NUMBER, b"z")
        numbers = [p.part_number for p in await uploads.list_parts(upload_id, "obj.bin")]
        assert numbers == [1, MAX_PART_NUMBER]

    async def test_returns_part_info(self, uploads):
        upload_id = await uploads.initiate("obj.bin")
        info = await uploads.upload_part(upload_id, 3, b"hello")
        assert info.part_number == 3
        assert info.part_size == 5
        assert info.etag == "5d41402abc4b2a76b9719d911017c592"

    async def test_iterable_content(self, uploads):
        upload_id = await uploads.initiate("obj.bin")
        info = await uploads.upload_part(upload_id, 1, [b"ab", b"cd"], part_size=4)
        assert info.part_size == 4

    async def test_async_iterable_content(self, uploads):
        async def body():
            yield b"chunk-1"
            yield b"chunk-2"

        upload_id = await uploads.initiate("obj.bin")
        info = await uploads.upload_part(upload_id, 1, body())
        assert info.part_size == 14

    async def test_declared_size_mismatch(self, uploads):
        upload_id = await uploads.initiate("obj.bin")
        with pytest.raises(IncompleteBody):
            await uploads.upload_part(upload_id, 1, [b"abc"], part_size=10)
        assert await uploads.list_parts(upload_id, "obj.bin") == []

    async def test_reupload_replaces(self, uploads):
        upload_id = await uploads.initiate("obj.bin")
        await uploads.upload_part(upload_id, 1, b"old-content")
        await uploads.upload_part(upload_id, 1, b"new")
        parts = await uploads.list_parts(upload_id, "obj.bin")
        assert len(parts) == 1
        assert parts[0].part_size == 3

    async def test_concurrent_uploads(self, uploads):
        upload_id = await uploads.initiate("obj.bin")
        await asyncio.gather(
            *(uploads.upload_part(upload_id, n, bytes([n]) * n) for n in range(1, 11))
        )
        parts = await uploads.list_parts(upload_id, "obj.bin")
        assert [p.part_size for p in parts] == list(range(1, 11))

    async def test_aborted_while_streaming(self, uploads, part_store):
        """A part that finishes after its upload was aborted is discarded."""
        upload_id = await uploads.initiate("obj.bin")

        async def body():
            yield b"first"
            await uploads.abort(upload_id)
            yield b"second"

        with pytest.raises(NoSuchUpload):
            await uploads.upload_part(upload_id, 1, body())

        assert not (part_store.parts_root / upload_id).exists()

    async def test_aborted_while_streaming_memory(self):
        store = MemoryPartStore()
        uploads = UploadSessionManager(
            store, MergeEngine(store, LocalLockManager(), MemoryCancelRegistry())
        )
        upload_id = await uploads.initiate("obj.bin")

        async def body():
            yield b"first"
            await uploads.abort(upload_id)
            yield b"second"

        with pytest.raises(NoSuchUpload):
            await uploads.upload_part(upload_id, 1, body())

        assert await store.list_part_infos(upload_id) == []


class TestListParts:
    """Tests for UploadSessionManager.list_parts()."""

    async def test_sorted_by_part_number(self, uploads):
        upload_id = await uploads.initiate("obj.bin")
        for n in (12, 3, 1, 7):
            await uploads.upload_part(upload_id, n, b"x")
        numbers = [p.part_number for p in await uploads.list_parts(upload_id, "obj.bin")]
        assert numbers == [1, 3, 7, 12]

    async def test_empty(self, uploads):
        upload_id = await uploads.initiate("obj.bin")
        assert await uploads.list_parts(upload_id, "obj.bin") == []

    async def test_wrong_object_name(self, uploads):
        upload_id = await uploads.initiate("obj.bin")
        with pytest.raises(NoSuchUpload):
            await uploads.list_parts(upload_id, "other.bin")


class TestComplete:
    """Tests for UploadSessionManager.complete()."""

    async def test_end_to_end(self, uploads, part_store, local_backend):
        upload_id = await uploads.initiate("final.bin")
        await uploads.upload_part(upload_id, 2, b"HELLOHELLO")
        await uploads.upload_part(upload_id, 1, b"AAAAA")
        await uploads.upload_part(upload_id, 3, b"ZZZ")

        result = await uploads.complete(upload_id, "final.bin", local_backend)

        assert isinstance(result, CompleteMultipart)
        assert result.size == 18
        assert await local_backend.get("final.bin") == b"AAAAAHELLOHELLOZZZ"
        assert not (part_store.parts_root / upload_id).exists()
        with pytest.raises(NoSuchUpload):
            await uploads.get_session(upload_id)

    async def test_end_to_end_append_chain(self, uploads, append_backend):
        upload_id = await uploads.initiate("final.bin")
        await uploads.upload_part(upload_id, 2, b"HELLOHELLO")
        await uploads.upload_part(upload_id, 1, b"AAAAA")
        await uploads.upload_part(upload_id, 3, b"ZZZ")

        result = await uploads.complete(upload_id, "final.bin", append_backend)

        assert await append_backend.get(result.full_path) == b"AAAAAHELLOHELLOZZZ"

    async def test_wrong_object_name(self, uploads, local_backend):
        upload_id = await uploads.initiate("obj.bin")
        await uploads.upload_part(upload_id, 1, b"x")
        with pytest.raises(NoSuchUpload):
            await uploads.complete(upload_id, "other.bin", local_backend)

    async def test_no_parts_keeps_session(self, uploads, local_backend):
        upload_id = await uploads.initiate("obj.bin")
        with pytest.raises(NoPartsUploaded):
            await uploads.complete(upload_id, "obj.bin", local_backend)
        assert (await uploads.get_session(upload_id)).object_name == "obj.bin"

    async def test_cancel_requested_before_complete(self, uploads, local_backend):
        upload_id = await uploads.initiate("obj.bin")
        await uploads.upload_part(upload_id, 1, b"x")
        await uploads.request_cancel(upload_id)

        result = await uploads.complete(upload_id, "obj.bin", local_backend)

        assert result is None
        assert _stored_files(local_backend.root) == []
        assert await uploads.list_uploads() == []
        assert not await uploads.cancel.need_cancel(upload_id)

    async def test_concurrent_complete_blocking(self, uploads, tmp_path):
        """Two completes on one upload: one merges, the other finds it gone."""
        backend = YieldingBackend(tmp_path / "objects")
        await backend.init()
        upload_id = await uploads.initiate("race.bin")
        for n in (1, 2, 3):
            await uploads.upload_part(upload_id, n, b"data")

        results = await asyncio.gather(
            uploads.complete(upload_id, "race.bin", backend),
            uploads.complete(upload_id, "race.bin", backend),
            return_exceptions=True,
        )

        successes = [r for r in results if isinstance(r, CompleteMultipart)]
        failures = [r for r in results if isinstance(r, Exception)]
        assert len(successes) == 1
        assert len(failures) == 1
        assert isinstance(failures[0], NoSuchUpload)
        assert [f.name for f in _stored_files(backend.root)] == ["race.bin"]
        assert await backend.get("race.bin") == b"data" * 3

    async def test_concurrent_complete_non_blocking(self, part_store, cancel, tmp_path):
        """With a non-blocking lock the second complete is rejected outright."""
        engine = MergeEngine(part_store, LocalLockManager(blocking=False), cancel)
        uploads = UploadSessionManager(part_store, engine)
        backend = YieldingBackend(tmp_path / "objects")
        await backend.init()
        upload_id = await uploads.initiate("race.bin")
        await uploads.upload_part(upload_id, 1, b"a" * 10)

        results = await asyncio.gather(
            uploads.complete(upload_id, "race.bin", backend),
            uploads.complete(upload_id, "race.bin", backend),
            return_exceptions=True,
        )

        assert isinstance(results[0], CompleteMultipart)
        assert isinstance(results[1], MergeInProgress)
        assert results[1].code == "MergeInProgress"

    async def test_complete_twice(self, uploads, local_backend):
        upload_id = await uploads.initiate("obj.bin")
        await uploads.upload_part(upload_id, 1, b"x")
        await uploads.complete(upload_id, "obj.bin", local_backend)
        with pytest.raises(NoSuchUpload):
            await uploads.complete(upload_id, "obj.bin", local_backend)


class TestAbort:
    """Tests for UploadSessionManager.abort()."""

    async def test_abort_discards_parts(self, uploads, part_store):
        upload_id = await uploads.initiate("obj.bin")
        await uploads.upload_part(upload_id, 1, b"x")

        await uploads.abort(upload_id)

        assert not (part_store.parts_root / upload_id).exists()
        with pytest.raises(NoSuchUpload):
            await uploads.get_session(upload_id)

    async def test_abort_unknown(self, uploads):
        with pytest.raises(NoSuchUpload):
            await uploads.abort("missing")

    async def test_abort_during_merge(self, uploads, part_store, tmp_path):
        """Aborting mid-merge stops at the next part and deletes the partial file."""
        backend = YieldingBackend(tmp_path / "objects")
        await backend.init()
        upload_id = await uploads.initiate("big.bin")
        for n in (1, 2, 3):
            await uploads.upload_part(upload_id, n, b"0123456789")

        merge_task = asyncio.create_task(uploads.complete(upload_id, "big.bin", backend))
        await backend.first_write.wait()
        await uploads.abort(upload_id)
        result = await merge_task

        assert result is None
        assert _stored_files(backend.root) == []
        assert await uploads.list_uploads() == []
        assert not (part_store.parts_root / upload_id).exists()

    async def test_abort_with_non_blocking_lock(self, part_store, cancel, tmp_path):
        """A non-blocking abort leaves cleanup to the running merge."""
        engine = MergeEngine(part_store, LocalLockManager(blocking=False), cancel)
        uploads = UploadSessionManager(part_store, engine)
        backend = YieldingBackend(tmp_path / "objects")
        await backend.init()
        upload_id = await uploads.initiate("big.bin")
        for n in (1, 2):
            await uploads.upload_part(upload_id, n, b"0123456789")

        merge_task = asyncio.create_task(uploads.complete(upload_id, "big.bin", backend))
        await backend.first_write.wait()
        await uploads.abort(upload_id)

        assert await merge_task is None
        assert await uploads.list_uploads() == []


class TestReapExpired:
    """Tests for UploadSessionManager.reap_expired()."""

    async def test_reaps_old_sessions(self, uploads, part_store):
        old_id = await uploads.initiate("old.bin")
        new_id = await uploads.initiate("new.bin")
        await uploads.upload_part(old_id, 1, b"x")
        (await uploads.get_session(old_id)).created_at = "2000-01-01T00:00:00.000Z"

        reaped = await uploads.reap_expired(ttl_seconds=3600)

        assert [s.upload_id for s in reaped] == [old_id]
        assert [s.upload_id for s in await uploads.list_uploads()] == [new_id]
        assert not (part_store.parts_root / old_id).exists()

    async def test_nothing_to_reap(self, uploads):
        await uploads.initiate("fresh.bin")
        assert await uploads.reap_expired() == []
