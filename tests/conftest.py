"""Shared pytest fixtures for StitchStore tests.

Every fixture builds fresh components in a per-test temp directory, so no
upload, lock or cancel state leaks between tests.
"""

import pytest

from stitchstore.cancel import MemoryCancelRegistry
from stitchstore.locks import LocalLockManager
from stitchstore.merge import MergeEngine
from stitchstore.observability import MergeObserver
from stitchstore.parts.local import LocalPartStore
from stitchstore.storage.local import LocalFileBackend
from stitchstore.storage.memory import MemoryAppendBackend
from stitchstore.uploads import UploadSessionManager


class RecordingObserver(MergeObserver):
    """Observer that records every event it receives, in order."""

    def __init__(self) -> None:
        self.events: list[tuple] = []

    def on_merge_started(self, upload_id, object_name, strategy, part_count):
        self.events.append(("started", upload_id, strategy, part_count))

    def on_part_merged(self, upload_id, part_number, part_size, strategy):
        self.events.append(("part", part_number, part_size))

    def on_cancelled(self, upload_id, parts_merged, strategy):
        self.events.append(("cancelled", parts_merged))

    def on_completed(self, upload_id, result, strategy, duration_ms):
        self.events.append(("completed", result.object_name))

    def on_failed(self, upload_id, error, strategy):
        self.events.append(("failed", type(error).__name__))

    def names(self) -> list[str]:
        return [event[0] for event in self.events]


@pytest.fixture
def observer() -> RecordingObserver:
    return RecordingObserver()


@pytest.fixture
async def part_store(tmp_path):
    """Create and initialize a local part store in a temp directory."""
    store = LocalPartStore(tmp_path / "parts")
    await store.init()
    yield store
    await store.close()


@pytest.fixture
async def local_backend(tmp_path):
    """Create and initialize a local random-access backend."""
    backend = LocalFileBackend(tmp_path / "objects")
    await backend.init()
    yield backend
    await backend.close()


@pytest.fixture
async def append_backend():
    """Create an in-memory append-chain backend."""
    backend = MemoryAppendBackend()
    await backend.init()
    yield backend
    await backend.close()


@pytest.fixture
def locks() -> LocalLockManager:
    return LocalLockManager()


@pytest.fixture
def cancel() -> MemoryCancelRegistry:
    return MemoryCancelRegistry()


@pytest.fixture
def engine(part_store, locks, cancel) -> MergeEngine:
    return MergeEngine(part_store, locks, cancel, chunk_size=4)


@pytest.fixture
def uploads(part_store, engine) -> UploadSessionManager:
    return UploadSessionManager(part_store, engine)
