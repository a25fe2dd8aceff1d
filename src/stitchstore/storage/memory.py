"""In-memory append-chain storage backend for StitchStore.

Models a distributed store with "appender file" semantics (FastDFS style):
a file is created once with its initial content, can afterwards only be
appended to, and is addressed by a generated path such as
``group1/M00/3F/A2/<id>.bin``. There are no positioned writes, so the merge
engine uses the append-chain strategy against it.

All data is held in memory; useful for tests and ephemeral deployments.
"""

import logging
import uuid

from stitchstore.errors import StorageIOError
from stitchstore.parts.streams import PartStream, iter_chunks
from stitchstore.storage.backend import DestinationHandle

logger = logging.getLogger(__name__)


class MemoryAppendBackend:
    """Append-only storage backend keeping appender files in memory.

    Attributes:
        group: Storage group name prefixed to every full path.
    """

    supports_random_access = False

    def __init__(self, group: str = "group1") -> None:
        self.group = group
        # full path -> file content
        self._files: dict[str, bytearray] = {}

    async def init(self) -> None:
        pass

    async def close(self) -> None:
        self._files.clear()

    def _new_path(self, extension: str) -> str:
        token = uuid.uuid4().hex
        path = f"M00/{token[:2].upper()}/{token[2:4].upper()}/{token[4:]}"
        if extension:
            path = f"{path}.{extension}"
        return path

    async def _drain(self, stream: PartStream, size: int, target: bytearray) -> None:
        received = 0
        async for chunk in iter_chunks(stream):
            target += chunk
            received += len(chunk)
        if received != size:
            raise StorageIOError(
                f"Appender file expected {size} bytes but the stream yielded {received}"
            )

    async def create_from_stream(
        self,
        object_name: str,
        stream: PartStream,
        size: int,
        extension: str,
    ) -> DestinationHandle:
        path = self._new_path(extension)
        full_path = f"{self.group}/{path}"
        content = bytearray()
        await self._drain(stream, size, content)
        self._files[full_path] = content
        logger.debug("Created appender file %s for %s", full_path, object_name)
        return DestinationHandle(object_name=object_name, location=full_path, state={"path": path})

    async def append_to_destination(
        self, handle: DestinationHandle, stream: PartStream, size: int
    ) -> None:
        content = self._files.get(handle.location)
        if content is None:
            raise StorageIOError(f"Appender file does not exist: {handle.location}")
        buffer = bytearray()
        await self._drain(stream, size, buffer)
        content += buffer

    async def commit_destination(self, handle: DestinationHandle) -> None:
        """Appender files are visible as soon as they are created."""
        pass

    async def delete_destination(self, handle: DestinationHandle) -> None:
        self._files.pop(handle.location, None)

    async def report_final_path(self, handle: DestinationHandle) -> tuple[str, str]:
        return handle.state["path"], handle.location

    async def get(self, full_path: str) -> bytes:
        """Read an appender file back.

        Raises:
            FileNotFoundError: If no file exists at ``full_path``.
        """
        content = self._files.get(full_path)
        if content is None:
            raise FileNotFoundError(f"Appender file not found: {full_path}")
        return bytes(content)

    async def exists(self, full_path: str) -> bool:
        return full_path in self._files

    def file_count(self) -> int:
        return len(self._files)
