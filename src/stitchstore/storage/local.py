"""Local filesystem storage backend for StitchStore.

A random-access backend: merged objects are assembled with positioned
writes (``os.pwrite``) into a temp file next to ``{root}/{object_name}``,
then fsync'd and renamed into place on commit.

Crash-only design:
    - Never expose a partially merged object under its final name.
    - Startup cleans orphan temp files in the storage root.
"""

import logging
import os
import uuid
from pathlib import Path

from stitchstore.errors import InvalidObjectName
from stitchstore.storage.backend import DestinationHandle

logger = logging.getLogger(__name__)


class LocalFileBackend:
    """Storage backend that writes merged objects to the local filesystem.

    Attributes:
        root: The root directory for all stored objects.
        web_server_url: Optional URL prefix under which ``root`` is served;
            when set, reported full paths are URLs instead of file paths.
    """

    supports_random_access = True

    def __init__(self, root: str | Path, web_server_url: str = "") -> None:
        self.root = Path(root)
        self.web_server_url = web_server_url

    def _object_path(self, object_name: str) -> Path:
        """Return the filesystem path for an object, refusing to leave root.

        Raises:
            InvalidObjectName: If the name resolves outside the root.
        """
        root = self.root.resolve()
        path = (root / object_name).resolve()
        if path == root or root not in path.parents:
            raise InvalidObjectName(object_name, "Object name escapes the storage root.")
        return path

    async def init(self) -> None:
        """Create the root directory and clean up orphan temp files."""
        self.root.mkdir(parents=True, exist_ok=True)
        self._clean_temp_files()
        logger.info("Local storage backend initialized at %s", self.root)

    def _clean_temp_files(self) -> None:
        count = 0
        for dirpath, _dirnames, filenames in os.walk(self.root):
            for fname in filenames:
                if ".tmp." in fname:
                    try:
                        os.unlink(os.path.join(dirpath, fname))
                        count += 1
                    except OSError:
                        pass
        if count > 0:
            logger.info("Cleaned %d orphan temp files on startup", count)

    async def close(self) -> None:
        """No-op for local filesystem backend."""
        pass

    async def open_for_random_write(self, object_name: str) -> DestinationHandle:
        """Create an empty temp file to merge ``object_name`` into.

        Args:
            object_name: Object name relative to the storage root.

        Returns:
            A handle whose ``location`` is the temp file path.
        """
        dest = self._object_path(object_name)
        dest.parent.mkdir(parents=True, exist_ok=True)
        tmp = dest.with_name(f"{dest.name}.tmp.{uuid.uuid4().hex[:8]}")
        fd = os.open(str(tmp), os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o644)
        return DestinationHandle(
            object_name=object_name,
            location=str(tmp),
            state={"fd": fd, "final_path": str(dest), "committed": False},
        )

    async def write_at(self, handle: DestinationHandle, offset: int, data: bytes) -> None:
        """Write ``data`` at ``offset``, retrying short writes."""
        fd = handle.state["fd"]
        view = memoryview(data)
        while view:
            written = os.pwrite(fd, view, offset)
            view = view[written:]
            offset += written

    def _close_fd(self, handle: DestinationHandle) -> None:
        fd = handle.state.get("fd")
        if fd is not None:
            handle.state["fd"] = None
            os.close(fd)

    async def commit_destination(self, handle: DestinationHandle) -> None:
        """fsync the temp file and atomically rename it to its final path."""
        fd = handle.state["fd"]
        try:
            os.fsync(fd)
        finally:
            self._close_fd(handle)
        os.replace(handle.location, handle.state["final_path"])
        handle.state["committed"] = True

    async def delete_destination(self, handle: DestinationHandle) -> None:
        """Close and remove the temp file, or the committed object."""
        try:
            self._close_fd(handle)
        except OSError:
            logger.warning("Failed to close destination %s", handle.location, exc_info=True)
        target = handle.state["final_path"] if handle.state.get("committed") else handle.location
        Path(target).unlink(missing_ok=True)

    async def report_final_path(self, handle: DestinationHandle) -> tuple[str, str]:
        final_path = Path(handle.state["final_path"])
        if self.web_server_url:
            full_path = f"{self.web_server_url.rstrip('/')}/{handle.object_name.lstrip('/')}"
        else:
            full_path = str(final_path)
        return final_path.name, full_path

    async def get(self, object_name: str) -> bytes:
        """Read a stored object back.

        Raises:
            FileNotFoundError: If the object does not exist.
        """
        return self._object_path(object_name).read_bytes()

    async def exists(self, object_name: str) -> bool:
        return self._object_path(object_name).is_file()
