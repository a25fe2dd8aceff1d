"""Cancellation registry for StitchStore.

Cancellation is cooperative: ``request_cancel`` only records the request,
and the merge engine polls ``need_cancel`` before each part. A part that is
already being transferred always finishes.
"""

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from stitchstore.errors import StorageIOError

if TYPE_CHECKING:
    from stitchstore.config import CancelConfig

logger = logging.getLogger(__name__)


class CancelRegistry(Protocol):
    """Protocol for recording and polling cancel requests."""

    async def request_cancel(self, upload_id: str) -> None:
        """Mark an upload for cancellation. May be called at any time."""
        ...

    async def need_cancel(self, upload_id: str) -> bool:
        """Return True if cancellation was requested. Never blocks."""
        ...

    async def clear(self, upload_id: str) -> None:
        """Forget any cancel request for an upload."""
        ...


class MemoryCancelRegistry:
    """Cancel registry for a single process."""

    def __init__(self) -> None:
        self._cancelled: set[str] = set()

    async def request_cancel(self, upload_id: str) -> None:
        self._cancelled.add(upload_id)
        logger.info("Cancellation requested for upload %s", upload_id)

    async def need_cancel(self, upload_id: str) -> bool:
        return upload_id in self._cancelled

    async def clear(self, upload_id: str) -> None:
        self._cancelled.discard(upload_id)


class FileCancelRegistry:
    """Cancel registry backed by marker files, visible across processes.

    A request is an empty file ``{root}/{upload_id}.cancel``.

    Attributes:
        root: Directory holding the marker files.
    """

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    def _marker(self, upload_id: str) -> Path:
        return self.root / f"{upload_id}.cancel"

    async def request_cancel(self, upload_id: str) -> None:
        """Create the upload's marker file.

        Raises:
            StorageIOError: If the marker cannot be written.
        """
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            self._marker(upload_id).touch()
        except OSError as exc:
            raise StorageIOError(
                f"Failed to record cancel request for upload {upload_id}", cause=exc
            ) from exc
        logger.info("Cancellation requested for upload %s", upload_id)

    async def need_cancel(self, upload_id: str) -> bool:
        return self._marker(upload_id).exists()

    async def clear(self, upload_id: str) -> None:
        try:
            self._marker(upload_id).unlink(missing_ok=True)
        except OSError as exc:
            raise StorageIOError(
                f"Failed to clear cancel request for upload {upload_id}", cause=exc
            ) from exc


def create_cancel_registry(config: "CancelConfig") -> CancelRegistry:
    """Create a cancel registry instance based on configuration.

    Raises:
        ValueError: If the engine is unknown.
    """
    if config.engine == "memory":
        return MemoryCancelRegistry()
    elif config.engine == "file":
        return FileCancelRegistry(config.file_root)
    else:
        raise ValueError(f"Unknown cancel registry engine: {config.engine}")
