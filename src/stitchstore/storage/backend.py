"""Storage backend adapter protocols for StitchStore.

A backend adapter performs the actual bytes-to-storage operations of a
merge. Every adapter advertises ``supports_random_access``; the merge
engine picks its strategy from that flag:

    - Random-access backends accept positioned writes into one open
      destination (``open_for_random_write`` + ``write_at``).
    - Append-chain backends can only create a destination with its initial
      content and then append to it (``create_from_stream`` +
      ``append_to_destination``).
"""

from dataclasses import dataclass, field
from typing import Any, Protocol

from stitchstore.parts.streams import PartStream


@dataclass
class DestinationHandle:
    """A destination object under construction.

    Attributes:
        object_name: The object name the merge was asked to produce.
        location: Backend-specific locator (temp path, store path, key).
        state: Backend-private bookkeeping (file descriptors, native ids).
    """

    object_name: str
    location: str
    state: dict[str, Any] = field(default_factory=dict)


class BackendAdapter(Protocol):
    """Operations shared by every backend adapter."""

    supports_random_access: bool

    async def init(self) -> None:
        """Initialize the backend (create directories, connect, etc.)."""
        ...

    async def close(self) -> None:
        """Release resources held by the backend."""
        ...

    async def commit_destination(self, handle: DestinationHandle) -> None:
        """Make a fully written destination visible under its final name."""
        ...

    async def delete_destination(self, handle: DestinationHandle) -> None:
        """Remove a destination, committed or not. Idempotent."""
        ...

    async def report_final_path(self, handle: DestinationHandle) -> tuple[str, str]:
        """Return the (object_name, full_path) the backend stored the object as."""
        ...


class RandomAccessBackend(BackendAdapter, Protocol):
    """A backend that accepts writes at arbitrary byte offsets."""

    async def open_for_random_write(self, object_name: str) -> DestinationHandle:
        """Open a new, empty destination for positioned writes.

        Args:
            object_name: The object name to produce.

        Returns:
            A handle for ``write_at`` and the finishing operations.
        """
        ...

    async def write_at(self, handle: DestinationHandle, offset: int, data: bytes) -> None:
        """Write ``data`` into the destination starting at ``offset``."""
        ...


class AppendChainBackend(BackendAdapter, Protocol):
    """A backend that only supports create-with-content followed by appends."""

    async def create_from_stream(
        self,
        object_name: str,
        stream: PartStream,
        size: int,
        extension: str,
    ) -> DestinationHandle:
        """Create the destination with the first part's content.

        Args:
            object_name: The object name to produce.
            stream: Content of the first part.
            size: Number of bytes in ``stream``.
            extension: File extension of ``object_name`` (without the dot).

        Returns:
            A handle for subsequent appends.
        """
        ...

    async def append_to_destination(
        self, handle: DestinationHandle, stream: PartStream, size: int
    ) -> None:
        """Append a part's content to the end of the destination."""
        ...
