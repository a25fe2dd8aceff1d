"""Abstract part store protocol for StitchStore."""

from typing import Protocol

from stitchstore.models import PartInfo, UploadPart


class PartStore(Protocol):
    """Protocol defining the part staging interface.

    A part store persists raw part bytes keyed by (upload_id, part_number)
    until the upload is merged or aborted. Implementations must tolerate
    concurrent writes to distinct part numbers of the same upload; writes
    to the same part number are last-write-wins.
    """

    async def init(self) -> None:
        """Initialize the store (create directories, recover from crashes)."""
        ...

    async def close(self) -> None:
        """Release resources held by the store."""
        ...

    async def put_part(self, part: UploadPart) -> PartInfo:
        """Stage a part's bytes, overwriting any part with the same number.

        The content stream is drained in chunks and closed by the store.

        Args:
            part: The part to store. ``part_size`` is the declared size; a
                negative value means "unknown, take whatever the stream has".

        Returns:
            A PartInfo with the stored size and hex MD5.

        Raises:
            IncompleteBody: If the stream length differs from the declared size.
        """
        ...

    async def list_part_infos(self, upload_id: str) -> list[PartInfo]:
        """Summarize the staged parts of an upload, without opening content.

        Args:
            upload_id: The upload identifier.

        Returns:
            PartInfo records in storage order (not sorted).
        """
        ...

    async def list_upload_parts(self, upload_id: str, object_name: str) -> list[UploadPart]:
        """Return the staged parts of an upload with readable content streams.

        The caller owns closing every returned stream.

        Args:
            upload_id: The upload identifier.
            object_name: Target object name of the upload.

        Returns:
            UploadPart records in a deterministic storage order (not sorted).
        """
        ...

    async def delete_parts(self, upload_id: str) -> None:
        """Delete every staged part of an upload.

        Safe to call when parts were never opened or the upload has none.

        Args:
            upload_id: The upload identifier.
        """
        ...
