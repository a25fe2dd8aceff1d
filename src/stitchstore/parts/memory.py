"""In-memory part store for StitchStore.

Useful for testing and ephemeral deployments. Parts are lost on restart.
"""

import hashlib
import logging

from stitchstore.errors import IncompleteBody, StorageIOError
from stitchstore.models import PartInfo, UploadPart, now_iso
from stitchstore.parts.streams import BytesPartStream, iter_chunks

logger = logging.getLogger(__name__)


class MemoryCapacityError(StorageIOError):
    """Raised when a put would exceed the configured max_size_bytes."""


class MemoryPartStore:
    """Part store that holds every staged part in memory.

    Parts are kept in a dictionary keyed by (upload_id, part_number) with
    values of (data, etag, last_modified).

    Attributes:
        max_size_bytes: Maximum total bytes allowed (0 = unlimited).
    """

    def __init__(self, max_size_bytes: int = 0) -> None:
        self.max_size_bytes = max_size_bytes
        self._parts: dict[tuple[str, int], tuple[bytes, str, str]] = {}
        self._current_size = 0

    async def init(self) -> None:
        pass

    async def close(self) -> None:
        self._parts.clear()
        self._current_size = 0

    def _check_capacity(self, additional_bytes: int) -> None:
        if self.max_size_bytes > 0 and self._current_size + additional_bytes > self.max_size_bytes:
            raise MemoryCapacityError(
                f"Cannot store {additional_bytes} bytes: would exceed "
                f"max_size_bytes ({self._current_size} + {additional_bytes} "
                f"> {self.max_size_bytes})"
            )

    async def put_part(self, part: UploadPart) -> PartInfo:
        chunks = []
        md5 = hashlib.md5()
        try:
            async for chunk in iter_chunks(part.content):
                chunks.append(chunk)
                md5.update(chunk)
        finally:
            await part.content.close()
        data = b"".join(chunks)

        if part.part_size >= 0 and len(data) != part.part_size:
            raise IncompleteBody(expected=part.part_size, received=len(data))

        key = (part.upload_id, part.part_number)
        old_size = len(self._parts[key][0]) if key in self._parts else 0
        net_additional = len(data) - old_size
        if net_additional > 0:
            self._check_capacity(net_additional)

        etag = md5.hexdigest()
        last_modified = now_iso()
        self._parts[key] = (data, etag, last_modified)
        self._current_size += net_additional
        return PartInfo(
            part_number=part.part_number,
            part_size=len(data),
            etag=etag,
            last_modified=last_modified,
        )

    def _entries(self, upload_id: str) -> list[tuple[int, bytes, str, str]]:
        """Return an upload's parts in insertion order."""
        return [
            (pn, data, etag, last_modified)
            for (uid, pn), (data, etag, last_modified) in self._parts.items()
            if uid == upload_id
        ]

    async def list_part_infos(self, upload_id: str) -> list[PartInfo]:
        return [
            PartInfo(part_number=pn, part_size=len(data), etag=etag, last_modified=last_modified)
            for pn, data, etag, last_modified in self._entries(upload_id)
        ]

    async def list_upload_parts(self, upload_id: str, object_name: str) -> list[UploadPart]:
        return [
            UploadPart(
                upload_id=upload_id,
                part_number=pn,
                part_size=len(data),
                content=BytesPartStream(data),
                etag=etag,
            )
            for pn, data, etag, _ in self._entries(upload_id)
        ]

    async def delete_parts(self, upload_id: str) -> None:
        keys_to_delete = [key for key in self._parts if key[0] == upload_id]
        for key in keys_to_delete:
            data, _, _ = self._parts.pop(key)
            self._current_size -= len(data)
