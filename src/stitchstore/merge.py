"""Merge engine for StitchStore.

Turns the unordered set of staged parts of one upload into a single stored
object, or stops cleanly when the upload is cancelled.

The strategy follows the destination backend's capability:

    - random access: one destination is opened and each part is written at
      its offset. The positioned-transfer primitive counts bytes in 32 bits,
      so every part must be smaller than 4 GiB; oversized parts are
      rejected before anything is written.
    - append chain: the lowest-numbered part creates the destination and
      every following part is appended in order.

Parts are always transferred one at a time in ascending part-number order.
Cancellation is polled before each part. Whatever happens, every part
stream is closed, and a destination that will not be reported as a
success is deleted.
"""

import logging
import os
import time

from stitchstore.cancel import CancelRegistry
from stitchstore.errors import NoPartsUploaded, PartTooLarge, StorageIOError
from stitchstore.locks import LockManager
from stitchstore.models import CompleteMultipart, UploadPart, composite_etag
from stitchstore.observability import LoggingObserver, MergeObserver
from stitchstore.parts.store import PartStore
from stitchstore.parts.streams import CHUNK_SIZE, iter_chunks
from stitchstore.storage.backend import BackendAdapter, DestinationHandle

logger = logging.getLogger(__name__)

# Parts merged by positioned writes must be strictly smaller than 4 GiB.
MAX_RANDOM_ACCESS_PART_SIZE = 1 << 32

RANDOM_ACCESS = "random_access"
APPEND_CHAIN = "append_chain"


def file_extension(object_name: str) -> str:
    """Return the extension of ``object_name`` without the dot ("" if none)."""
    return os.path.splitext(os.path.basename(object_name))[1].lstrip(".")


class MergeEngine:
    """Reconstructs uploaded objects from their staged parts.

    Attributes:
        part_store: Where the parts are staged.
        locks: Per-upload lock manager.
        cancel: Cancellation registry polled between parts.
        chunk_size: Read size used when copying a part.
    """

    def __init__(
        self,
        part_store: PartStore,
        locks: LockManager,
        cancel: CancelRegistry,
        chunk_size: int = CHUNK_SIZE,
    ) -> None:
        self.part_store = part_store
        self.locks = locks
        self.cancel = cancel
        self.chunk_size = chunk_size

    async def merge(
        self,
        upload_id: str,
        object_name: str,
        backend: BackendAdapter,
        observer: MergeObserver | None = None,
    ) -> CompleteMultipart | None:
        """Merge an upload's parts into one object on ``backend``.

        Holds the upload's lock for the whole merge.

        Args:
            upload_id: The upload identifier.
            object_name: The object name to produce.
            backend: Destination backend adapter.
            observer: Receives merge events; defaults to a LoggingObserver.

        Returns:
            The CompleteMultipart result, or None if the merge was cancelled.

        Raises:
            LockError: If the upload lock cannot be acquired.
            NoPartsUploaded: If the upload has no staged parts.
            PartTooLarge: If a random-access merge meets a part >= 4 GiB.
            StorageIOError: If reading or writing bytes fails.
        """
        async with self.locks.lock(upload_id):
            return await self.merge_locked(upload_id, object_name, backend, observer)

    async def merge_locked(
        self,
        upload_id: str,
        object_name: str,
        backend: BackendAdapter,
        observer: MergeObserver | None = None,
    ) -> CompleteMultipart | None:
        """Same as ``merge`` for a caller that already holds the upload's lock."""
        observer = observer or LoggingObserver()
        strategy = RANDOM_ACCESS if backend.supports_random_access else APPEND_CHAIN
        started = time.monotonic()

        parts: list[UploadPart] = []
        handle: DestinationHandle | None = None

        try:
            parts = await self.part_store.list_upload_parts(upload_id, object_name)
            parts.sort(key=lambda p: p.part_number)
            if not parts:
                raise NoPartsUploaded(upload_id)
            if strategy == RANDOM_ACCESS:
                self._check_part_sizes(parts)

            observer.on_merge_started(upload_id, object_name, strategy, len(parts))
            extension = file_extension(object_name)
            offset = 0
            merged = 0

            for part in parts:
                if await self.cancel.need_cancel(upload_id):
                    await self._discard(backend, handle)
                    handle = None
                    observer.on_cancelled(upload_id, merged, strategy)
                    return None

                if strategy == RANDOM_ACCESS:
                    if handle is None:
                        handle = await backend.open_for_random_write(object_name)
                    await self._transfer_at(backend, handle, part, offset)
                    offset += part.part_size
                elif handle is None:
                    handle = await backend.create_from_stream(
                        object_name, part.content, part.part_size, extension
                    )
                else:
                    await backend.append_to_destination(handle, part.content, part.part_size)

                merged += 1
                observer.on_part_merged(upload_id, part.part_number, part.part_size, strategy)

            await backend.commit_destination(handle)
            reported_name, full_path = await backend.report_final_path(handle)
        except Exception as exc:
            await self._discard(backend, handle)
            if isinstance(exc, OSError):
                error = StorageIOError("Merge failed", cause=exc)
                observer.on_failed(upload_id, error, strategy)
                raise error from exc
            observer.on_failed(upload_id, exc, strategy)
            raise
        except BaseException:
            # Task cancellation or interpreter exit: still drop the destination.
            await self._discard(backend, handle)
            logger.warning("Merge of upload %s interrupted", upload_id)
            raise
        finally:
            await self._close_streams(upload_id, parts)

        result = CompleteMultipart(
            object_name=reported_name,
            full_path=full_path,
            size=sum(p.part_size for p in parts),
            etag=composite_etag([p.etag for p in parts]),
        )
        observer.on_completed(upload_id, result, strategy, (time.monotonic() - started) * 1000)
        return result

    @staticmethod
    def _check_part_sizes(parts: list[UploadPart]) -> None:
        for part in parts:
            if part.part_size >= MAX_RANDOM_ACCESS_PART_SIZE:
                raise PartTooLarge(part.part_number, part.part_size, MAX_RANDOM_ACCESS_PART_SIZE)

    async def _transfer_at(
        self,
        backend: BackendAdapter,
        handle: DestinationHandle,
        part: UploadPart,
        offset: int,
    ) -> None:
        """Copy one part into the destination starting at ``offset``."""
        written = 0
        async for chunk in iter_chunks(part.content, self.chunk_size):
            await backend.write_at(handle, offset + written, chunk)
            written += len(chunk)
        if written != part.part_size:
            raise StorageIOError(
                f"Part {part.part_number} yielded {written} bytes, expected {part.part_size}"
            )

    async def _discard(self, backend: BackendAdapter, handle: DestinationHandle | None) -> None:
        """Best-effort deletion of a destination that will not be reported."""
        if handle is None:
            return
        try:
            await backend.delete_destination(handle)
        except Exception:
            logger.warning(
                "Failed to delete partial destination %s", handle.location, exc_info=True
            )

    async def _close_streams(self, upload_id: str, parts: list[UploadPart]) -> None:
        for part in parts:
            try:
                await part.content.close()
            except Exception:
                logger.error(
                    "Failed to close stream of part %d of upload %s",
                    part.part_number, upload_id,
                    exc_info=True,
                )
