"""Upload session management for StitchStore.

Implements the multipart upload lifecycle:
    - initiate: allocate an upload id bound to an object name
    - upload_part: stage one part (any order, possibly concurrently)
    - list_parts: summarize the staged parts in part-number order
    - complete: merge the parts into the final object
    - abort: cancel any running merge and discard the parts
    - reap_expired: abort uploads that were never completed

Upload ids are UUIDv4 hex strings. Sessions live in memory; staged parts
live in the configured part store.
"""

import logging
import uuid
from collections.abc import AsyncIterable, Iterable
from datetime import datetime, timedelta, timezone

from stitchstore import metrics
from stitchstore.errors import (
    InvalidObjectName,
    InvalidPartNumber,
    MergeInProgress,
    NoSuchUpload,
    StorageIOError,
)
from stitchstore.merge import MergeEngine
from stitchstore.models import CompleteMultipart, PartInfo, UploadPart, UploadSession, now_iso
from stitchstore.observability import MergeObserver
from stitchstore.parts.store import PartStore
from stitchstore.parts.streams import PartStream, as_part_stream
from stitchstore.storage.backend import BackendAdapter

logger = logging.getLogger(__name__)

MAX_PART_NUMBER = 10000
MAX_OBJECT_NAME_BYTES = 1024
# Uploads not completed within 7 days are reaped.
DEFAULT_UPLOAD_TTL_SECONDS = 604800


def validate_object_name(object_name: str) -> None:
    """Check that an object name is usable as a storage path.

    Raises:
        InvalidObjectName: If the name is empty, longer than 1024 bytes,
            contains a NUL byte, is absolute, or has a ``..`` segment.
    """
    if not object_name:
        raise InvalidObjectName(object_name, "Object name must not be empty.")
    if len(object_name.encode("utf-8")) > MAX_OBJECT_NAME_BYTES:
        raise InvalidObjectName(object_name, "Object name is longer than 1024 bytes.")
    if "\x00" in object_name:
        raise InvalidObjectName(object_name, "Object name contains a NUL byte.")
    if object_name.startswith("/"):
        raise InvalidObjectName(object_name, "Object name must be relative.")
    if ".." in object_name.replace("\\", "/").split("/"):
        raise InvalidObjectName(object_name, "Object name must not contain '..' segments.")


class UploadSessionManager:
    """Creates upload sessions and drives them to completion or abortion.

    Attributes:
        part_store: Where parts are staged.
        engine: The merge engine; its lock manager and cancel registry are
            shared with this manager.
        upload_ttl_seconds: Age after which reap_expired aborts an upload.
    """

    def __init__(
        self,
        part_store: PartStore,
        engine: MergeEngine,
        upload_ttl_seconds: int = DEFAULT_UPLOAD_TTL_SECONDS,
    ) -> None:
        self.part_store = part_store
        self.engine = engine
        self.upload_ttl_seconds = upload_ttl_seconds
        self._sessions: dict[str, UploadSession] = {}

    @property
    def locks(self):
        return self.engine.locks

    @property
    def cancel(self):
        return self.engine.cancel

    def _require_session(self, upload_id: str, object_name: str | None = None) -> UploadSession:
        """Return the session, checking the object name when one is given.

        Raises:
            NoSuchUpload: If the upload is unknown or bound to another name.
        """
        session = self._sessions.get(upload_id)
        if session is None:
            raise NoSuchUpload(upload_id)
        if object_name is not None and session.object_name != object_name:
            raise NoSuchUpload(upload_id)
        return session

    async def initiate(self, object_name: str) -> str:
        """Start a new multipart upload.

        Args:
            object_name: Name of the object the parts will be merged into.

        Returns:
            A fresh upload id that no in-flight upload uses.

        Raises:
            InvalidObjectName: If the object name is malformed.
        """
        validate_object_name(object_name)
        upload_id = uuid.uuid4().hex
        while upload_id in self._sessions:
            upload_id = uuid.uuid4().hex

        self._sessions[upload_id] = UploadSession(
            upload_id=upload_id,
            object_name=object_name,
            created_at=now_iso(),
        )
        if metrics.uploads_in_progress is not None:
            metrics.uploads_in_progress.inc()
        logger.info("Initiated upload %s for %s", upload_id, object_name)
        return upload_id

    async def get_session(self, upload_id: str) -> UploadSession:
        """Return the session for ``upload_id``.

        Raises:
            NoSuchUpload: If the upload is unknown.
        """
        return self._require_session(upload_id)

    async def list_uploads(self) -> list[UploadSession]:
        """List in-progress uploads, oldest first."""
        return sorted(self._sessions.values(), key=lambda s: (s.created_at, s.upload_id))

    async def upload_part(
        self,
        upload_id: str,
        part_number: int,
        content: "bytes | PartStream | AsyncIterable[bytes] | Iterable[bytes]",
        part_size: int = -1,
    ) -> PartInfo:
        """Stage one part of an upload.

        Re-uploading a part number replaces the earlier part.

        Args:
            upload_id: The upload identifier.
            part_number: Part number between 1 and 10000.
            content: The part bytes, a PartStream, or an iterable of chunks.
            part_size: Declared size in bytes; -1 if unknown.

        Returns:
            The PartInfo of the stored part.

        Raises:
            NoSuchUpload: If the upload is unknown, or finished while the
                part was being staged.
            InvalidPartNumber: If the part number is out of range.
            IncompleteBody: If the content does not match ``part_size``.
            StorageIOError: If the part store fails.
        """
        self._require_session(upload_id)
        if isinstance(part_number, bool) or not isinstance(part_number, int):
            raise InvalidPartNumber(part_number)
        if part_number < 1 or part_number > MAX_PART_NUMBER:
            raise InvalidPartNumber(part_number)

        stream = as_part_stream(content)
        if part_size < 0 and isinstance(content, (bytes, bytearray, memoryview)):
            part_size = len(content)

        try:
            info = await self.part_store.put_part(
                UploadPart(
                    upload_id=upload_id,
                    part_number=part_number,
                    part_size=part_size,
                    content=stream,
                )
            )
        except StorageIOError:
            if upload_id in self._sessions:
                raise
            info = None
        if upload_id not in self._sessions:
            # Completed or aborted while the part streamed in.
            await self.part_store.delete_parts(upload_id)
            raise NoSuchUpload(upload_id)
        if metrics.parts_stored_total is not None:
            metrics.parts_stored_total.inc()
        return info

    async def list_parts(self, upload_id: str, object_name: str) -> list[PartInfo]:
        """List an upload's staged parts in ascending part-number order.

        Raises:
            NoSuchUpload: If the upload is unknown or bound to another name.
        """
        self._require_session(upload_id, object_name)
        infos = await self.part_store.list_part_infos(upload_id)
        return sorted(infos, key=lambda p: p.part_number)

    async def request_cancel(self, upload_id: str) -> None:
        """Ask a running (or future) merge of this upload to stop.

        Raises:
            NoSuchUpload: If the upload is unknown.
        """
        self._require_session(upload_id)
        await self.cancel.request_cancel(upload_id)

    async def complete(
        self,
        upload_id: str,
        object_name: str,
        backend: BackendAdapter,
        observer: MergeObserver | None = None,
    ) -> CompleteMultipart | None:
        """Merge an upload's parts into the final object.

        The session is checked and finished under the upload's lock, so of
        two concurrent calls only one can merge; the other waits and then
        finds the session gone (or is rejected with MergeInProgress by a
        non-blocking lock manager).

        On success or cancellation the staged parts are deleted and the
        session is forgotten. On failure both are kept so the caller may
        retry.

        Returns:
            The CompleteMultipart result, or None if the merge was cancelled.

        Raises:
            NoSuchUpload: If the upload is unknown or bound to another name.
            LockError: If the upload lock cannot be acquired.
            InputError: If the parts cannot be merged as staged.
            StorageIOError: If reading or writing bytes fails.
        """
        async with self.locks.lock(upload_id):
            self._require_session(upload_id, object_name)
            result = await self.engine.merge_locked(upload_id, object_name, backend, observer)
            await self._finish(upload_id)
        return result

    async def abort(self, upload_id: str) -> None:
        """Abort an upload and discard its parts.

        A merge in progress is asked to stop at its next part boundary; it
        then cleans up after itself.

        Raises:
            NoSuchUpload: If the upload is unknown.
        """
        self._require_session(upload_id)
        await self.cancel.request_cancel(upload_id)
        try:
            async with self.locks.lock(upload_id):
                if upload_id in self._sessions:
                    await self._finish(upload_id)
        except MergeInProgress:
            logger.info(
                "Upload %s is being merged; the merge will stop at the next part",
                upload_id,
            )
            return
        logger.info("Aborted upload %s", upload_id)

    async def reap_expired(self, ttl_seconds: int | None = None) -> list[UploadSession]:
        """Abort uploads initiated more than ``ttl_seconds`` ago.

        Args:
            ttl_seconds: Maximum upload age; defaults to ``upload_ttl_seconds``.

        Returns:
            The sessions that were reaped.
        """
        if ttl_seconds is None:
            ttl_seconds = self.upload_ttl_seconds
        cutoff = datetime.now(timezone.utc) - timedelta(seconds=ttl_seconds)
        cutoff_str = cutoff.strftime("%Y-%m-%dT%H:%M:%S.000Z")

        reaped = []
        for session in list(self._sessions.values()):
            if session.created_at < cutoff_str and session.upload_id in self._sessions:
                await self.abort(session.upload_id)
                reaped.append(session)
        if reaped:
            logger.info("Reaped %d expired uploads", len(reaped))
        return reaped

    async def _finish(self, upload_id: str) -> None:
        """Release every resource of a finished upload."""
        await self.part_store.delete_parts(upload_id)
        await self.cancel.clear(upload_id)
        if self._sessions.pop(upload_id, None) is not None:
            if metrics.uploads_in_progress is not None:
                metrics.uploads_in_progress.dec()
