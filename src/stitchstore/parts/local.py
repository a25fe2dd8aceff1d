"""Local filesystem part store for StitchStore.

Parts are staged under ``{root}/.parts/{upload_id}/{part_number}`` with a
JSON sidecar ``{part_number}.meta`` holding the part's MD5 and timestamp.

Crash-only design:
    - Atomic writes via temp-fsync-rename pattern.
    - Part bodies are streamed in 64 KB chunks, never buffered whole.
    - Startup cleans orphan temp files left by interrupted writes.
"""

import hashlib
import json
import logging
import os
import shutil
import uuid
from pathlib import Path

from stitchstore.errors import IncompleteBody, StorageIOError
from stitchstore.models import PartInfo, UploadPart, now_iso
from stitchstore.parts.streams import CHUNK_SIZE, FilePartStream, iter_chunks

logger = logging.getLogger(__name__)

_META_SUFFIX = ".meta"


class LocalPartStore:
    """Part store that stages parts on the local filesystem.

    Attributes:
        root: The root directory; parts live under ``{root}/.parts``.
    """

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    @property
    def parts_root(self) -> Path:
        return self.root / ".parts"

    def _upload_dir(self, upload_id: str) -> Path:
        """Return the staging directory for an upload."""
        return self.parts_root / upload_id

    async def init(self) -> None:
        """Create the staging directory and clean up orphan temp files."""
        self.parts_root.mkdir(parents=True, exist_ok=True)
        self._clean_temp_files()
        logger.info("Local part store initialized at %s", self.parts_root)

    def _clean_temp_files(self) -> None:
        """Remove orphan temp files left by interrupted atomic writes."""
        count = 0
        for dirpath, _dirnames, filenames in os.walk(self.parts_root):
            for fname in filenames:
                if ".tmp." in fname:
                    try:
                        os.unlink(os.path.join(dirpath, fname))
                        count += 1
                    except OSError:
                        pass
        if count > 0:
            logger.info("Cleaned %d orphan part temp files on startup", count)

    async def close(self) -> None:
        """No-op for the local part store."""
        pass

    async def put_part(self, part: UploadPart) -> PartInfo:
        """Stream a part to disk using temp-fsync-rename.

        Args:
            part: The part to stage. Its content stream is closed afterwards.

        Returns:
            The PartInfo of the stored part.

        Raises:
            IncompleteBody: If the streamed size differs from ``part_size``.
            StorageIOError: If reading the content or writing the part fails.
        """
        part_dir = self._upload_dir(part.upload_id)
        part_path = part_dir / str(part.part_number)
        meta_path = part_dir / f"{part.part_number}{_META_SUFFIX}"

        suffix = uuid.uuid4().hex[:8]
        tmp = part_path.with_name(f"{part_path.name}.tmp.{suffix}")
        meta_tmp = meta_path.with_name(f"{meta_path.name}.tmp.{suffix}")
        md5 = hashlib.md5()
        size = 0

        try:
            part_dir.mkdir(parents=True, exist_ok=True)
            fd = os.open(str(tmp), os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o644)
            try:
                async for chunk in iter_chunks(part.content, CHUNK_SIZE):
                    os.write(fd, chunk)
                    md5.update(chunk)
                    size += len(chunk)
                os.fsync(fd)
            finally:
                os.close(fd)

            if part.part_size >= 0 and size != part.part_size:
                raise IncompleteBody(expected=part.part_size, received=size)

            info = PartInfo(
                part_number=part.part_number,
                part_size=size,
                etag=md5.hexdigest(),
                last_modified=now_iso(),
            )
            with open(meta_tmp, "w") as fh:
                json.dump({"etag": info.etag, "last_modified": info.last_modified}, fh)
            tmp.rename(part_path)
            meta_tmp.rename(meta_path)
        except OSError as exc:
            self._remove_temp_files(tmp, meta_tmp)
            raise StorageIOError(
                f"Failed to store part {part.part_number} of upload {part.upload_id}",
                cause=exc,
            ) from exc
        except BaseException:
            self._remove_temp_files(tmp, meta_tmp)
            raise
        finally:
            await part.content.close()

        logger.debug(
            "Stored part %d of upload %s (%d bytes)",
            part.part_number, part.upload_id, size,
        )
        return info

    @staticmethod
    def _remove_temp_files(*paths: Path) -> None:
        for path in paths:
            try:
                path.unlink(missing_ok=True)
            except OSError:
                pass

    def _part_files(self, upload_id: str) -> list[tuple[int, Path]]:
        """List (part_number, path) pairs in directory-name order."""
        part_dir = self._upload_dir(upload_id)
        if not part_dir.is_dir():
            return []
        result = []
        for name in sorted(os.listdir(part_dir)):
            if name.isdigit():
                result.append((int(name), part_dir / name))
        return result

    def _read_meta(self, path: Path) -> dict:
        meta_path = path.with_name(f"{path.name}{_META_SUFFIX}")
        try:
            with open(meta_path, "r") as fh:
                return json.load(fh)
        except (OSError, json.JSONDecodeError):
            logger.warning("Missing or invalid part metadata: %s", meta_path)
            return {}

    async def list_part_infos(self, upload_id: str) -> list[PartInfo]:
        infos = []
        for part_number, path in self._part_files(upload_id):
            meta = self._read_meta(path)
            infos.append(
                PartInfo(
                    part_number=part_number,
                    part_size=path.stat().st_size,
                    etag=meta.get("etag", ""),
                    last_modified=meta.get("last_modified", ""),
                )
            )
        return infos

    async def list_upload_parts(self, upload_id: str, object_name: str) -> list[UploadPart]:
        """Return staged parts with lazily-opened file streams.

        Args:
            upload_id: The upload identifier.
            object_name: Target object name (unused by this store).

        Returns:
            UploadPart records in directory-name order.
        """
        parts = []
        for part_number, path in self._part_files(upload_id):
            meta = self._read_meta(path)
            parts.append(
                UploadPart(
                    upload_id=upload_id,
                    part_number=part_number,
                    part_size=path.stat().st_size,
                    content=FilePartStream(path),
                    etag=meta.get("etag", ""),
                )
            )
        return parts

    async def delete_parts(self, upload_id: str) -> None:
        """Remove the upload's staging directory and every file in it."""
        part_dir = self._upload_dir(upload_id)
        if not part_dir.exists():
            return
        shutil.rmtree(part_dir, ignore_errors=True)
        logger.debug("Deleted staged parts of upload %s", upload_id)
