"""Data model types for StitchStore.

These dataclasses describe an upload session, the parts staged for it, the
caller-facing part summaries, and the result of a successful merge.
"""

from __future__ import annotations

import binascii
import hashlib
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from stitchstore.parts.streams import PartStream


def now_iso() -> str:
    """Return the current UTC time as an S3-style ISO 8601 timestamp."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.000Z")


@dataclass
class UploadSession:
    """An in-progress multipart upload.

    Attributes:
        upload_id: Opaque unique token identifying the upload.
        object_name: Name of the object the parts will be merged into.
        created_at: UTC creation time as ``YYYY-MM-DDTHH:MM:SS.000Z``; sorts
            chronologically as a string.
    """

    upload_id: str
    object_name: str
    created_at: str = ""


@dataclass
class UploadPart:
    """One staged chunk of an upload, with a readable content stream.

    Attributes:
        upload_id: The upload identifier.
        part_number: Caller-assigned positive part number.
        part_size: Size of the part in bytes.
        content: Readable, closeable stream of the part bytes.
        etag: Hex MD5 of the part bytes, when known.
    """

    upload_id: str
    part_number: int
    part_size: int
    content: PartStream
    etag: str = ""

    def info(self) -> PartInfo:
        """Project this part onto a PartInfo summary."""
        return PartInfo(part_number=self.part_number, part_size=self.part_size, etag=self.etag)


@dataclass(frozen=True)
class PartInfo:
    """Summary of a staged part, without its content.

    Attributes:
        part_number: The part number.
        part_size: Size in bytes.
        etag: Hex MD5 of the part bytes ("" if unknown).
        last_modified: ISO 8601 timestamp of the last write.
    """

    part_number: int
    part_size: int
    etag: str = ""
    last_modified: str = ""


@dataclass(frozen=True)
class CompleteMultipart:
    """Result of a successful merge.

    Attributes:
        object_name: Object name as reported by the backend.
        full_path: Full storage path (or URL) as reported by the backend.
        size: Total size of the merged object in bytes.
        etag: Composite ETag of the merged parts ("" if any part lacked one).
    """

    object_name: str
    full_path: str
    size: int = 0
    etag: str = ""


def composite_etag(part_etags: list[str]) -> str:
    """Compute the S3-style composite ETag from individual part ETags.

    The binary MD5 digests of each part are concatenated, hashed again, and
    suffixed with a dash and the number of parts.

    Args:
        part_etags: Hex MD5 strings of each part, in merge order. Quotes
            are tolerated.

    Returns:
        The unquoted composite ETag, e.g. ``"abc123...-3"``, or "" when any
        part ETag is missing.
    """
    if not part_etags or any(not etag for etag in part_etags):
        return ""
    binary_md5s = b""
    for etag in part_etags:
        binary_md5s += binascii.unhexlify(etag.strip('"'))
    return f"{hashlib.md5(binary_md5s).hexdigest()}-{len(part_etags)}"
