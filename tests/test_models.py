"""Tests for StitchStore data model helpers."""

import hashlib
import re

from stitchstore.models import UploadPart, composite_etag, now_iso
from stitchstore.parts.streams import BytesPartStream


class TestCompositeEtag:
    """Tests for composite_etag()."""

    def test_known_value(self):
        md5s = [hashlib.md5(b"one").hexdigest(), hashlib.md5(b"two").hexdigest()]
        binary = hashlib.md5(b"one").digest() + hashlib.md5(b"two").digest()
        assert composite_etag(md5s) == f"{hashlib.md5(binary).hexdigest()}-2"

    def test_quotes_tolerated(self):
        md5 = hashlib.md5(b"x").hexdigest()
        assert composite_etag([f'"{md5}"']) == composite_etag([md5])

    def test_missing_etag(self):
        assert composite_etag([hashlib.md5(b"x").hexdigest(), ""]) == ""

    def test_empty(self):
        assert composite_etag([]) == ""


class TestModels:
    """Tests for the model dataclasses."""

    def test_now_iso_format(self):
        assert re.fullmatch(r"\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.000Z", now_iso())

    def test_upload_part_info(self):
        part = UploadPart("u1", 4, 3, BytesPartStream(b"abc"), etag="e")
        info = part.info()
        assert (info.part_number, info.part_size, info.etag) == (4, 3, "e")
