from __future__ import annotations

import io
import zipfile

import pytest

from notekeeper.archive.builder import ZipArchiveBuilder


def _write(builder: ZipArchiveBuilder, name: str, *chunks: bytes) -> None:
    with builder.open_entry(name) as entry:
        for chunk in chunks:
            _ = entry.write(chunk)


def test_builder_writes_one_entry_per_attachment():
    builder = ZipArchiveBuilder()
    _write(builder, "a.png", b"a" * 4, b"a" * 6)
    _write(builder, "b.png", b"b" * 20)
    assert builder.entry_names == ["a.png", "b.png"]

    with zipfile.ZipFile(io.BytesIO(builder.getvalue())) as zf:
        assert zf.testzip() is None
        assert [(i.filename, i.file_size) for i in zf.infolist()] == [("a.png", 10), ("b.png", 20)]
        assert zf.read("b.png") == b"b" * 20
        assert all(i.compress_type == zipfile.ZIP_DEFLATED for i in zf.infolist())


def test_builder_rejects_duplicates_and_writes_after_finish():
    builder = ZipArchiveBuilder()
    _write(builder, "a", b"1")
    with pytest.raises(ValueError):
        _ = builder.open_entry("a")

    data = builder.getvalue()
    assert builder.getvalue() == data
    with pytest.raises(ValueError):
        _ = builder.open_entry("b")


def test_empty_archive_is_a_valid_zip():
    with zipfile.ZipFile(io.BytesIO(ZipArchiveBuilder().getvalue())) as zf:
        assert zf.namelist() == []


def test_builder_keeps_entry_order():
    builder = ZipArchiveBuilder()
    _write(builder, "z.txt", b"z")
    _write(builder, "a.txt", b"a")
    with zipfile.ZipFile(io.BytesIO(builder.getvalue())) as zf:
        assert zf.namelist() == ["z.txt", "a.txt"]
