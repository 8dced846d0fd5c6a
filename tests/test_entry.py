from __future__ import annotations

import io
import os
import stat
import struct
import zipfile
from pathlib import Path

import pytest

import zipmerge_entry
from zipmerge_entry import ArchiveEntry, FileEntry


def _write_one(entry, compress_type: int = zipfile.ZIP_STORED) -> tuple[zipfile.ZipInfo, bytes]:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        entry.write(zf, compress_type)
    with zipfile.ZipFile(io.BytesIO(buf.getvalue())) as zf:
        (info,) = zf.infolist()
        return info, zf.read(info)


def test_file_entry_rewrites_name_time_and_method(tmp_path: Path) -> None:
    src = tmp_path / "payload.bin"
    src.write_bytes(b"x" * 4096)
    os.utime(src, (1_500_000_000, 1_500_000_000))

    info, content = _write_one(FileEntry(name="bin/payload", path=str(src)), zipfile.ZIP_DEFLATED)

    assert info.filename == "bin/payload"
    assert info.date_time == zipmerge_entry.FIXED_DATE_TIME
    assert info.compress_type == zipfile.ZIP_DEFLATED
    assert info.compress_size < info.file_size
    assert content == b"x" * 4096


def test_file_entry_preserves_permission_bits(tmp_path: Path) -> None:
    src = tmp_path / "tool.sh"
    src.write_text("#!/bin/sh\n", encoding="utf-8")
    src.chmod(0o750)

    info, _ = _write_one(FileEntry(name="tool.sh", path=str(src)))

    mode = info.external_attr >> 16
    assert stat.S_ISREG(mode)
    assert stat.S_IMODE(mode) == 0o750


def test_file_entry_missing_file(tmp_path: Path) -> None:
    entry = FileEntry(name="gone", path=str(tmp_path / "gone.txt"))
    with pytest.raises(zipmerge_entry.NotFoundError, match="gone.txt"):
        _write_one(entry)


def test_archive_entry_copies_member(make_zip) -> None:
    archive = make_zip("src.zip", {"x": "hello", "y": "other"}, mode=0o640)

    info, content = _write_one(ArchiveEntry(name="lib/x", archive_path=str(archive), path="x"))

    assert info.filename == "lib/x"
    assert content == b"hello"
    assert info.compress_type == zipfile.ZIP_STORED
    assert info.date_time == zipmerge_entry.FIXED_DATE_TIME
    assert stat.S_IMODE(info.external_attr >> 16) == 0o640


def test_archive_entry_preserves_comment_and_foreign_extra(tmp_path: Path) -> None:
    archive = tmp_path / "src.zip"
    timestamp_extra = struct.pack("<HHBl", 0x5455, 5, 1, 1_500_000_000)
    foreign_extra = struct.pack("<HH", 0xCAFE, 2) + b"ok"
    with zipfile.ZipFile(archive, "w") as zf:
        member = zipfile.ZipInfo("x", date_time=(2019, 1, 1, 0, 0, 0))
        member.comment = b"keep me"
        member.extra = timestamp_extra + foreign_extra
        zf.writestr(member, "data")

    info, _ = _write_one(ArchiveEntry(name="x", archive_path=str(archive), path="x"))

    assert info.comment == b"keep me"
    assert info.extra == foreign_extra


def test_archive_entry_directory_member(make_zip) -> None:
    archive = make_zip("src.zip", {"docs/": b""}, mode=0o755)

    info, _ = _write_one(
        ArchiveEntry(name="share/docs/", archive_path=str(archive), path="docs/"),
        zipfile.ZIP_DEFLATED,
    )

    assert info.is_dir()
    assert info.filename == "share/docs/"
    assert info.file_size == 0


def test_archive_entry_missing_member(make_zip) -> None:
    archive = make_zip("src.zip", {"x": "hello"})
    entry = ArchiveEntry(name="y", archive_path=str(archive), path="y")
    with pytest.raises(zipmerge_entry.CorruptArchiveError, match="y not found in"):
        _write_one(entry)


def test_archive_entry_missing_archive(tmp_path: Path) -> None:
    entry = ArchiveEntry(name="x", archive_path=str(tmp_path / "nope.zip"), path="x")
    with pytest.raises(zipmerge_entry.NotFoundError):
        _write_one(entry)


def test_archive_entry_not_a_zip(tmp_path: Path) -> None:
    bogus = tmp_path / "bogus.zip"
    bogus.write_bytes(b"this is not a zip archive")
    entry = ArchiveEntry(name="x", archive_path=str(bogus), path="x")
    with pytest.raises(zipmerge_entry.CorruptArchiveError, match="bogus.zip"):
        _write_one(entry)


def test_archive_entry_corrupt_data(tmp_path: Path) -> None:
    archive = tmp_path / "src.zip"
    with zipfile.ZipFile(archive, "w") as zf:
        zf.writestr("x", b"A" * 64)
    raw = bytearray(archive.read_bytes())
    offset = raw.index(b"A" * 64)
    raw[offset : offset + 64] = b"B" * 64  # breaks the stored CRC
    archive.write_bytes(bytes(raw))

    entry = ArchiveEntry(name="x", archive_path=str(archive), path="x")
    with pytest.raises(zipmerge_entry.MergeIOError, match=r"Could not copy x in .*src\.zip"):
        _write_one(entry)


def test_strip_extra_keeps_unknown_records_and_tail() -> None:
    ntfs = struct.pack("<HH", 0x000A, 4) + b"\0" * 4
    keep = struct.pack("<HH", 0x7075, 3) + b"abc"
    tail = b"\x01\x02"
    assert zipmerge_entry.strip_extra(ntfs + keep + tail) == keep + tail


def test_wrap_os_error_taxonomy() -> None:
    assert isinstance(
        zipmerge_entry.wrap_os_error(FileNotFoundError(2, "No such file"), "m"),
        zipmerge_entry.NotFoundError,
    )
    assert isinstance(
        zipmerge_entry.wrap_os_error(PermissionError(13, "Permission denied"), "m"),
        zipmerge_entry.PermissionDeniedError,
    )
    err = zipmerge_entry.wrap_os_error(IsADirectoryError(21, "Is a directory"), "Could not open file d")
    assert isinstance(err, zipmerge_entry.MergeIOError)
    assert str(err) == "Could not open file d: Is a directory"


def test_validate_name_rejects_unstorable_names() -> None:
    zipmerge_entry.validate_name("docs/", "docs/ in a.zip", is_dir=True)
    zipmerge_entry.validate_name("bin/tool", "tool.sh")

    with pytest.raises(zipmerge_entry.InvalidNameError, match="Empty entry name"):
        zipmerge_entry.validate_name("", "f.txt")
    with pytest.raises(zipmerge_entry.InvalidNameError, match="not valid UTF-8"):
        zipmerge_entry.validate_name("bad\udcff.txt", "bad.txt")
    with pytest.raises(zipmerge_entry.InvalidNameError, match="ends with '/'"):
        zipmerge_entry.validate_name("lib/", "tool.sh")


def test_file_entry_name_with_trailing_slash_is_rejected(tmp_path: Path) -> None:
    src = tmp_path / "tool.sh"
    src.write_text("#!/bin/sh\necho hi\n", encoding="utf-8")
    buf = io.BytesIO()

    with zipfile.ZipFile(buf, "w") as zf:
        with pytest.raises(zipmerge_entry.InvalidNameError, match="ends with '/'"):
            FileEntry(name="lib/", path=str(src)).write(zf, zipfile.ZIP_STORED)
        assert zf.infolist() == []


def test_archive_file_member_cannot_become_directory(make_zip) -> None:
    archive = make_zip("src.zip", {"x": "hello"})
    entry = ArchiveEntry(name="lib/", archive_path=str(archive), path="x")
    with pytest.raises(zipmerge_entry.InvalidNameError, match="ends with '/'"):
        _write_one(entry)
