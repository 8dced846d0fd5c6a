#!/usr/bin/env python3
"""Archive entries for zipmerge.

An entry is one named blob of bytes destined for the output archive. There
are exactly two kinds:

- ``ArchiveEntry``: a member of another ZIP archive, re-read on write.
- ``FileEntry``: a regular file on disk, opened on write.

Both expose ``name`` (the final path inside the output archive) and
``write(dest, compress_type)``, which streams the content into an open
``zipfile.ZipFile``. Only the name, the compression method and the
modification time are rewritten; every other header field comes from the
source. The fixed timestamp is applied here, just before each header is
written, so no earlier stage depends on time.

SPDX-License-Identifier: Apache-2.0
"""

from __future__ import annotations

import os
import shutil
import struct
import zipfile
import zlib
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

# =============================================================================
# Constants (Normative)
# =============================================================================

# 2010-01-01T05:00:00Z as a ZIP (MS-DOS) date/time tuple.
FIXED_DATE_TIME = (2010, 1, 1, 5, 0, 0)

# Extra fields dropped when copying a header from a source archive.
# Timestamp carriers would leak the source mtime; Zip64 is regenerated by
# the writer from the actual sizes.
STRIPPED_EXTRA_IDS = frozenset(
    {
        0x0001,  # Zip64 extended information
        0x000A,  # NTFS timestamps
        0x5455,  # extended timestamp ("UT")
        0x5855,  # Info-ZIP Unix, original ("UX")
    }
)

COPY_BUFFER_SIZE = 1024 * 1024

_COPY_ERRORS = (
    OSError,
    EOFError,
    RuntimeError,
    NotImplementedError,
    zipfile.BadZipFile,
    zlib.error,
)


# =============================================================================
# Errors
# =============================================================================


class MergeError(Exception):
    """Base class for every failure that aborts a zipmerge run."""


class NotFoundError(MergeError):
    """A source archive or file does not exist."""


class CorruptArchiveError(MergeError):
    """A source archive cannot be read, or lacks an expected entry."""


class PermissionDeniedError(MergeError):
    """A source file or directory is not accessible."""


class MergeIOError(MergeError):
    """Output cannot be written, or copying an entry's bytes failed."""


class TraversalError(MergeError):
    """Walking a source directory failed."""


class InvalidNameError(MergeError):
    """An entry name cannot be stored in the output archive."""


def validate_name(name: str, source: str, is_dir: bool = False) -> None:
    """
    Reject entry names the output archive cannot hold faithfully.

    Raises:
        InvalidNameError: If ``name`` is empty, is not valid UTF-8, or ends
            with ``/`` while ``source`` is not a directory
    """
    if not name:
        raise InvalidNameError(f"Empty entry name for {source!r}")
    try:
        name.encode("utf-8")
    except UnicodeEncodeError as exc:
        raise InvalidNameError(f"Entry name {name!r} for {source!r} is not valid UTF-8") from exc
    if name.endswith("/") and not is_dir:
        raise InvalidNameError(f"Entry name {name!r} for file {source!r} ends with '/'")


def wrap_os_error(exc: OSError, message: str) -> MergeError:
    """Map an ``OSError`` onto the zipmerge error taxonomy."""
    reason = exc.strerror or str(exc)
    if isinstance(exc, FileNotFoundError):
        return NotFoundError(f"{message}: {reason}")
    if isinstance(exc, PermissionError):
        return PermissionDeniedError(f"{message}: {reason}")
    return MergeIOError(f"{message}: {reason}")


def open_archive(archive_path: Union[str, Path]) -> zipfile.ZipFile:
    """Open a source archive for reading, raising zipmerge errors."""
    try:
        return zipfile.ZipFile(archive_path, "r")
    except OSError as exc:
        raise wrap_os_error(exc, f"Could not open archive {archive_path}") from exc
    except zipfile.BadZipFile as exc:
        raise CorruptArchiveError(f"Could not read archive {archive_path}: {exc}") from exc


# =============================================================================
# Header helpers
# =============================================================================


def strip_extra(extra: bytes) -> bytes:
    """Remove timestamp and Zip64 records from a ZIP extra field.

    Records are ``<id:u16><size:u16><data>``. A malformed tail is kept as-is.
    """
    kept = []
    offset = 0
    while offset + 4 <= len(extra):
        header_id, size = struct.unpack("<HH", extra[offset : offset + 4])
        end = offset + 4 + size
        if end > len(extra):
            break
        if header_id not in STRIPPED_EXTRA_IDS:
            kept.append(extra[offset:end])
        offset = end
    kept.append(extra[offset:])
    return b"".join(kept)


def _copy_header(source: zipfile.ZipInfo, name: str, compress_type: int) -> zipfile.ZipInfo:
    header = zipfile.ZipInfo(name, date_time=FIXED_DATE_TIME)
    header.compress_type = compress_type
    header.comment = source.comment
    header.extra = strip_extra(source.extra)
    header.create_system = source.create_system
    header.create_version = source.create_version
    header.extract_version = source.extract_version
    header.internal_attr = source.internal_attr
    header.external_attr = source.external_attr
    header.volume = source.volume
    header.file_size = source.file_size
    return header


def _write_stream(dest: zipfile.ZipFile, header: zipfile.ZipInfo, src, is_dir: bool = False) -> None:
    if is_dir:
        # Directory records carry no data, so there is nothing to deflate.
        header.compress_type = zipfile.ZIP_STORED
        dest.writestr(header, b"")
        return
    with dest.open(header, "w") as dst:
        shutil.copyfileobj(src, dst, COPY_BUFFER_SIZE)


# =============================================================================
# Entry variants
# =============================================================================


@dataclass(frozen=True)
class ArchiveEntry:
    """A member of a source ZIP archive."""

    name: str
    archive_path: str
    path: str

    def find_member(self, source: zipfile.ZipFile) -> Optional[zipfile.ZipInfo]:
        for info in source.infolist():
            if info.filename == self.path:
                return info
        return None

    def write(self, dest: zipfile.ZipFile, compress_type: int) -> None:
        with open_archive(self.archive_path) as source:
            info = self.find_member(source)
            if info is None:
                raise CorruptArchiveError(f"{self.path} not found in {self.archive_path}")

            is_dir = info.filename.endswith("/")
            validate_name(self.name, f"{self.path} in {self.archive_path}", is_dir)
            header = _copy_header(info, self.name, compress_type)
            try:
                if is_dir:
                    _write_stream(dest, header, None, is_dir=True)
                    return
                with source.open(info) as src:
                    _write_stream(dest, header, src)
            except _COPY_ERRORS as exc:
                raise MergeIOError(
                    f"Could not copy {self.path} in {self.archive_path}: {exc}"
                ) from exc


@dataclass(frozen=True)
class FileEntry:
    """A regular file on the local filesystem."""

    name: str
    path: str

    def write(self, dest: zipfile.ZipFile, compress_type: int) -> None:
        validate_name(self.name, self.path)
        try:
            src = open(self.path, "rb")
        except OSError as exc:
            raise wrap_os_error(exc, f"Could not open file {self.path}") from exc

        with src:
            try:
                st = os.fstat(src.fileno())
            except OSError as exc:
                raise wrap_os_error(exc, f"Could not stat file {self.path}") from exc

            header = zipfile.ZipInfo(self.name, date_time=FIXED_DATE_TIME)
            header.compress_type = compress_type
            # Unix mode (type and permission bits) lives in the upper 16 bits.
            header.external_attr = (st.st_mode & 0xFFFF) << 16
            header.file_size = st.st_size
            try:
                _write_stream(dest, header, src)
            except _COPY_ERRORS as exc:
                raise MergeIOError(f"Could not copy file {self.path}: {exc}") from exc


Entry = Union[ArchiveEntry, FileEntry]
