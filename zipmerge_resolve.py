#!/usr/bin/env python3
"""Resolve source specifications into archive entries.

A source specification is a single command-line token, either ``path`` or
``name=path`` (split on the first ``=``). Archives contribute every member
they contain; file sources contribute a single file or every regular file
below a directory.

Naming rules:
  - Explicit prefixes are concatenated with the natural name as-is. No
    separator is inserted, so ``lib/=a.zip`` places ``x`` at ``lib/x`` while
    ``lib=a.zip`` places it at ``libx``.
  - A bare archive token adds members at the archive root.
  - A bare file token adds each file at its own path.

Resolution runs in two passes: every archive specification in command
order, then every file specification in command order. Archive entries
therefore always precede file entries in the returned list.
"""

from __future__ import annotations

import os
import stat
from pathlib import Path
from typing import Iterable, List, NamedTuple, Optional

from zipmerge_entry import (
    ArchiveEntry,
    Entry,
    FileEntry,
    MergeIOError,
    TraversalError,
    open_archive,
    validate_name,
    wrap_os_error,
)

# =============================================================================
# Source specifications
# =============================================================================


class SourceSpec(NamedTuple):
    """A parsed ``name=path`` token. ``prefix`` is None for a bare path."""

    prefix: Optional[str]
    path: str


def parse_source(token: str) -> SourceSpec:
    """Split a ``name=path`` token on its first ``=``."""
    if "=" not in token:
        return SourceSpec(prefix=None, path=token)
    prefix, path = token.split("=", 1)
    return SourceSpec(prefix=prefix, path=path)


# =============================================================================
# Archive sources
# =============================================================================


def expand_archive(prefix: Optional[str], archive_path: str) -> List[ArchiveEntry]:
    """List one entry per member of ``archive_path``, in archive order."""
    prefix = prefix or ""
    entries: List[ArchiveEntry] = []
    with open_archive(archive_path) as archive:
        for info in archive.infolist():
            name = prefix + info.filename
            validate_name(name, f"{info.filename} in {archive_path}", info.filename.endswith("/"))
            entries.append(ArchiveEntry(name=name, archive_path=archive_path, path=info.filename))
    return entries


# =============================================================================
# File sources
# =============================================================================


def _raise_traversal_error(exc: OSError) -> None:
    path = exc.filename if exc.filename is not None else "<unknown>"
    raise TraversalError(f"Failed to traverse {path}: {exc.strerror or exc}") from exc


def walk_files(root: Path) -> Iterable[Path]:
    """Yield every regular file below ``root`` in sorted walk order.

    Symlinks to files are followed; FIFOs, sockets and device nodes are
    skipped.
    """
    for dirpath, dirnames, filenames in os.walk(root, onerror=_raise_traversal_error):
        dirnames.sort()
        for filename in sorted(filenames):
            file_path = Path(dirpath) / filename
            try:
                st = os.stat(file_path)
            except OSError as exc:
                raise wrap_os_error(exc, f"Could not open file {file_path}") from exc
            if stat.S_ISREG(st.st_mode):
                yield file_path


def expand_files(prefix: Optional[str], root: str) -> List[FileEntry]:
    """
    List one entry per regular file at or below ``root``.

    Each name is ``prefix`` followed by the file's path relative to ``root``.
    With no prefix, files are named by their own path.

    Raises:
        NotFoundError: If ``root`` does not exist
        PermissionDeniedError: If ``root`` cannot be inspected
        TraversalError: If walking a directory below ``root`` fails
        InvalidNameError: If a resulting name cannot be stored
        MergeIOError: If ``root`` is neither a directory nor a regular file
    """
    try:
        st = os.stat(root)
    except OSError as exc:
        raise wrap_os_error(exc, f"Could not open file {root}") from exc

    root_path = Path(root)

    if not stat.S_ISDIR(st.st_mode):
        if not stat.S_ISREG(st.st_mode):
            raise MergeIOError(f"Could not add {root}: not a regular file or directory")
        name = prefix if prefix is not None else root_path.as_posix()
        validate_name(name, root)
        return [FileEntry(name=name, path=root)]

    entries: List[FileEntry] = []
    for file_path in walk_files(root_path):
        relative = file_path.relative_to(root_path)
        if prefix is None:
            name = (root_path / relative).as_posix()
        else:
            name = prefix + relative.as_posix()
        validate_name(name, str(file_path))
        entries.append(FileEntry(name=name, path=str(file_path)))
    return entries


# =============================================================================
# Two-pass resolution
# =============================================================================


def resolve_archives(tokens: Iterable[str]) -> List[Entry]:
    entries: List[Entry] = []
    for token in tokens:
        spec = parse_source(token)
        entries = entries + expand_archive(spec.prefix, spec.path)
    return entries


def resolve_files(tokens: Iterable[str]) -> List[Entry]:
    entries: List[Entry] = []
    for token in tokens:
        spec = parse_source(token)
        entries = entries + expand_files(spec.prefix, spec.path)
    return entries


def resolve_sources(archives: Iterable[str], files: Iterable[str]) -> List[Entry]:
    """Resolve all archive tokens, then all file tokens, into one list."""
    return resolve_archives(archives) + resolve_files(files)
