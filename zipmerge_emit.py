#!/usr/bin/env python3
"""Deduplicate, order and write resolved entries into one ZIP archive.

Determinism settings:
  - The first entry resolved for a name wins; later duplicates are dropped.
  - Entries are written in byte-wise lexicographic order of their UTF-8 names.
  - Every entry carries the fixed timestamp from ``zipmerge_entry``.
  - Permission bits come from the sources.

The output is produced by the standard ``zipfile`` writer, so any given
sequence of entries, bytes and compression method always yields the same
archive bytes.
"""

from __future__ import annotations

import contextlib
import sys
import zipfile
from typing import BinaryIO, Iterable, Iterator, List

from zipmerge_entry import Entry, MergeIOError
from zipmerge_resolve import resolve_sources

# Output path meaning "write to standard output".
STDOUT = "-"


def dedupe_entries(entries: Iterable[Entry]) -> List[Entry]:
    """Keep the first entry for each name, preserving order."""
    seen = set()
    kept: List[Entry] = []
    for entry in entries:
        if entry.name in seen:
            continue
        seen.add(entry.name)
        kept.append(entry)
    return kept


def sort_entries(entries: Iterable[Entry]) -> List[Entry]:
    """Sort entries by name (bytewise UTF-8 order)."""
    return sorted(entries, key=lambda e: e.name.encode("utf-8"))


def plan_entries(archives: Iterable[str], files: Iterable[str]) -> List[Entry]:
    """Resolve sources into the unique, ordered list of entries to write."""
    return sort_entries(dedupe_entries(resolve_sources(archives, files)))


@contextlib.contextmanager
def open_output(output: str) -> Iterator[BinaryIO]:
    """Open the destination stream; ``-`` is standard output (never closed)."""
    if output == STDOUT:
        stream = sys.stdout.buffer
        try:
            yield stream
        finally:
            stream.flush()
        return

    try:
        stream = open(output, "wb")
    except OSError as exc:
        raise MergeIOError(f"Could not open output {output}: {exc.strerror or exc}") from exc
    with stream:
        yield stream


def write_archive(
    output: str,
    entries: Iterable[Entry],
    compress: bool = False,
    verbose: bool = False,
) -> List[str]:
    """Write ``entries`` in order to ``output``; return the names written.

    The first failing entry aborts the run. The ZIP writer and the output
    stream are closed on every path; a failed run leaves whatever was
    written so far.
    """
    compress_type = zipfile.ZIP_DEFLATED if compress else zipfile.ZIP_STORED
    written: List[str] = []

    try:
        with open_output(output) as stream, zipfile.ZipFile(stream, "w") as zf:
            for entry in entries:
                if verbose:
                    print(f"adding: {entry.name}", file=sys.stderr)
                entry.write(zf, compress_type)
                written.append(entry.name)
    except OSError as exc:
        # Raised while finalizing: central directory write, flush or close.
        raise MergeIOError(f"Could not write output {output}: {exc.strerror or exc}") from exc

    return written


def build(
    archives: Iterable[str],
    files: Iterable[str],
    output: str = STDOUT,
    compress: bool = False,
    verbose: bool = False,
) -> List[str]:
    """Resolve, merge and write a complete archive."""
    entries = plan_entries(archives, files)
    return write_archive(output, entries, compress=compress, verbose=verbose)
