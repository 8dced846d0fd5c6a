#!/usr/bin/env python3
"""Create a reproducible ZIP archive from files, directories and other archives.

Strips timestamps and preserves Unix permissions.

Usage:
    # Merge two archives and a directory into out.zip
    python zipmerge.py -a base.zip -a lib/=extra.zip -f assets/ -o out.zip

    # Add a single file under a new name, deflated, to standard output
    python zipmerge.py -f bin/tool=build/tool -x > out.zip

Exit codes:
    0 = Archive written
    1 = A source could not be resolved or written
    2 = Invalid arguments
"""

from __future__ import annotations

import argparse
import sys
from typing import List, Optional

from zipmerge_emit import STDOUT, build, plan_entries
from zipmerge_entry import MergeError


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="zipmerge",
        description=(
            "Create a zip archive from files, directories, or other archives. "
            "Strips timestamps. Preserves Unix permissions."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s -a base.zip -f assets/ -o out.zip   # Merge an archive and a directory
  %(prog)s -a lib/=extra.zip -o out.zip        # Merge an archive under lib/
  %(prog)s -f bin/tool=build/tool -x > out.zip # Add one renamed file, deflated
        """,
    )

    parser.add_argument(
        "-a",
        "--archive",
        action="append",
        default=[],
        metavar="SPEC",
        help=(
            "Zip archive to merge. Add to the root by default; "
            "use name=path to add files to name instead."
        ),
    )
    parser.add_argument(
        "-f",
        "--file",
        action="append",
        default=[],
        metavar="SPEC",
        help=(
            "File or directory of files to add. Adds using the specified path; "
            "use name=path to add files to name instead."
        ),
    )
    parser.add_argument("-o", "--output", default=STDOUT, help="Archive output (default: stdout)")
    parser.add_argument("-x", "--compress", action="store_true", help="Deflate contents")
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Report each entry on stderr as it is written",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print the entry names that would be written, in order, and exit",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point."""
    args = _build_parser().parse_args(argv)

    try:
        if args.dry_run:
            for entry in plan_entries(args.archive, args.file):
                print(entry.name)
            return 0

        build(
            args.archive,
            args.file,
            output=args.output,
            compress=args.compress,
            verbose=args.verbose,
        )
        return 0

    except MergeError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
