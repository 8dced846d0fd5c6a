#!/usr/bin/env python3
"""CI validation script for zipmerge.

This script validates:
1. All Python tools compile successfully
2. Two builds of the same sources are byte-identical, whatever the mtimes
3. Archive-sourced entries win over same-named file-sourced entries
4. Every written entry carries the fixed timestamp and is unique

Usage:
    python ci_validate.py                    # Run all validations
    python ci_validate.py --verbose          # Show detailed output

Exit codes:
    0 = All validations passed
    1 = One or more validations failed
"""

from __future__ import annotations

import argparse
import hashlib
import os
import pathlib
import subprocess
import sys
import tempfile
import zipfile
from dataclasses import dataclass
from typing import List, Optional

# =============================================================================
# Configuration
# =============================================================================

SCRIPT_DIR = pathlib.Path(__file__).parent.resolve()

PYTHON_TOOLS = [
    "zipmerge_entry.py",
    "zipmerge_resolve.py",
    "zipmerge_emit.py",
    "zipmerge.py",
]


# =============================================================================
# Validation result tracking
# =============================================================================


@dataclass
class ValidationResult:
    name: str
    passed: bool
    message: str
    details: Optional[str] = None


class ValidationReport:
    def __init__(self):
        self.results: List[ValidationResult] = []

    def add(self, name: str, passed: bool, message: str, details: Optional[str] = None):
        self.results.append(ValidationResult(name, passed, message, details))

    def passed(self) -> bool:
        return all(r.passed for r in self.results)

    def print_report(self, verbose: bool = False):
        print("\n" + "=" * 70)
        print("ZIPMERGE CI VALIDATION REPORT")
        print("=" * 70)

        passed = [r for r in self.results if r.passed]
        failed = [r for r in self.results if not r.passed]

        if failed:
            print(f"\nFAILED ({len(failed)}):\n")
            for r in failed:
                print(f"  • {r.name}: {r.message}")
                if r.details:
                    for line in r.details.split("\n"):
                        print(f"      {line}")

        if verbose and passed:
            print(f"\nPASSED ({len(passed)}):\n")
            for r in passed:
                print(f"  • {r.name}: {r.message}")

        print("\n" + "-" * 70)
        if self.passed():
            print(f"RESULT: ALL {len(self.results)} VALIDATIONS PASSED")
        else:
            print(f"RESULT: {len(failed)}/{len(self.results)} VALIDATIONS FAILED")
        print("-" * 70 + "\n")


# =============================================================================
# Fixtures
# =============================================================================


def _sha256(path: pathlib.Path) -> str:
    return hashlib.sha256(path.read_bytes()).hexdigest()


def _write_sources(root: pathlib.Path, mtime: int) -> tuple[pathlib.Path, pathlib.Path]:
    """Create a source directory and a source archive under ``root``."""
    tree = root / "tree"
    (tree / "sub").mkdir(parents=True)
    (tree / "a.txt").write_text("from file\n", encoding="utf-8")
    (tree / "sub" / "b.txt").write_text("nested\n", encoding="utf-8")
    script = tree / "run.sh"
    script.write_text("#!/bin/sh\necho hi\n", encoding="utf-8")
    script.chmod(0o755)
    for path in (tree / "a.txt", tree / "sub" / "b.txt", script):
        os.utime(path, (mtime, mtime))

    archive = root / "src.zip"
    with zipfile.ZipFile(archive, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        zf.writestr(zipfile.ZipInfo("a.txt", date_time=(2021, 6, 1, 12, 0, 0)), "from archive\n")
        zf.writestr(zipfile.ZipInfo("lib/c.txt", date_time=(2022, 3, 4, 5, 6, 7)), "lib\n")
    return tree, archive


# =============================================================================
# Validation functions
# =============================================================================


def validate_python_compilation(report: ValidationReport):
    """Validate all Python tools compile without syntax errors."""
    for tool in PYTHON_TOOLS:
        tool_path = SCRIPT_DIR / tool
        if not tool_path.exists():
            report.add(f"compile:{tool}", False, f"File not found: {tool}")
            continue

        result = subprocess.run(
            [sys.executable, "-m", "py_compile", str(tool_path)],
            capture_output=True,
            text=True,
        )

        if result.returncode == 0:
            report.add(f"compile:{tool}", True, "Compiles successfully")
        else:
            report.add(
                f"compile:{tool}",
                False,
                "Compilation failed",
                result.stderr.strip(),
            )


def validate_reproducibility(report: ValidationReport):
    """Build the same sources twice with different mtimes and compare bytes."""
    import zipmerge_emit

    digests = []
    with tempfile.TemporaryDirectory() as tmp:
        for run, mtime in enumerate((1_000_000_000, 1_700_000_000)):
            run_dir = pathlib.Path(tmp) / f"run{run}"
            tree, archive = _write_sources(run_dir, mtime)
            out = pathlib.Path(tmp) / f"out{run}.zip"
            # Relative sources keep entry names identical between runs.
            cwd = os.getcwd()
            os.chdir(run_dir)
            try:
                zipmerge_emit.build([archive.name], [f"={tree.name}"], output=str(out), compress=True)
            finally:
                os.chdir(cwd)
            digests.append(_sha256(out))

    if digests[0] == digests[1]:
        report.add("determinism", True, f"Builds identical: sha256:{digests[0][:16]}...")
    else:
        report.add(
            "determinism",
            False,
            "Builds differ",
            f"First:  sha256:{digests[0]}\nSecond: sha256:{digests[1]}",
        )


def validate_archive_metadata(report: ValidationReport):
    """Check precedence, uniqueness and timestamps of a merged archive."""
    import zipmerge_emit
    from zipmerge_entry import FIXED_DATE_TIME

    with tempfile.TemporaryDirectory() as tmp:
        tree, archive = _write_sources(pathlib.Path(tmp), 1_600_000_000)
        out = pathlib.Path(tmp) / "out.zip"
        zipmerge_emit.build([str(archive)], [f"={tree}"], output=str(out))

        with zipfile.ZipFile(out) as zf:
            infos = zf.infolist()
            names = [i.filename for i in infos]
            a_txt = zf.read("a.txt").decode("utf-8")

    if a_txt == "from archive\n":
        report.add("precedence", True, "Archive entry wins over file entry")
    else:
        report.add("precedence", False, "File entry overrode archive entry", repr(a_txt))

    if len(names) == len(set(names)):
        report.add("uniqueness", True, f"{len(names)} unique entries")
    else:
        report.add("uniqueness", False, "Duplicate entry names", "\n".join(names))

    stale = [i.filename for i in infos if i.date_time != FIXED_DATE_TIME]
    if stale:
        report.add("timestamps", False, "Entries without fixed timestamp", "\n".join(stale))
    else:
        report.add("timestamps", True, "All entries carry the fixed timestamp")

    if names == sorted(names, key=lambda n: n.encode("utf-8")):
        report.add("ordering", True, "Entries sorted by name")
    else:
        report.add("ordering", False, "Entries out of order", "\n".join(names))


# =============================================================================
# Main
# =============================================================================


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="zipmerge CI validation")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")
    args = parser.parse_args(argv)

    sys.path.insert(0, str(SCRIPT_DIR))

    report = ValidationReport()

    print("Running zipmerge CI validations...")

    validate_python_compilation(report)
    validate_reproducibility(report)
    validate_archive_metadata(report)

    report.print_report(verbose=args.verbose)

    return 0 if report.passed() else 1


if __name__ == "__main__":
    sys.exit(main())
