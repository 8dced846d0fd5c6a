from __future__ import annotations

import io
import zipfile
from pathlib import Path
from typing import Callable, Dict, Union

import pytest


@pytest.fixture(scope="session")
def repo_root() -> Path:
    return Path(__file__).resolve().parents[1]


@pytest.fixture
def make_zip(tmp_path: Path) -> Callable[..., Path]:
    """Build a source archive from ``{name: content}`` with a stale timestamp."""

    def _make(name: str, members: Dict[str, Union[str, bytes]], mode: int = 0o644) -> Path:
        archive = tmp_path / name
        with zipfile.ZipFile(archive, "w", compression=zipfile.ZIP_DEFLATED) as zf:
            for member, content in members.items():
                info = zipfile.ZipInfo(member, date_time=(2019, 7, 4, 10, 30, 0))
                info.external_attr = (0o100000 | mode) << 16
                info.compress_type = zipfile.ZIP_DEFLATED
                zf.writestr(info, content)
        return archive

    return _make


@pytest.fixture
def source_tree(tmp_path: Path) -> Path:
    """A directory holding ``a.txt`` and ``sub/b.txt``."""
    root = tmp_path / "dir"
    (root / "sub").mkdir(parents=True)
    (root / "a.txt").write_text("alpha\n", encoding="utf-8")
    (root / "sub" / "b.txt").write_text("bravo\n", encoding="utf-8")
    return root


def _read_zip(path_or_bytes: Union[Path, bytes]) -> Dict[str, bytes]:
    source = io.BytesIO(path_or_bytes) if isinstance(path_or_bytes, bytes) else path_or_bytes
    with zipfile.ZipFile(source) as zf:
        return {info.filename: zf.read(info) for info in zf.infolist()}


@pytest.fixture
def read_zip() -> Callable[[Union[Path, bytes]], Dict[str, bytes]]:
    """Return ``{name: content}`` for an archive path or archive bytes."""
    return _read_zip
