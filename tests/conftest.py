from __future__ import annotations

import os
import stat
import tempfile
import zipfile
from pathlib import Path

import pytest

# server.py builds a default app at import time; keep its directories out of the project tree.
_SESSION_ROOT = Path(tempfile.mkdtemp(prefix="zipplay-tests-"))
os.environ.setdefault("ZIPPLAY_UPLOAD_ROOT", str(_SESSION_ROOT / "uploads"))
os.environ.setdefault("ZIPPLAY_TMP_ROOT", str(_SESSION_ROOT / "tmp"))

from zipplay_backend.config import Settings  # noqa: E402
from zipplay_backend.registry import UploadRegistry  # noqa: E402


class FakeClock:
    """Manually advanced replacement for time.time."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def write_zip(path: Path, entries: dict[str, bytes | str]) -> Path:
    """Write a ZIP whose entry names are used verbatim (including hostile ones)."""
    with zipfile.ZipFile(path, mode="w", compression=zipfile.ZIP_DEFLATED) as zf:
        for name, data in entries.items():
            zf.writestr(name, data)
    return path


def add_symlink_entry(path: Path, name: str, target: str) -> None:
    info = zipfile.ZipInfo(name)
    info.external_attr = (stat.S_IFLNK | 0o777) << 16
    with zipfile.ZipFile(path, mode="a") as zf:
        zf.writestr(info, target)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    s = Settings(
        upload_root=(tmp_path / "uploads").resolve(),
        tmp_root=(tmp_path / "tmp").resolve(),
        retention_hours=24.0,
        cleanup_interval_seconds=3600,
        max_upload_bytes=1024 * 1024,
    )
    s.ensure_dirs()
    return s


@pytest.fixture
def registry() -> UploadRegistry:
    return UploadRegistry()
