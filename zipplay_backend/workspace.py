from __future__ import annotations

import os
import shutil
from logging import getLogger
from pathlib import Path
from typing import Iterator

from .errors import NotFound
from .security import is_upload_id, normalize_upload_id

logger = getLogger(__name__)


def upload_dir(upload_root: Path, upload_id: str) -> Path:
    return (upload_root / normalize_upload_id(upload_id)).resolve()


def create_upload_dir(upload_root: Path, upload_id: str) -> Path:
    """Create the (fresh, empty) directory owned by a single upload."""
    upload_root.mkdir(parents=True, exist_ok=True)
    root = upload_dir(upload_root, upload_id)
    root.mkdir(exist_ok=False)
    return root


def remove_upload_dir(root: Path) -> bool:
    """Recursively delete an upload directory.

    Idempotent: returns False when the directory is already gone. Any other
    filesystem error propagates so callers can log it.
    """
    try:
        shutil.rmtree(root)
    except FileNotFoundError:
        return False
    return True


def iter_upload_dirs(upload_root: Path) -> Iterator[Path]:
    """Yield directories directly under upload_root that are named like an upload id."""
    if not upload_root.exists():
        return
    for child in upload_root.iterdir():
        if child.is_dir() and not child.is_symlink() and is_upload_id(child.name):
            yield child


def dir_mtime(path: Path) -> float:
    return path.stat().st_mtime


def _name_key(entry: os.DirEntry) -> tuple[str, str]:
    return (entry.name.casefold(), entry.name)


def _sorted_level(path: Path) -> tuple[list[os.DirEntry], list[os.DirEntry]]:
    files: list[os.DirEntry] = []
    dirs: list[os.DirEntry] = []
    with os.scandir(path) as it:
        for entry in it:
            if entry.is_symlink():
                continue
            if entry.is_file():
                files.append(entry)
            elif entry.is_dir():
                dirs.append(entry)
    return sorted(files, key=_name_key), sorted(dirs, key=_name_key)


def locate_entry_document(root: Path, filename: str) -> str:
    """Find the entry document below root and return its relative POSIX path.

    Depth-first. At every level the files of that level are checked before
    descending, and both files and subdirectories are visited in sorted name
    order, so the same tree always yields the same answer regardless of what
    order the filesystem lists entries in. Matching is case-insensitive and
    only regular files match. Symlinks are never followed.
    """
    target = filename.casefold()

    def _walk(path: Path, rel: tuple[str, ...]) -> str | None:
        files, dirs = _sorted_level(path)
        for entry in files:
            if entry.name.casefold() == target:
                return "/".join(rel + (entry.name,))
        for entry in dirs:
            found = _walk(Path(entry.path), rel + (entry.name,))
            if found is not None:
                return found
        return None

    found = _walk(Path(root), ())
    if found is None:
        raise NotFound(filename)
    return found
