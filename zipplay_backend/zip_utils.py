from __future__ import annotations

import stat
import zipfile
import zlib
from dataclasses import dataclass, field
from logging import getLogger
from pathlib import Path
from typing import BinaryIO, Union

from .errors import ExtractError, ExtractErrorKind, UnsafeEntryPath
from .security import normalize_entry_path, safe_join

logger = getLogger(__name__)

CHUNK_SIZE = 1024 * 1024

ArchiveSource = Union[str, Path, BinaryIO]

# Raised by zipfile while reading members of a damaged or unsupported archive.
_CORRUPT_READ_ERRORS = (zipfile.BadZipFile, zlib.error, EOFError, NotImplementedError, RuntimeError)

# A file and a directory declared at the same path by the archive itself.
_ENTRY_CLASH_ERRORS = (FileExistsError, NotADirectoryError, IsADirectoryError)


@dataclass
class ExtractResult:
    written_count: int = 0
    directory_count: int = 0
    rejected_count: int = 0
    # Raw names of skipped entries, for diagnostics only.
    rejected: list[str] = field(default_factory=list)


def _zipinfo_is_symlink(info: zipfile.ZipInfo) -> bool:
    # Zip has no first-class type flag; on Unix, external attributes carry the mode.
    mode = (int(getattr(info, "external_attr", 0)) >> 16) & 0o170000
    return mode == stat.S_IFLNK


def _open_archive(archive: ArchiveSource) -> zipfile.ZipFile:
    try:
        return zipfile.ZipFile(archive)
    except (zipfile.BadZipFile, zipfile.LargeZipFile, EOFError, ValueError) as exc:
        raise ExtractError(ExtractErrorKind.CORRUPT, "not a readable ZIP archive") from exc
    except OSError as exc:
        raise ExtractError(ExtractErrorKind.IO_FAILURE, "cannot open archive") from exc


def _write_member(zf: zipfile.ZipFile, info: zipfile.ZipInfo, dest: Path) -> None:
    dest.parent.mkdir(parents=True, exist_ok=True)
    try:
        src = zf.open(info)
    except _CORRUPT_READ_ERRORS as exc:
        raise ExtractError(ExtractErrorKind.CORRUPT, f"unreadable entry {info.filename!r}") from exc
    with src:
        with dest.open("wb") as out_fp:
            while True:
                try:
                    chunk = src.read(CHUNK_SIZE)
                except _CORRUPT_READ_ERRORS as exc:
                    raise ExtractError(ExtractErrorKind.CORRUPT, f"corrupt entry {info.filename!r}") from exc
                if not chunk:
                    break
                out_fp.write(chunk)


def extract_archive(
    archive: ArchiveSource,
    target_root: Path,
    *,
    unsafe_entry_policy: str = "skip",
) -> ExtractResult:
    """Stream every safe entry of a ZIP archive into target_root.

    Rules:
    - Entries are processed in the archive's own order
    - Unsafe entries (absolute, '..', empty, symlinks) are skipped and counted,
      or fail the whole extraction when unsafe_entry_policy == "reject"
    - File payloads are copied in chunks, never loaded whole into memory

    Raises ExtractError(CORRUPT) for anything that is not a readable ZIP or whose
    entries clash (a file and a directory at the same path), and
    ExtractError(IO_FAILURE) for other disk errors. Nothing already written under
    target_root is removed here; rollback is the caller's job.
    """
    result = ExtractResult()
    target_root = Path(target_root)

    with _open_archive(archive) as zf:
        for info in zf.infolist():
            name = info.filename
            try:
                if _zipinfo_is_symlink(info):
                    raise UnsafeEntryPath("Symlink entries are not allowed.")
                rel = normalize_entry_path(name)
                dest = safe_join(target_root, rel)
            except UnsafeEntryPath as exc:
                if unsafe_entry_policy == "reject":
                    raise ExtractError(ExtractErrorKind.UNSAFE, str(exc)) from exc
                logger.warning("Skipping unsafe archive entry %r: %s", name, exc)
                result.rejected_count += 1
                result.rejected.append(name)
                continue

            try:
                if info.is_dir():
                    dest.mkdir(parents=True, exist_ok=True)
                    result.directory_count += 1
                else:
                    _write_member(zf, info, dest)
                    result.written_count += 1
            except _ENTRY_CLASH_ERRORS as exc:
                raise ExtractError(ExtractErrorKind.CORRUPT, f"entry {name!r} clashes with another entry") from exc
            except OSError as exc:
                raise ExtractError(ExtractErrorKind.IO_FAILURE, f"cannot write entry {name!r}") from exc

    logger.debug(
        "Extracted %d files, %d directories, skipped %d entries",
        result.written_count,
        result.directory_count,
        result.rejected_count,
    )
    return result
