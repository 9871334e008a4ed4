from __future__ import annotations

import re
import uuid
from pathlib import Path

from .errors import UnsafeEntryPath


_UPLOAD_ID_RE = re.compile(r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[1-5][0-9a-fA-F]{3}-[89abAB][0-9a-fA-F]{3}-[0-9a-fA-F]{12}$")

# "C:", "c:foo", "C:\\foo" once backslashes are converted.
_DRIVE_RE = re.compile(r"^[A-Za-z]:")


def new_upload_id() -> str:
    return str(uuid.uuid4())


def normalize_upload_id(upload_id: str) -> str:
    """Validate and normalize an upload id.

    Upload ids double as directory names and URL segments, so only the strict
    canonical UUID form is accepted.
    """
    if not isinstance(upload_id, str):
        raise ValueError("Invalid upload id")
    upload_id = upload_id.strip()
    if not _UPLOAD_ID_RE.match(upload_id):
        raise ValueError("Invalid upload id")
    return str(uuid.UUID(upload_id))


def is_upload_id(name: str) -> bool:
    try:
        normalize_upload_id(name)
    except ValueError:
        return False
    return True


def normalize_entry_path(raw: str) -> str:
    """Normalize and validate a relative path declared by an archive entry.

    - Convert backslashes to slashes
    - Reject absolute paths (POSIX root, Windows drive letters, UNC shares)
    - Drop empty and `.` segments, then reject any `..` segment
    - Reject paths that are empty once normalized

    Returns the normalized `a/b/c` form.
    """
    if not isinstance(raw, str) or not raw:
        raise UnsafeEntryPath("Empty path.")
    if "\x00" in raw:
        raise UnsafeEntryPath("NUL byte in path.")

    path = raw.replace("\\", "/")
    if path.startswith("/") or _DRIVE_RE.match(path):
        raise UnsafeEntryPath("Absolute paths are not allowed.")

    parts: list[str] = []
    for part in path.split("/"):
        if part in {"", "."}:
            continue
        if part == "..":
            raise UnsafeEntryPath("Path traversal is not allowed.")
        parts.append(part)

    if not parts:
        raise UnsafeEntryPath("Invalid path.")
    return "/".join(parts)


def is_safe_entry_path(raw: str) -> bool:
    try:
        normalize_entry_path(raw)
    except UnsafeEntryPath:
        return False
    return True


def safe_join(base_dir: Path, *parts: str) -> Path:
    """Join paths and ensure the result stays within base_dir.

    This defends against path traversal when serving or extracting user-controlled paths.
    """
    base_dir = base_dir.resolve()
    candidate = base_dir
    for part in parts:
        candidate = candidate / part
    resolved = candidate.resolve()
    if resolved == base_dir:
        return resolved
    if base_dir not in resolved.parents:
        raise UnsafeEntryPath("Path traversal attempt")
    return resolved
