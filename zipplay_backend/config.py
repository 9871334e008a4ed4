from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


# zipplay_backend/ -> project root
PROJECT_ROOT = Path(__file__).resolve().parent.parent

# Accept an upload when either the extension or the declared MIME type says ZIP.
ALLOWED_ARCHIVE_EXTS = {".zip"}
ALLOWED_ARCHIVE_MIME_TYPES = {
    "application/zip",
    "application/x-zip-compressed",
    "application/x-zip",
    "multipart/x-zip",
}

UNSAFE_ENTRY_POLICIES = ("skip", "reject")

# Multipart field carrying the archive on POST /upload.
UPLOAD_FIELD = "gamezip"


def _env_str(name: str, default: str) -> str:
    value = os.environ.get(name)
    if value is None or not value.strip():
        return default
    return value.strip()


def _env_int(name: str, default: int) -> int:
    """Read an integer env var, returning `default` on missing/invalid."""
    value = os.environ.get(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    value = os.environ.get(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _env_path(name: str, default: Path) -> Path:
    raw = os.environ.get(name)
    if raw and raw.strip():
        return Path(raw).resolve()
    return default.resolve()


@dataclass(frozen=True)
class Settings:
    """Process-wide settings, built once at startup and passed by reference."""

    # One directory per upload lives directly under this root.
    upload_root: Path
    # Spool directory for incoming request bodies.
    tmp_root: Path
    # How long an upload may live before the sweeper reclaims it.
    retention_hours: float = 24.0
    # How often the server scans for expired uploads.
    cleanup_interval_seconds: int = 3600
    max_upload_bytes: int = 200 * 1024 * 1024  # 200MB
    entry_filename: str = "index.html"
    public_prefix: str = "/play"
    recent_limit: int = 50
    # "skip" drops unsafe archive entries, "reject" fails the whole archive.
    unsafe_entry_policy: str = "skip"
    log_level: str = "info"

    def __post_init__(self) -> None:
        if self.unsafe_entry_policy not in UNSAFE_ENTRY_POLICIES:
            raise ValueError(f"Unknown unsafe entry policy: {self.unsafe_entry_policy!r}")
        if not self.entry_filename or "/" in self.entry_filename or "\\" in self.entry_filename:
            raise ValueError("entry_filename must be a plain file name")
        # Normalize to "/prefix" without a trailing slash.
        prefix = "/" + self.public_prefix.strip("/")
        object.__setattr__(self, "public_prefix", prefix)

    @property
    def retention_seconds(self) -> float:
        return max(0.0, self.retention_hours) * 3600.0

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            upload_root=_env_path("ZIPPLAY_UPLOAD_ROOT", PROJECT_ROOT / "uploads"),
            tmp_root=_env_path("ZIPPLAY_TMP_ROOT", PROJECT_ROOT / "tmp"),
            retention_hours=_env_float("ZIPPLAY_RETENTION_HOURS", 24.0),
            cleanup_interval_seconds=_env_int("ZIPPLAY_CLEANUP_INTERVAL_SECONDS", 3600),
            max_upload_bytes=_env_int("ZIPPLAY_MAX_UPLOAD_BYTES", 200 * 1024 * 1024),
            entry_filename=_env_str("ZIPPLAY_ENTRY_FILENAME", "index.html"),
            public_prefix=_env_str("ZIPPLAY_PUBLIC_PREFIX", "/play"),
            unsafe_entry_policy=_env_str("ZIPPLAY_UNSAFE_ENTRY_POLICY", "skip").lower(),
            log_level=_env_str("ZIPPLAY_LOG_LEVEL", "info").lower(),
        )

    def ensure_dirs(self) -> None:
        self.upload_root.mkdir(parents=True, exist_ok=True)
        self.tmp_root.mkdir(parents=True, exist_ok=True)
