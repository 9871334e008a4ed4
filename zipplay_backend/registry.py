"""In-memory registry of published uploads.

The registry is the only place that knows which upload directories are live.
All mutations go through one lock that is never held across disk I/O, so a
sweep deleting directories does not block concurrent publishes.
"""

from __future__ import annotations

import enum
import itertools
import threading
from dataclasses import dataclass, replace
from logging import getLogger
from pathlib import Path
from typing import Optional
from urllib.parse import quote

from .errors import NotFound
from .security import normalize_upload_id
from .workspace import dir_mtime, iter_upload_dirs, locate_entry_document

logger = getLogger(__name__)


class UploadState(str, enum.Enum):
    EXTRACTING = "extracting"
    LOCATED = "located"
    PUBLISHED = "published"
    FAILED = "failed"
    EXPIRED = "expired"


@dataclass(frozen=True)
class Upload:
    upload_id: str
    root: Path
    created_at: float
    entry_path: Optional[str] = None
    state: UploadState = UploadState.LOCATED

    def public_url(self, prefix: str) -> str:
        base = f"{prefix.rstrip('/')}/{self.upload_id}/"
        if not self.entry_path:
            return base
        return base + quote(self.entry_path)


class UploadRegistry:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._uploads: dict[str, Upload] = {}
        # Registration order, used to break created_at ties in list_recent.
        self._order: dict[str, int] = {}
        self._seq = itertools.count()

    def register(
        self,
        upload_id: str,
        root: Path,
        created_at: float,
        entry_path: Optional[str] = None,
    ) -> Upload:
        """Insert an upload. With entry_path it is registered as Published in one step."""
        uid = normalize_upload_id(upload_id)
        state = UploadState.PUBLISHED if entry_path else UploadState.LOCATED
        upload = Upload(
            upload_id=uid,
            root=Path(root),
            created_at=float(created_at),
            entry_path=entry_path,
            state=state,
        )
        with self._lock:
            if uid in self._uploads:
                raise ValueError("Upload already registered")
            self._uploads[uid] = upload
            self._order[uid] = next(self._seq)
        return upload

    def set_entry_path(self, upload_id: str, rel_path: str) -> Upload:
        uid = normalize_upload_id(upload_id)
        with self._lock:
            current = self._uploads.get(uid)
            if current is None:
                raise NotFound(uid)
            updated = replace(current, entry_path=rel_path, state=UploadState.PUBLISHED)
            self._uploads[uid] = updated
        return updated

    def get(self, upload_id: str) -> Upload:
        try:
            uid = normalize_upload_id(upload_id)
        except ValueError:
            raise NotFound(upload_id) from None
        with self._lock:
            upload = self._uploads.get(uid)
        if upload is None:
            raise NotFound(uid)
        return upload

    def list_recent(self, limit: int = 50) -> list[Upload]:
        """Published uploads, newest first by recorded creation time."""
        with self._lock:
            rows = [
                (u, self._order[u.upload_id])
                for u in self._uploads.values()
                if u.state is UploadState.PUBLISHED
            ]
        rows.sort(key=lambda row: (row[0].created_at, row[1]), reverse=True)
        return [u for u, _ in rows[: max(0, limit)]]

    def evict(self, upload_id: str) -> Optional[Upload]:
        """Remove an upload. Unknown ids are a no-op and return None."""
        try:
            uid = normalize_upload_id(upload_id)
        except ValueError:
            return None
        with self._lock:
            upload = self._uploads.pop(uid, None)
            self._order.pop(uid, None)
        if upload is None:
            return None
        return replace(upload, state=UploadState.EXPIRED)

    def snapshot(self) -> list[Upload]:
        with self._lock:
            return list(self._uploads.values())

    def __contains__(self, upload_id: object) -> bool:
        with self._lock:
            return upload_id in self._uploads

    def __len__(self) -> int:
        with self._lock:
            return len(self._uploads)

    def rebuild_from_disk(self, upload_root: Path, entry_filename: str) -> int:
        """Reconcile the registry with the directories under upload_root.

        Directories that hold an entry document are registered with their
        mtime as creation time. Directories without one are left on disk as
        orphans for the sweeper. Rows whose directory has vanished are evicted.
        Returns the number of newly registered uploads.
        """
        found: list[tuple[str, Path, float, str]] = []
        on_disk: set[str] = set()
        for child in iter_upload_dirs(upload_root):
            uid = normalize_upload_id(child.name)
            on_disk.add(uid)
            if uid in self:
                continue
            try:
                entry_path = locate_entry_document(child, entry_filename)
                created_at = dir_mtime(child)
            except NotFound:
                logger.info("Upload directory %s has no entry document; leaving it for cleanup", uid)
                continue
            except OSError:
                logger.warning("Cannot inspect upload directory %s", uid, exc_info=True)
                continue
            found.append((uid, child.resolve(), created_at, entry_path))

        for upload in self.snapshot():
            if upload.upload_id not in on_disk:
                self.evict(upload.upload_id)

        registered = 0
        for uid, root, created_at, entry_path in found:
            try:
                self.register(uid, root, created_at, entry_path=entry_path)
            except ValueError:
                continue
            registered += 1
        return registered
