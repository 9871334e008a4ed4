from __future__ import annotations

import time
from dataclasses import dataclass
from logging import getLogger
from pathlib import Path
from typing import Callable, Optional

from .config import ALLOWED_ARCHIVE_EXTS, ALLOWED_ARCHIVE_MIME_TYPES, Settings
from .errors import (
    BadArchive,
    ExtractError,
    ExtractErrorKind,
    IntakeError,
    NoEntryDocument,
    NotFound,
    StorageFailure,
)
from .registry import Upload, UploadRegistry
from .security import new_upload_id
from .workspace import create_upload_dir, locate_entry_document, remove_upload_dir
from .zip_utils import extract_archive

logger = getLogger(__name__)


@dataclass(frozen=True)
class IncomingFile:
    """An upload already spooled to disk by the HTTP layer."""

    path: Path
    filename: str
    content_type: Optional[str] = None


@dataclass(frozen=True)
class PublishResult:
    upload_id: str
    public_url: str
    entry_path: str


def check_intake(incoming: IncomingFile) -> None:
    """Accept the upload if either its extension or its MIME type says ZIP."""
    ext = Path(incoming.filename or "").suffix.lower()
    mime = (incoming.content_type or "").split(";")[0].strip().lower()
    if ext in ALLOWED_ARCHIVE_EXTS or mime in ALLOWED_ARCHIVE_MIME_TYPES:
        return
    raise IntakeError()


class PublicationGateway:
    """Extract -> locate -> register, with rollback of the upload directory on failure."""

    def __init__(
        self,
        settings: Settings,
        registry: UploadRegistry,
        clock: Callable[[], float] = time.time,
        id_factory: Callable[[], str] = new_upload_id,
    ) -> None:
        self.settings = settings
        self.registry = registry
        self.clock = clock
        self.id_factory = id_factory

    def _rollback(self, upload_id: str, root: Path) -> None:
        try:
            remove_upload_dir(root)
        except OSError:
            # The sweeper reclaims it later as an orphan.
            logger.exception("Rollback failed for upload %s", upload_id)

    def publish(self, incoming: IncomingFile) -> PublishResult:
        check_intake(incoming)

        upload_id = self.id_factory()
        created_at = self.clock()
        try:
            root = create_upload_dir(self.settings.upload_root, upload_id)
        except OSError as exc:
            logger.exception("Cannot create directory for upload %s", upload_id)
            raise StorageFailure() from exc

        try:
            result = extract_archive(
                incoming.path,
                root,
                unsafe_entry_policy=self.settings.unsafe_entry_policy,
            )
        except ExtractError as exc:
            self._rollback(upload_id, root)
            if exc.kind is ExtractErrorKind.IO_FAILURE:
                logger.error("Extraction failed for upload %s: %s", upload_id, exc)
                raise StorageFailure() from exc
            logger.info("Rejected archive for upload %s: %s", upload_id, exc)
            if exc.kind is ExtractErrorKind.UNSAFE:
                raise BadArchive("ZIP contains unsafe paths") from exc
            raise BadArchive() from exc

        try:
            entry_path = locate_entry_document(root, self.settings.entry_filename)
        except NotFound as exc:
            self._rollback(upload_id, root)
            raise NoEntryDocument(f"ZIP must include an {self.settings.entry_filename} file") from exc
        except OSError as exc:
            self._rollback(upload_id, root)
            logger.exception("Cannot scan upload %s", upload_id)
            raise StorageFailure() from exc

        upload: Upload = self.registry.register(upload_id, root, created_at, entry_path=entry_path)
        public_url = upload.public_url(self.settings.public_prefix)
        logger.info(
            "Published upload %s (%d files, %d skipped entries) at %s",
            upload_id,
            result.written_count,
            result.rejected_count,
            public_url,
        )
        return PublishResult(upload_id=upload_id, public_url=public_url, entry_path=entry_path)
