"""Error taxonomy for the upload pipeline.

User-facing errors are `PublishError` subclasses carrying an HTTP status and a
stable message. Everything else stays internal and is translated by the
gateway before it reaches a client.
"""

from __future__ import annotations

import enum


class UnsafeEntryPath(ValueError):
    """Raised when an archive entry path is unsafe (zip-slip/path traversal)."""


class NotFound(LookupError):
    """Lookup miss in the registry or the entry document search."""


class ExtractErrorKind(str, enum.Enum):
    CORRUPT = "corrupt"
    IO_FAILURE = "io_failure"
    UNSAFE = "unsafe"


class ExtractError(Exception):
    def __init__(self, kind: ExtractErrorKind, detail: str = "") -> None:
        super().__init__(f"{kind.value}: {detail}" if detail else kind.value)
        self.kind = kind
        self.detail = detail


class PublishError(Exception):
    status_code = 500
    default_message = "Upload failed"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class IntakeError(PublishError):
    status_code = 400
    default_message = "Only ZIP files are allowed"


class UploadTooLarge(IntakeError):
    status_code = 413
    default_message = "ZIP too large"


class BadArchive(PublishError):
    status_code = 400
    default_message = "Invalid ZIP"


class NoEntryDocument(PublishError):
    status_code = 400
    default_message = "ZIP must include an index.html file"


class StorageFailure(PublishError):
    status_code = 500
    default_message = "Upload failed"
