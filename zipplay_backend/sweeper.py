from __future__ import annotations

import asyncio
import enum
import time
from dataclasses import dataclass, field
from logging import getLogger
from pathlib import Path
from typing import Callable

from .config import Settings
from .registry import UploadRegistry
from .security import normalize_upload_id
from .workspace import dir_mtime, iter_upload_dirs, remove_upload_dir

logger = getLogger(__name__)


class SweeperState(str, enum.Enum):
    IDLE = "idle"
    SWEEPING = "sweeping"


@dataclass
class SweepReport:
    expired: list[str] = field(default_factory=list)
    orphans: list[str] = field(default_factory=list)
    # upload id -> exception class name
    failures: dict[str, str] = field(default_factory=dict)

    @property
    def deleted(self) -> int:
        return len(self.expired) + len(self.orphans)


class RetentionSweeper:
    """Deletes uploads older than the retention window.

    Registered uploads age from their recorded creation time. Directories under
    the upload root that the registry does not know about (leftovers of a crash
    mid-publish) age from their mtime. A failing candidate is logged and kept
    for the next cycle; it never stops the rest of the sweep.
    """

    def __init__(
        self,
        settings: Settings,
        registry: UploadRegistry,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.settings = settings
        self.registry = registry
        self.clock = clock
        self.state = SweeperState.IDLE

    def _expire(self, upload_id: str, root: Path, report: SweepReport, bucket: list[str]) -> None:
        try:
            remove_upload_dir(root)
        except OSError as exc:
            logger.warning("Failed to remove upload %s", upload_id, exc_info=True)
            report.failures[upload_id] = type(exc).__name__
            return
        self.registry.evict(upload_id)
        bucket.append(upload_id)
        logger.info("Removed old upload %s", upload_id)

    def sweep_once(self) -> SweepReport:
        report = SweepReport()
        window = self.settings.retention_seconds
        # A zero window disables expiry instead of deleting everything.
        if not window:
            return report

        self.state = SweeperState.SWEEPING
        try:
            now = self.clock()
            for upload in self.registry.snapshot():
                if now - upload.created_at > window:
                    self._expire(upload.upload_id, upload.root, report, report.expired)

            for child in iter_upload_dirs(self.settings.upload_root):
                if normalize_upload_id(child.name) in self.registry:
                    continue
                try:
                    age = now - dir_mtime(child)
                except FileNotFoundError:
                    continue
                except OSError as exc:
                    logger.warning("Cannot stat upload directory %s", child.name, exc_info=True)
                    report.failures[child.name] = type(exc).__name__
                    continue
                if age > window:
                    self._expire(child.name, child, report, report.orphans)
        finally:
            self.state = SweeperState.IDLE
        return report

    async def run_forever(self) -> None:
        # Periodically delete expired uploads; survive any single failed pass.
        interval = max(1, self.settings.cleanup_interval_seconds)
        while True:
            try:
                report = await asyncio.to_thread(self.sweep_once)
                if report.deleted or report.failures:
                    logger.info(
                        "Sweep removed %d uploads (%d orphans), %d failures",
                        report.deleted,
                        len(report.orphans),
                        len(report.failures),
                    )
            except Exception:
                logger.exception("Cleanup error")
            await asyncio.sleep(interval)
