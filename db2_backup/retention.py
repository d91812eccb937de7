"""Removal of expired backup session directories."""
from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, List, Optional

from .errors import PruneFailed

LOGGER = logging.getLogger(__name__)

PRUNING_SUFFIX = ".pruning"


@dataclass
class PruneReport:
    removed: List[Path] = field(default_factory=list)
    failures: List[PruneFailed] = field(default_factory=list)
    skipped: bool = False


@dataclass
class RetentionCleaner:
    """Delete whole session directories older than the retention period.

    An expired session is first renamed to a hidden ``.<name>.pruning``
    directory and only then removed, so a session is either complete under its
    own name or gone. Markers left behind by an interrupted run are removed on
    the next prune.
    """

    logger: logging.Logger = LOGGER
    clock: Callable[[], datetime] = datetime.now

    def prune(self, backup_path, db_name: str, retention_days: Optional[int]) -> PruneReport:
        report = PruneReport()
        if retention_days is None or retention_days <= 0:
            self.logger.info("Очистка старых бэкапов отключена (retention_days=%s).", retention_days)
            report.skipped = True
            return report

        root = Path(backup_path) / db_name
        if not root.is_dir():
            self.logger.info("Каталог %s не найден, очищать нечего.", root)
            return report

        cutoff = self.clock() - timedelta(days=retention_days)
        self.logger.info("Удаление сессий бэкапа старше %s дней из %s", retention_days, root)
        try:
            entries = sorted(root.iterdir())
        except OSError as exc:
            self._fail(report, root, exc)
            return report

        for entry in entries:
            try:
                if entry.is_symlink() or not entry.is_dir():
                    continue
                if entry.name.startswith(".") and entry.name.endswith(PRUNING_SUFFIX):
                    shutil.rmtree(entry)
                    continue
                if datetime.fromtimestamp(entry.stat().st_mtime) >= cutoff:
                    continue
                marker = entry.with_name(f".{entry.name}{PRUNING_SUFFIX}")
                entry.rename(marker)
                shutil.rmtree(marker)
                report.removed.append(entry)
                self.logger.info("Удалена устаревшая сессия бэкапа '%s'.", entry)
            except OSError as exc:
                self._fail(report, entry, exc)
        self.logger.info("Очистка завершена: удалено сессий %s.", len(report.removed))
        return report

    # ------------------------------------------------------------------
    def _fail(self, report: PruneReport, path: Path, exc: OSError) -> None:
        error = PruneFailed(f"Не удалось удалить '{path}': {exc}")
        report.failures.append(error)
        self.logger.warning("%s", error)


__all__ = ["PruneReport", "RetentionCleaner"]
