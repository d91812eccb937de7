"""End-to-end sequencing of one backup run."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from .backup import ArtifactSet, BackupSession, BackupSessionExecutor
from .config import BackupConfig
from .connection import ConnectionManager
from .errors import Db2BackupError
from .logmode import LoggingModeDetector
from .paths import check_backup_path
from .retention import PruneReport, RetentionCleaner
from .rights import RightsCheck, RightsStatus, RightsVerifier
from .runner import CommandRunner, check_db2_available, resolve_identity

LOGGER = logging.getLogger(__name__)


@dataclass
class RunReport:
    config: BackupConfig
    session: Optional[BackupSession] = None
    rights: Optional[RightsCheck] = None
    artifacts: Optional[ArtifactSet] = None
    prune: Optional[PruneReport] = None

    @property
    def succeeded(self) -> bool:
        return bool(self.artifacts)

    @property
    def exit_code(self) -> int:
        return 0 if self.succeeded else 1

    @property
    def warnings(self) -> List[str]:
        warnings: List[str] = []
        if self.rights and self.rights.status is RightsStatus.DEGRADED:
            warnings.append("Права на резервное копирование не удалось проверить.")
        if self.session:
            warnings.extend(self.session.warnings)
        if self.prune:
            warnings.extend(str(failure) for failure in self.prune.failures)
        return warnings


@dataclass
class BackupOrchestrator:
    """Run connect → verify → backup → disconnect → prune for one database.

    Every fatal failure propagates as a :class:`~db2_backup.errors.Db2BackupError`
    after the connection (and any temporary catalog entries) has been released.
    Pruning only happens after a backup whose artifacts were confirmed.
    """

    config: BackupConfig
    runner: Optional[CommandRunner] = None
    check_environment: bool = True
    cleaner: RetentionCleaner = field(default_factory=RetentionCleaner)
    logger: logging.Logger = LOGGER

    def run(self) -> RunReport:
        config = self.config
        self.logger.info("=== Резервное копирование DB2 начато ===")
        self.logger.info(
            "Параметры: type=%s path=%s conn=%s db=%s",
            config.backup_type,
            config.backup_path,
            config.connection_type,
            config.db_name,
        )
        report = RunReport(config=config)
        runner = self.runner or CommandRunner(identity=resolve_identity(config.db_instance))
        if self.check_environment:
            check_db2_available(runner)
            check_backup_path(config, self.logger)

        connections = ConnectionManager(runner)
        try:
            handle = connections.connect(config)
            try:
                report.rights = RightsVerifier(connections).verify(handle, config.db_name)
                report.rights.raise_for_status(config.db_name)

                executor = BackupSessionExecutor(connections, LoggingModeDetector(connections))
                report.session = BackupSession.create(config)
                report.artifacts = executor.run(handle, config, report.session)
            finally:
                connections.disconnect(handle)
        except Db2BackupError as exc:
            exc.report = report
            self._log_warnings(report)
            raise

        report.prune = self.cleaner.prune(config.backup_path, config.db_name, config.retention_days)
        self._log_warnings(report)
        self.logger.info("=== Резервное копирование DB2 завершено ===")
        return report

    # ------------------------------------------------------------------
    def _log_warnings(self, report: RunReport) -> None:
        for warning in report.warnings:
            self.logger.warning("Внимание: %s", warning)


__all__ = ["BackupOrchestrator", "RunReport"]
