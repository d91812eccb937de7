"""Core backup logic: one BACKUP DATABASE run into its own session directory."""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterator, List, Optional

from . import clp
from .config import BackupConfig
from .connection import ConnectionHandle, ConnectionManager
from .errors import (
    BackupCommandFailed,
    BackupReportedError,
    DeactivateFailed,
    DirCreateFailed,
    NoArtifactsProduced,
    ReactivateFailed,
    SessionDirExists,
)
from .logmode import LoggingMode, LoggingModeDetector
from .runner import CommandResult
from .utils import human_size, session_timestamp

LOGGER = logging.getLogger(__name__)

_EMBEDDED_ERROR = re.compile(r"\bSQL\d{4,5}N\b|SQLSTATE=\w{5}|\bfailed\b", re.IGNORECASE)


@dataclass
class BackupSession:
    session_id: str
    session_dir: Path
    started_at: datetime
    logging_mode: LoggingMode = LoggingMode.UNKNOWN
    deactivated: bool = False
    reactivated: bool = False
    warnings: List[str] = field(default_factory=list)

    @classmethod
    def create(cls, config: BackupConfig, now: Optional[datetime] = None) -> "BackupSession":
        now = now or datetime.now()
        session_id = session_timestamp(now)
        return cls(
            session_id=session_id,
            session_dir=config.database_directory / session_id,
            started_at=now,
        )

    @property
    def requires_manual_attention(self) -> bool:
        return self.deactivated and not self.reactivated


@dataclass
class Artifact:
    path: Path
    size: int


@dataclass
class ArtifactSet:
    location: Path
    artifacts: List[Artifact] = field(default_factory=list)
    misplaced: bool = False

    def __iter__(self) -> Iterator[Artifact]:
        return iter(self.artifacts)

    def __len__(self) -> int:
        return len(self.artifacts)

    @property
    def total_size(self) -> int:
        return sum(item.size for item in self.artifacts)


def embedded_error_lines(output: str) -> List[str]:
    """Lines of CLP output that report an error despite a zero exit code."""

    return [line.strip() for line in output.splitlines() if _EMBEDDED_ERROR.search(line)]


def parse_application_handles(output: str) -> List[int]:
    """Application handles from ``LIST APPLICATIONS`` output."""

    handles: List[int] = []
    in_rows = False
    for line in output.splitlines():
        stripped = line.strip()
        if not stripped:
            continue
        if set(stripped) <= {"-", " "}:
            in_rows = True
            continue
        if not in_rows:
            continue
        parts = stripped.split()
        if len(parts) >= 3 and parts[2].isdigit():
            handles.append(int(parts[2]))
    return handles


def parse_directory_node(output: str, alias: str) -> Optional[str]:
    """Node name of *alias* in ``LIST DATABASE DIRECTORY`` output.

    Local (indirect) entries have no node name and yield ``None``.
    """

    entry: Dict[str, str] = {}
    for line in output.splitlines() + [""]:
        if "=" in line:
            key, _, value = line.partition("=")
            entry[key.strip().lower()] = value.strip()
            continue
        if line.strip() or not entry:
            continue
        if entry.get("database alias", "").upper() == alias.upper():
            return entry.get("node name") or None
        entry = {}
    return None


@dataclass
class BackupSessionExecutor:
    connections: ConnectionManager
    detector: LoggingModeDetector
    logger: logging.Logger = LOGGER

    @property
    def runner(self):
        return self.connections.runner

    def run(
        self,
        handle: ConnectionHandle,
        config: BackupConfig,
        session: Optional[BackupSession] = None,
    ) -> ArtifactSet:
        """Back up the database into ``session.session_dir``.

        The database is reactivated if it was taken offline and the
        connection is closed, whatever happens in between.
        """

        session = session or BackupSession.create(config)
        try:
            try:
                session.logging_mode = self.detector.classify(handle, config.db_name)
                if session.logging_mode is not LoggingMode.ARCHIVE:
                    self._take_offline(handle, session)

                self._create_session_dir(session)
                command = self.build_command(handle, config, session)
                self.logger.info(
                    "Начинаем %s бэкап (%s): %s -> %s/",
                    config.backup_type,
                    "online" if session.logging_mode is LoggingMode.ARCHIVE else "offline",
                    config.db_name,
                    session.session_dir,
                )
                self.logger.info("Выполнение: %s", self.runner.mask(command))
                result = self.runner.execute(command, timeout=config.backup_timeout)
                self._log_output(result)
                self.check_result(result)
            finally:
                if session.deactivated:
                    self._reactivate(handle, session)

            artifacts = self.collect_artifacts(session, handle.database_alias)
            self.logger.info("Бэкап завершён в сессии: %s", artifacts.location)
            for artifact in artifacts:
                self.logger.info("Создан: %s (%s)", artifact.path, human_size(artifact.size))
            return artifacts
        finally:
            self.connections.disconnect(handle)

    # ------------------------------------------------------------------
    def build_command(self, handle: ConnectionHandle, config: BackupConfig, session: BackupSession) -> str:
        online = session.logging_mode is LoggingMode.ARCHIVE and not session.deactivated
        return clp.chain(
            clp.export_instance(handle.instance),
            clp.backup(
                handle.database_alias,
                str(session.session_dir),
                backup_type=config.backup_type,
                online=online,
                compress=config.compress,
                buffer_size=config.buffer_size,
                parallelism=config.parallelism,
                user=handle.user,
                password=handle.password,
            ),
        )

    # ------------------------------------------------------------------
    def check_result(self, result: CommandResult) -> None:
        output = self.runner.mask(result.output)
        if result.failed:
            reason = "превысила таймаут" if result.timed_out else f"завершилась с кодом {result.exit_code}"
            raise BackupCommandFailed(
                f"Команда BACKUP {reason}: {output}",
                output=output,
                lines=embedded_error_lines(output),
            )
        lines = embedded_error_lines(output)
        if lines:
            raise BackupReportedError(
                "Команда BACKUP завершилась с кодом 0, но сообщила об ошибке: " + " | ".join(lines),
                output=output,
                lines=lines,
            )

    # ------------------------------------------------------------------
    def collect_artifacts(self, session: BackupSession, alias: str) -> ArtifactSet:
        files = sorted(path for path in session.session_dir.rglob("*") if path.is_file())
        if files:
            return ArtifactSet(
                location=session.session_dir,
                artifacts=[Artifact(path, path.stat().st_size) for path in files],
            )

        # some invocation forms write the image next to the target directory;
        # image names start with the alias (<alias>.<type>.<instance>.DBPART...)
        parent = session.session_dir.parent
        threshold = session.started_at.timestamp() - 1
        prefix = f"{alias.upper()}."
        stray = sorted(
            path
            for path in parent.iterdir()
            if path.is_file()
            and path.name.upper().startswith(prefix)
            and path.stat().st_mtime >= threshold
        )
        if stray:
            message = (
                f"Файлы бэкапа не найдены в {session.session_dir}, но созданы в {parent}. "
                "Проверьте параметры команды BACKUP."
            )
            self.logger.warning(message)
            session.warnings.append(message)
            return ArtifactSet(
                location=parent,
                artifacts=[Artifact(path, path.stat().st_size) for path in stray],
                misplaced=True,
            )
        raise NoArtifactsProduced(
            f"Команда BACKUP не создала файлов в {session.session_dir}."
        )

    # ------------------------------------------------------------------
    def _create_session_dir(self, session: BackupSession) -> None:
        try:
            session.session_dir.parent.mkdir(parents=True, exist_ok=True)
            session.session_dir.mkdir()
        except FileExistsError as exc:
            raise SessionDirExists(f"Каталог сессии уже существует: {session.session_dir}") from exc
        except OSError as exc:
            raise DirCreateFailed(f"Не удалось создать каталог сессии {session.session_dir}: {exc}") from exc
        self.logger.info("Создан каталог сессии: %s", session.session_dir)

    # ------------------------------------------------------------------
    def _take_offline(self, handle: ConnectionHandle, session: BackupSession) -> None:
        self.logger.warning(
            "База %s не использует архивное журналирование: бэкап будет выполнен офлайн.",
            handle.db_name,
        )
        self._force_applications(handle, session)
        result = self.runner.execute(
            clp.chain(
                clp.export_instance(handle.instance),
                clp.deactivate(handle.database_alias, handle.user, handle.password),
            )
        )
        if result.exit_code >= clp.CLP_ERROR:
            raise DeactivateFailed(
                f"Не удалось деактивировать базу {handle.db_name}: {self.runner.mask(result.output)}"
            )
        session.deactivated = True
        self.logger.info("База %s деактивирована.", handle.db_name)

    # ------------------------------------------------------------------
    def _instance_prefix(self, handle: ConnectionHandle) -> str:
        """Shell prefix that points instance commands at the server holding the database."""

        node = handle.temp_node_name
        if not node and handle.mode == "cataloged":
            node = self._directory_node(handle)
        if node:
            return clp.chain(
                clp.export_instance(handle.instance),
                clp.silent(clp.attach(node, handle.user, handle.password)),
            )
        return clp.export_instance(handle.instance)

    # ------------------------------------------------------------------
    def _directory_node(self, handle: ConnectionHandle) -> Optional[str]:
        result = self.runner.execute(
            clp.chain(clp.export_instance(handle.instance), clp.list_database_directory())
        )
        node = None
        if result.exit_code < clp.CLP_ERROR:
            node = parse_directory_node(result.stdout, handle.database_alias)
        if node:
            self.logger.info("База %s каталогизирована на узле %s.", handle.database_alias, node)
        else:
            self.logger.warning(
                "Не удалось определить узел для %s; список подключений берётся из локального экземпляра.",
                handle.database_alias,
            )
        return node

    # ------------------------------------------------------------------
    def _force_applications(self, handle: ConnectionHandle, session: BackupSession) -> None:
        prefix = self._instance_prefix(handle)
        result = self.runner.execute(clp.chain(prefix, clp.list_applications(handle.database_alias)))
        if result.exit_code >= clp.CLP_ERROR:
            message = (
                f"Не удалось получить список подключений к {handle.db_name}; "
                "оставшиеся сеансы могут помешать деактивации."
            )
            self.logger.warning(message)
            session.warnings.append(message)
            return
        handles = parse_application_handles(result.stdout)
        if not handles:
            self.logger.info("Активных подключений к %s нет.", handle.db_name)
            return
        self.logger.info("Принудительное отключение приложений от %s: %s", handle.db_name, handles)
        result = self.runner.execute(clp.chain(prefix, clp.force_applications(handles)))
        if result.exit_code >= clp.CLP_ERROR:
            message = (
                f"Не удалось отключить приложения от {handle.db_name}: {self.runner.mask(result.output)}"
            )
            self.logger.warning(message)
            session.warnings.append(message)

    # ------------------------------------------------------------------
    def _reactivate(self, handle: ConnectionHandle, session: BackupSession) -> None:
        result = self.runner.execute(
            clp.chain(
                clp.export_instance(handle.instance),
                clp.activate(handle.database_alias, handle.user, handle.password),
            )
        )
        if result.exit_code >= clp.CLP_ERROR:
            error = ReactivateFailed(
                f"Не удалось активировать базу {handle.db_name} после офлайн-бэкапа: "
                f"{self.runner.mask(result.output)}. Требуется ручное вмешательство: "
                f"db2 activate database {handle.database_alias}"
            )
            self.logger.error("%s", error)
            session.warnings.append(str(error))
            return
        session.reactivated = True
        self.logger.info("База %s снова активирована.", handle.db_name)

    # ------------------------------------------------------------------
    def _log_output(self, result: CommandResult) -> None:
        output = self.runner.mask(result.output)
        if output:
            self.logger.info("Вывод команды BACKUP:\n%s", output)


__all__ = [
    "Artifact",
    "ArtifactSet",
    "BackupSession",
    "BackupSessionExecutor",
    "embedded_error_lines",
    "parse_application_handles",
    "parse_directory_node",
]
