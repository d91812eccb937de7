"""Detection of the database recovery-logging mode."""
from __future__ import annotations

import enum
import logging
import re
from dataclasses import dataclass
from typing import Optional

from . import clp
from .connection import ConnectionHandle, ConnectionManager

LOGGER = logging.getLogger(__name__)

PARAMETER = "LOGARCHMETH1"

_CFG_LINE = re.compile(r"\(\s*LOGARCHMETH1\s*\)\s*=\s*(.*)$", re.IGNORECASE)


class LoggingMode(enum.Enum):
    ARCHIVE = "archive"
    CIRCULAR = "circular"
    UNKNOWN = "unknown"

    @property
    def supports_online_backup(self) -> bool:
        return self is LoggingMode.ARCHIVE


def classify_value(value: Optional[str]) -> LoggingMode:
    """Map a LOGARCHMETH1 value to a logging mode.

    Absent, empty and ``OFF`` mean circular logging; any other value names an
    archive method (``LOGRETAIN``, ``DISK:/path``, ``TSM`` ...).
    """

    if value is None:
        return LoggingMode.CIRCULAR
    value = value.strip()
    if not value or value.upper() == "OFF":
        return LoggingMode.CIRCULAR
    return LoggingMode.ARCHIVE


def parse_db_cfg(output: str) -> Optional[str]:
    """Extract the LOGARCHMETH1 value from ``GET DB CFG`` output."""

    for line in output.splitlines():
        match = _CFG_LINE.search(line)
        if match:
            return match.group(1).strip()
    return None


@dataclass
class LoggingModeDetector:
    connections: ConnectionManager
    logger: logging.Logger = LOGGER

    def classify(self, handle: ConnectionHandle, db_name: str) -> LoggingMode:
        value = self._query_dbcfg_view(handle)
        source = "SYSIBMADM.DBCFG"
        if not value:
            value, source = self._query_db_cfg(handle), "GET DB CFG"
        mode = classify_value(value)
        self.logger.info(
            "Режим журналирования базы %s: %s (%s=%s, источник %s)",
            db_name,
            mode.value,
            PARAMETER,
            value or "-",
            source,
        )
        return mode

    # ------------------------------------------------------------------
    def _query_dbcfg_view(self, handle: ConnectionHandle) -> Optional[str]:
        query = f"SELECT VALUE FROM SYSIBMADM.DBCFG WHERE NAME = '{PARAMETER.lower()}'"
        result = self.connections.run_connected(handle, clp.db2(query, tabular=True))
        if clp.query_failed(result):
            self.logger.debug("Запрос SYSIBMADM.DBCFG не выполнен: %s", result.output)
            return None
        lines = [line.strip() for line in result.stdout.splitlines() if line.strip()]
        return lines[0] if lines else None

    # ------------------------------------------------------------------
    def _query_db_cfg(self, handle: ConnectionHandle) -> Optional[str]:
        result = self.connections.run_connected(handle, clp.get_db_cfg(handle.database_alias))
        if result.exit_code >= clp.CLP_ERROR:
            self.logger.warning(
                "Не удалось прочитать конфигурацию базы %s; считаем журналирование циклическим.",
                handle.db_name,
            )
            return None
        return parse_db_cfg(result.stdout)


__all__ = ["LoggingMode", "LoggingModeDetector", "classify_value", "parse_db_cfg"]
