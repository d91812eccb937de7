"""Pre-flight check that the session may run BACKUP DATABASE.

Catalog introspection needs privileges that the backup itself does not, so a
query that errors is treated as *unknown* rather than as a denial. Only a
check where every signal could be read and none is positive rejects the run;
in every other inconclusive case the backup is attempted and DB2 has the
final word.
"""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Dict, Optional

from . import clp
from .connection import ConnectionHandle, ConnectionManager
from .errors import InsufficientRights

LOGGER = logging.getLogger(__name__)

REQUIRED_AUTHORITIES = "SYSADM, SYSCTRL, SYSMAINT, DBADM или BACKUP"
SYSTEM_AUTHORITIES = ("SYSADM", "SYSCTRL", "SYSMAINT")


class RightsStatus(enum.Enum):
    VERIFIED = "verified"
    DEGRADED = "degraded"
    INSUFFICIENT = "insufficient"


class Signal(enum.Enum):
    POSITIVE = "positive"
    NEGATIVE = "negative"
    UNKNOWN = "unknown"


@dataclass
class RightsCheck:
    status: RightsStatus
    authorization_id: str
    authorization_certain: bool
    signals: Dict[str, Signal] = field(default_factory=dict)

    @property
    def may_proceed(self) -> bool:
        return self.status is not RightsStatus.INSUFFICIENT

    def raise_for_status(self, db_name: str) -> None:
        if self.status is RightsStatus.INSUFFICIENT:
            raise InsufficientRights(
                f"У пользователя {self.authorization_id} нет прав на резервное копирование базы "
                f"{db_name}. Требуется одно из полномочий: {REQUIRED_AUTHORITIES}."
            )


def _sql_literal(value: str) -> str:
    return value.upper().replace("'", "''")


def system_authority_query(auth_id: str) -> str:
    authorities = ", ".join(f"'{name}'" for name in SYSTEM_AUTHORITIES)
    return (
        "SELECT AUTHORITY FROM TABLE (SYSPROC.AUTH_LIST_AUTHORITIES_FOR_AUTHID"
        f"('{_sql_literal(auth_id)}', 'U')) AS T WHERE AUTHORITY IN ({authorities}) "
        "AND 'Y' IN (D_USER, D_GROUP, D_PUBLIC, ROLE_USER, ROLE_GROUP, ROLE_PUBLIC)"
    )


def grantee_clause(auth_id: str) -> str:
    """Match DBAUTH rows granted to the user, its groups, its roles or PUBLIC."""

    literal = _sql_literal(auth_id)
    return (
        f"((GRANTEE = '{literal}' AND GRANTEETYPE = 'U')"
        " OR (GRANTEETYPE = 'G' AND (GRANTEE = 'PUBLIC' OR GRANTEE IN (SELECT \"GROUP\" FROM TABLE "
        f"(SYSPROC.AUTH_LIST_GROUPS_FOR_AUTHID('{literal}')) AS G)))"
        " OR (GRANTEETYPE = 'R' AND GRANTEE IN (SELECT ROLENAME FROM TABLE "
        f"(SYSPROC.AUTH_LIST_ROLES_FOR_AUTHID('{literal}', 'U')) AS R)))"
    )


def dbadm_query(auth_id: str) -> str:
    return (
        "SELECT DBADMAUTH FROM SYSCAT.DBAUTH "
        f"WHERE {grantee_clause(auth_id)} AND DBADMAUTH = 'Y' FETCH FIRST 1 ROWS ONLY"
    )


def backup_privilege_query(auth_id: str) -> str:
    return (
        "SELECT BACKUPAUTH FROM SYSCAT.DBAUTH "
        f"WHERE {grantee_clause(auth_id)} AND BACKUPAUTH = 'Y' FETCH FIRST 1 ROWS ONLY"
    )


@dataclass
class RightsVerifier:
    connections: ConnectionManager
    logger: logging.Logger = LOGGER

    def verify(self, handle: ConnectionHandle, db_name: str) -> RightsCheck:
        self.logger.info("Проверка прав на резервное копирование...")
        auth_id, certain = self.resolve_authorization_id(handle)
        self.logger.info("Идентификатор авторизации: %s%s", auth_id, "" if certain else " (не подтверждён)")

        signals = {
            "system": self._signal(handle, system_authority_query(auth_id)),
            "dbadm": self._signal(handle, dbadm_query(auth_id)),
            "backup": self._signal(handle, backup_privilege_query(auth_id)),
        }
        status = decide(signals)
        check = RightsCheck(
            status=status,
            authorization_id=auth_id,
            authorization_certain=certain,
            signals=signals,
        )

        if status is RightsStatus.VERIFIED:
            granted = ", ".join(name for name, value in signals.items() if value is Signal.POSITIVE)
            self.logger.info("Права на резервное копирование подтверждены (%s).", granted)
        elif status is RightsStatus.DEGRADED:
            self.logger.warning(
                "Не удалось проверить права для %s на базу %s; продолжаем, DB2 проверит права при бэкапе.",
                auth_id,
                db_name,
            )
        else:
            self.logger.error(
                "Пользователь %s не имеет ни одного из полномочий %s на базу %s.",
                auth_id,
                REQUIRED_AUTHORITIES,
                db_name,
            )
        return check

    # ------------------------------------------------------------------
    def resolve_authorization_id(self, handle: ConnectionHandle):
        for statement in ("VALUES CURRENT USER", "VALUES SESSION_USER"):
            value = self._scalar(handle, statement)
            if value:
                return value, True
        return handle.authorization_id.upper(), False

    # ------------------------------------------------------------------
    def _scalar(self, handle: ConnectionHandle, statement: str) -> Optional[str]:
        result = self.connections.run_connected(handle, clp.db2(statement, tabular=True))
        if clp.query_failed(result):
            return None
        for line in result.stdout.splitlines():
            line = line.strip()
            if line:
                return line
        return None

    # ------------------------------------------------------------------
    def _signal(self, handle: ConnectionHandle, query: str) -> Signal:
        result = self.connections.run_connected(handle, clp.db2(query, tabular=True))
        if clp.query_failed(result):
            self.logger.debug("Запрос каталога не выполнен: %s", self.connections.runner.mask(result.output))
            return Signal.UNKNOWN
        if result.exit_code == clp.CLP_NO_ROWS or not result.stdout.strip():
            return Signal.NEGATIVE
        return Signal.POSITIVE


def decide(signals: Dict[str, Signal]) -> RightsStatus:
    values = list(signals.values())
    if any(value is Signal.POSITIVE for value in values):
        return RightsStatus.VERIFIED
    if values and all(value is Signal.NEGATIVE for value in values):
        return RightsStatus.INSUFFICIENT
    return RightsStatus.DEGRADED


__all__ = [
    "REQUIRED_AUTHORITIES",
    "RightsCheck",
    "RightsStatus",
    "RightsVerifier",
    "Signal",
    "decide",
]
