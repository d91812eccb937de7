"""Builders for DB2 command line processor (CLP) invocations.

Every function returns a shell command string for :class:`CommandRunner`.
Nothing here talks to DB2; the builders are kept separate so the exact
command text can be asserted in tests and masked in logs.
"""
from __future__ import annotations

import re
import shlex
from typing import Iterable, List, Optional, Tuple

Credentials = Tuple[Optional[str], Optional[str]]

# CLP return codes: 0 ok, 1 no rows, 2 warning, 4 DB2/SQL error, 8 system error
CLP_OK = 0
CLP_NO_ROWS = 1
CLP_WARNING = 2
CLP_ERROR = 4

ERROR_MARKER = re.compile(r"SQLSTATE=\w{5}|\bSQL\d{4,5}N\b")


def db2(statement: str, *, tabular: bool = False) -> str:
    """Return ``db2 '<statement>'``; ``tabular`` drops column headers (``-x``)."""

    flags = "-x " if tabular else ""
    return f"db2 {flags}{shlex.quote(statement)}"


def query_failed(result) -> bool:
    """True when a CLP query errored, as opposed to returning no rows."""

    return result.exit_code >= CLP_ERROR or bool(ERROR_MARKER.search(result.output))


def chain(*commands: str) -> str:
    return " && ".join(command for command in commands if command)


def silent(command: str) -> str:
    return f"{command} > /dev/null"


def export_instance(instance: Optional[str]) -> str:
    if not instance:
        return ""
    return f"export DB2INSTANCE={shlex.quote(instance)}"


def with_credentials(statement: str, user: Optional[str], password: Optional[str]) -> str:
    if user:
        statement = f"{statement} USER {user}"
        if password:
            statement = f"{statement} USING {password}"
    return statement


def credential_forms(user: Optional[str], password: Optional[str]) -> List[Credentials]:
    """Credential forms from most to least specific, skipping incomplete ones."""

    forms: List[Credentials] = []
    if user and password:
        forms.append((user, password))
    if user:
        forms.append((user, None))
    forms.append((None, None))
    return forms


# ---------------------------------------------------------------------------
def connect(alias: str, user: Optional[str] = None, password: Optional[str] = None) -> str:
    return db2(with_credentials(f"CONNECT TO {alias}", user, password))


def terminate() -> str:
    return "db2 terminate"


def catalog_node(node: str, host: str, port: int) -> str:
    return db2(f"CATALOG TCPIP NODE {node} REMOTE {host} SERVER {port}")


def catalog_database(db_name: str, alias: str, node: str) -> str:
    return db2(f"CATALOG DATABASE {db_name} AS {alias} AT NODE {node}")


def uncatalog_database(alias: str) -> str:
    return db2(f"UNCATALOG DATABASE {alias}")


def uncatalog_node(node: str) -> str:
    return db2(f"UNCATALOG NODE {node}")


def attach(node: str, user: Optional[str] = None, password: Optional[str] = None) -> str:
    return db2(with_credentials(f"ATTACH TO {node}", user, password))


def list_database_directory() -> str:
    return db2("LIST DATABASE DIRECTORY")


def list_applications(alias: str) -> str:
    return db2(f"LIST APPLICATIONS FOR DATABASE {alias}")


def force_applications(handles: Iterable[int]) -> str:
    joined = ", ".join(str(handle) for handle in handles)
    return db2(f"FORCE APPLICATION ({joined})")


def deactivate(alias: str, user: Optional[str] = None, password: Optional[str] = None) -> str:
    return db2(with_credentials(f"DEACTIVATE DATABASE {alias}", user, password))


def activate(alias: str, user: Optional[str] = None, password: Optional[str] = None) -> str:
    return db2(with_credentials(f"ACTIVATE DATABASE {alias}", user, password))


def get_db_cfg(alias: str) -> str:
    return db2(f"GET DB CFG FOR {alias}")


def backup(
    alias: str,
    destination: str,
    *,
    backup_type: str = "full",
    online: bool = False,
    compress: bool = False,
    buffer_size: int = 1024,
    parallelism: int = 4,
    user: Optional[str] = None,
    password: Optional[str] = None,
) -> str:
    """Build ``BACKUP DATABASE`` for one session directory."""

    statement = with_credentials(f"BACKUP DATABASE {alias}", user, password)
    if online:
        statement += " ONLINE"
    if backup_type == "incremental":
        statement += " INCREMENTAL"
    elif backup_type == "delta":
        statement += " INCREMENTAL DELTA"
    elif backup_type != "full":
        raise ValueError(f"unknown backup type: {backup_type}")
    statement += f" TO '{destination}' BUFFER {buffer_size} PARALLELISM {parallelism}"
    if compress:
        statement += " COMPRESS"
    statement += " WITHOUT PROMPTING"
    return db2(statement)


__all__ = [
    "CLP_ERROR",
    "CLP_NO_ROWS",
    "CLP_OK",
    "CLP_WARNING",
    "ERROR_MARKER",
    "activate",
    "attach",
    "backup",
    "catalog_database",
    "catalog_node",
    "chain",
    "connect",
    "credential_forms",
    "db2",
    "deactivate",
    "export_instance",
    "force_applications",
    "get_db_cfg",
    "list_applications",
    "list_database_directory",
    "query_failed",
    "silent",
    "terminate",
    "uncatalog_database",
    "uncatalog_node",
    "with_credentials",
]
