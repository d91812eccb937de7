"""Session management against the target database.

Three connection modes are supported:

``local``
    The database lives in the local instance; a plain ``CONNECT TO`` is used.
``cataloged``
    A remote database already registered in the local catalog.
``non-cataloged``
    A remote database reachable only by host and port. A TCP/IP node and a
    database alias are cataloged for the duration of the run and removed on
    disconnect, or immediately when connection setup fails.

The CLP back-end process belongs to the shell that started it, so a session
does not survive between two runner invocations. :meth:`ConnectionManager.run_connected`
re-issues the connect with the credential form proven by :meth:`ConnectionManager.connect`
in the same shell as the statement.
"""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from . import clp
from .config import BackupConfig
from .errors import CatalogFailed, ConnectFailed
from .runner import CommandResult, CommandRunner, current_user
from .utils import unique_token

LOGGER = logging.getLogger(__name__)


class ConnectionState(enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


@dataclass
class ConnectionHandle:
    mode: str
    db_name: str
    database_alias: str
    authorization_id: str
    user: Optional[str] = None
    password: Optional[str] = field(default=None, repr=False)
    instance: Optional[str] = None
    temp_node_name: Optional[str] = None
    temp_db_alias: Optional[str] = None
    closed: bool = False

    @property
    def is_remote(self) -> bool:
        return self.mode != "local"

    @property
    def has_temp_catalog(self) -> bool:
        return bool(self.temp_node_name or self.temp_db_alias)


@dataclass
class ConnectionManager:
    runner: CommandRunner
    token_factory: Callable[[], str] = unique_token
    logger: logging.Logger = LOGGER
    state: ConnectionState = ConnectionState.DISCONNECTED

    def connect(self, config: BackupConfig) -> ConnectionHandle:
        if config.db_password and config.db_password not in self.runner.secrets:
            self.runner.secrets.append(config.db_password)
        self.state = ConnectionState.CONNECTING
        try:
            if config.connection_type == "local":
                handle = self._connect_local(config)
            elif config.connection_type == "cataloged":
                handle = self._connect_cataloged(config)
            elif config.connection_type == "non-cataloged":
                handle = self._connect_non_cataloged(config)
            else:
                raise ConnectFailed(f"Неверный тип подключения: {config.connection_type}")
        except Exception:
            self.state = ConnectionState.DISCONNECTED
            raise
        self.state = ConnectionState.CONNECTED
        return handle

    # ------------------------------------------------------------------
    def _connect_local(self, config: BackupConfig) -> ConnectionHandle:
        result = self.runner.execute(
            clp.chain(clp.export_instance(config.db_instance), clp.connect(config.db_name))
        )
        if result.failed:
            raise ConnectFailed(
                f"Не удалось подключиться к базе {config.db_name}: {self.runner.mask(result.output)}"
            )
        self.logger.info("Подключено (local): %s", config.db_name)
        return ConnectionHandle(
            mode="local",
            db_name=config.db_name,
            database_alias=config.db_name,
            authorization_id=self.runner.identity or current_user(),
            instance=config.db_instance,
        )

    # ------------------------------------------------------------------
    def _connect_cataloged(self, config: BackupConfig) -> ConnectionHandle:
        handle = ConnectionHandle(
            mode="cataloged",
            db_name=config.db_name,
            database_alias=config.db_name,
            authorization_id=self.runner.identity or current_user(),
        )
        self._connect_with_fallback(handle, config)
        self.logger.info("Подключено (cataloged): %s", config.db_name)
        return handle

    # ------------------------------------------------------------------
    def _connect_non_cataloged(self, config: BackupConfig) -> ConnectionHandle:
        token = self.token_factory()
        node = f"TN{token}"
        alias = f"TD{token}"
        handle = ConnectionHandle(
            mode="non-cataloged",
            db_name=config.db_name,
            database_alias=alias,
            authorization_id=self.runner.identity or current_user(),
        )
        try:
            result = self.runner.execute(clp.catalog_node(node, config.db_host, config.db_port))
            if result.failed:
                raise CatalogFailed(
                    f"Не удалось зарегистрировать узел {node} для {config.db_host}:{config.db_port}: "
                    f"{self.runner.mask(result.output)}"
                )
            handle.temp_node_name = node

            result = self.runner.execute(clp.catalog_database(config.db_name, alias, node))
            if result.failed:
                raise CatalogFailed(
                    f"Не удалось зарегистрировать базу {config.db_name} как {alias}: "
                    f"{self.runner.mask(result.output)}"
                )
            handle.temp_db_alias = alias

            self._connect_with_fallback(handle, config)
        except Exception:
            self.logger.warning("Откат временных записей каталога для %s.", config.db_name)
            self._remove_temp_catalog(handle)
            raise
        self.logger.info(
            "Подключено (non-cataloged): %s через %s:%s (узел %s, псевдоним %s)",
            config.db_name,
            config.db_host,
            config.db_port,
            node,
            alias,
        )
        return handle

    # ------------------------------------------------------------------
    def _connect_with_fallback(self, handle: ConnectionHandle, config: BackupConfig) -> None:
        last: Optional[CommandResult] = None
        for user, password in clp.credential_forms(config.db_user, config.db_password):
            last = self.runner.execute(clp.connect(handle.database_alias, user, password))
            if not last.failed:
                handle.user = user
                handle.password = password
                if user:
                    handle.authorization_id = user
                return
            self.logger.debug(
                "Подключение к %s (пользователь=%s, пароль=%s) не удалось.",
                handle.database_alias,
                user or "-",
                "да" if password else "нет",
            )
        detail = self.runner.mask(last.output) if last else ""
        raise ConnectFailed(f"Не удалось подключиться к базе {config.db_name}: {detail}")

    # ------------------------------------------------------------------
    def run_connected(self, handle: ConnectionHandle, command: str, *, timeout: Optional[int] = None) -> CommandResult:
        """Run *command* in a shell that holds a session to the database."""

        return self.runner.execute(
            clp.chain(
                clp.export_instance(handle.instance),
                clp.silent(clp.connect(handle.database_alias, handle.user, handle.password)),
                command,
            ),
            timeout=timeout,
        )

    # ------------------------------------------------------------------
    def disconnect(self, handle: Optional[ConnectionHandle]) -> None:
        """Close the session and drop temporary catalog entries. Never raises."""

        if handle is None or handle.closed:
            return
        self.logger.info("Отключение от %s...", handle.db_name)
        result = self.runner.execute(clp.terminate())
        if result.failed:
            self.logger.warning("Не удалось завершить сеанс CLP: %s", self.runner.mask(result.output))
        if handle.has_temp_catalog:
            self._remove_temp_catalog(handle)
        handle.closed = True
        self.state = ConnectionState.DISCONNECTED

    # ------------------------------------------------------------------
    def _remove_temp_catalog(self, handle: ConnectionHandle) -> None:
        failures: List[str] = []
        if handle.temp_db_alias:
            result = self.runner.execute(clp.uncatalog_database(handle.temp_db_alias))
            if result.failed:
                failures.append(f"база {handle.temp_db_alias}: {result.output}")
            else:
                handle.temp_db_alias = None
        if handle.temp_node_name:
            result = self.runner.execute(clp.uncatalog_node(handle.temp_node_name))
            if result.failed:
                failures.append(f"узел {handle.temp_node_name}: {result.output}")
            else:
                handle.temp_node_name = None
        # refresh the directory cache of the back-end process
        self.runner.execute(clp.terminate())
        if failures:
            for failure in failures:
                self.logger.warning("Не удалось удалить временную запись каталога (%s).", failure)
        else:
            self.logger.info("Временные записи каталога удалены.")


__all__ = ["ConnectionHandle", "ConnectionManager", "ConnectionState"]
