"""Execution of shell commands, optionally as the DB2 instance owner."""
from __future__ import annotations

import getpass
import logging
import os
import pwd
import subprocess
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from .errors import Db2NotFound, IdentityError
from .utils import mask_sensitive

LOGGER = logging.getLogger(__name__)

CANDIDATE_INSTANCE_OWNERS = ("db2inst1", "db2fenc1", "db2inst", "db2admin")

EXIT_LAUNCH_FAILED = 127
EXIT_TIMED_OUT = 124


@dataclass
class CommandResult:
    command: str
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False

    @property
    def failed(self) -> bool:
        return self.exit_code != 0

    @property
    def output(self) -> str:
        """stdout and stderr joined; the CLP writes its messages to stdout."""

        return "\n".join(part for part in (self.stdout.strip(), self.stderr.strip()) if part)


def profile_prelude(identity: str) -> str:
    """Shell snippet that sources the DB2 instance environment for *identity*."""

    home = f"~{identity}"
    return (
        f"source {home}/sqllib/db2profile 2>/dev/null"
        " || source /opt/ibm/db2/V*/db2profile 2>/dev/null"
        " || true"
    )


@dataclass
class CommandRunner:
    """Run commands through ``bash``, switching identity with ``su`` when needed.

    The runner never raises for a failed external command. Non-zero exit codes,
    identities that cannot be switched to and timeouts all come back as a
    failed :class:`CommandResult` and the caller decides what they mean.
    """

    identity: Optional[str] = None
    shell: str = "/bin/bash"
    secrets: List[str] = field(default_factory=list)
    logger: logging.Logger = LOGGER

    def needs_impersonation(self, identity: Optional[str] = None) -> bool:
        identity = identity or self.identity
        return bool(identity) and identity != current_user()

    def build_argv(self, command: str, identity: Optional[str] = None) -> list:
        identity = identity or self.identity
        if self.needs_impersonation(identity):
            script = f"{profile_prelude(identity)}; {command}"
            return ["su", "-", identity, "-c", script]
        if identity:
            command = f"{profile_prelude(identity)}; {command}"
        return [self.shell, "-c", command]

    def execute(
        self,
        command: str,
        *,
        identity: Optional[str] = None,
        timeout: Optional[int] = None,
    ) -> CommandResult:
        argv = self.build_argv(command, identity)
        self.logger.debug("Выполнение команды: %s", self.mask(command))
        try:
            completed = subprocess.run(
                argv,
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired as exc:
            self.logger.error("Команда превысила таймаут %s секунд: %s", timeout, self.mask(command))
            return CommandResult(
                command=command,
                exit_code=EXIT_TIMED_OUT,
                stdout=_as_text(exc.stdout),
                stderr=_as_text(exc.stderr) or f"timed out after {timeout} seconds",
                timed_out=True,
            )
        except OSError as exc:
            self.logger.error("Не удалось запустить команду от имени '%s': %s", identity or self.identity, exc)
            return CommandResult(command=command, exit_code=EXIT_LAUNCH_FAILED, stderr=str(exc))

        result = CommandResult(
            command=command,
            exit_code=completed.returncode,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
        )
        if result.failed:
            self.logger.debug("Код завершения %s: %s", result.exit_code, self.mask(result.output))
        return result

    def mask(self, text: str) -> str:
        return mask_sensitive(text, self.secrets)


# ---------------------------------------------------------------------------
def current_user() -> str:
    return getpass.getuser()


def is_root() -> bool:
    return os.geteuid() == 0


def user_exists(name: str) -> bool:
    try:
        pwd.getpwnam(name)
    except KeyError:
        return False
    return True


def resolve_identity(
    db_instance: Optional[str] = None,
    *,
    candidates: Iterable[str] = CANDIDATE_INSTANCE_OWNERS,
) -> str:
    """Return the account DB2 commands should run as.

    A non-root caller always runs as itself. When running as root the instance
    owner comes from ``db_instance``, then ``$DB2INSTANCE``, then the first
    existing well-known instance account.
    """

    if not is_root():
        user = current_user()
        LOGGER.info("Команды DB2 выполняются от имени текущего пользователя: %s", user)
        return user

    LOGGER.info("Запуск от root, определяем владельца экземпляра DB2...")
    owner = db_instance or os.environ.get("DB2INSTANCE")
    if not owner:
        owner = next((name for name in candidates if user_exists(name)), None)
    if not owner:
        raise IdentityError(
            "Не удалось определить владельца экземпляра DB2. Укажите db_instance в конфигурации "
            "или переменную окружения DB2INSTANCE."
        )
    LOGGER.info("Команды DB2 будут выполняться от имени пользователя: %s", owner)
    return owner


def check_db2_available(runner: CommandRunner) -> None:
    result = runner.execute("command -v db2")
    if result.failed or not result.stdout.strip():
        raise Db2NotFound(f"Команда db2 не найдена для пользователя {runner.identity or current_user()}.")
    LOGGER.info("DB2 найден: %s", result.stdout.strip().splitlines()[0])


def _as_text(value) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


__all__ = [
    "CommandResult",
    "CommandRunner",
    "check_db2_available",
    "current_user",
    "is_root",
    "profile_prelude",
    "resolve_identity",
]
