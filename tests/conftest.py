"""Shared fixtures: a scripted stand-in for the DB2 command line processor."""
import re
import shlex
from pathlib import Path
from typing import Callable, List, Optional, Tuple, Union

import pytest

from db2_backup.config import BackupConfig
from db2_backup.connection import ConnectionManager
from db2_backup.runner import CommandResult, CommandRunner

OK_MESSAGE = "DB20000I  The SQL command completed successfully."
BACKUP_OK = "Backup successful. The timestamp for this backup image is : 20240101120000"

APPLICATIONS_LISTING = """
Auth Id  Application    Appl.      Application Id                                                 DB       # of
         Name           Handle                                                                    Name    Agents
-------- -------------- ---------- -------------------------------------------------------------- -------- -----
DB2INST1 db2bp          27         *LOCAL.db2inst1.240101120000                                   SAMPLE   1
APPUSER  java           31         10.0.0.5.41234.240101115959                                    SAMPLE   1
"""

Response = Union[CommandResult, Callable[[str], CommandResult]]


def ok(stdout: str = OK_MESSAGE, exit_code: int = 0) -> CommandResult:
    return CommandResult(command="", exit_code=exit_code, stdout=stdout)


def no_rows() -> CommandResult:
    return CommandResult(command="", exit_code=1, stdout="")


def sql_error(
    stdout: str = "SQL0551N  The statement failed because the authorization ID does not have the "
    "required authorization.  SQLSTATE=42501",
    exit_code: int = 4,
) -> CommandResult:
    return CommandResult(command="", exit_code=exit_code, stdout=stdout)


def statement_of(command: str) -> str:
    """The SQL/CLP text of the last command in a ``&&`` chain."""

    last = command.split(" && ")[-1]
    tokens = shlex.split(last.replace(" > /dev/null", ""))
    tokens = [token for token in tokens[1:] if token != "-x"]
    return " ".join(tokens)


class FakeRunner(CommandRunner):
    """Answers commands from rules; rules added later take precedence."""

    def __init__(self, identity: Optional[str] = "db2inst1") -> None:
        super().__init__(identity=identity)
        self.rules: List[Tuple[str, Response]] = []
        self.calls: List[str] = []

    def on(self, pattern: str, response: Response) -> "FakeRunner":
        self.rules.append((pattern, response))
        return self

    def execute(self, command, *, identity=None, timeout=None):
        self.calls.append(command)
        statement = statement_of(command)
        for pattern, response in reversed(self.rules):
            if pattern in statement:
                result = response(statement) if callable(response) else response
                return CommandResult(
                    command=command,
                    exit_code=result.exit_code,
                    stdout=result.stdout,
                    stderr=result.stderr,
                    timed_out=result.timed_out,
                )
        return CommandResult(command=command, exit_code=0, stdout=OK_MESSAGE)

    @property
    def statements(self) -> List[str]:
        return [statement_of(command) for command in self.calls]

    def index_of(self, fragment: str) -> int:
        for index, statement in enumerate(self.statements):
            if fragment in statement:
                return index
        return -1

    def count(self, fragment: str) -> int:
        return sum(1 for statement in self.statements if fragment in statement)


def write_backup_image(statement: str) -> CommandResult:
    match = re.search(r"TO '([^']+)'", statement)
    destination = Path(match.group(1))
    alias = statement.split()[2]
    image = destination / f"{alias}.0.db2inst1.DBPART000.20240101120000.001"
    image.write_bytes(b"\0" * 4096)
    return ok(BACKUP_OK)


@pytest.fixture
def runner() -> FakeRunner:
    fake = FakeRunner()
    fake.on("VALUES CURRENT USER", ok("DB2INST1\n"))
    fake.on("AUTH_LIST_AUTHORITIES_FOR_AUTHID", ok("SYSADM\n"))
    fake.on("SYSCAT.DBAUTH", no_rows())
    fake.on("SYSIBMADM.DBCFG", ok("LOGRETAIN\n"))
    fake.on("LIST APPLICATIONS", ok(APPLICATIONS_LISTING))
    fake.on("BACKUP DATABASE", write_backup_image)
    return fake


@pytest.fixture
def backup_root(tmp_path: Path) -> Path:
    root = tmp_path / "backup"
    root.mkdir()
    return root


@pytest.fixture
def config(backup_root: Path) -> BackupConfig:
    return BackupConfig(db_name="SAMPLE", backup_path=str(backup_root))


@pytest.fixture
def connections(runner: FakeRunner) -> ConnectionManager:
    return ConnectionManager(runner, token_factory=lambda: "ABC123")
