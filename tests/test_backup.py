"""Tests for the backup session executor."""
import logging
from datetime import datetime, timedelta
from pathlib import Path

import pytest

from db2_backup.backup import (
    BackupSession,
    BackupSessionExecutor,
    embedded_error_lines,
    parse_application_handles,
    parse_directory_node,
)
from db2_backup.config import BackupConfig
from db2_backup.errors import (
    BackupCommandFailed,
    BackupReportedError,
    DeactivateFailed,
    NoArtifactsProduced,
    SessionDirExists,
)
from db2_backup.logmode import LoggingMode, LoggingModeDetector
from db2_backup.runner import CommandResult

from .conftest import APPLICATIONS_LISTING, BACKUP_OK, ok, sql_error, write_backup_image

MEDIA_ERROR = "SQL2062N  An error occurred while accessing media \"/mnt/backup\".  Reason code: \"12\"."


@pytest.fixture
def executor(connections):
    return BackupSessionExecutor(connections, LoggingModeDetector(connections))


@pytest.fixture
def handle(connections, config):
    return connections.connect(config)


@pytest.fixture
def circular(runner):
    runner.on("SYSIBMADM.DBCFG", ok("OFF\n"))
    return runner


def statements_starting(runner, prefix):
    return [index for index, statement in enumerate(runner.statements) if statement.startswith(prefix)]


def test_embedded_error_lines():
    output = "\n".join(
        [
            "Backup successful. The timestamp for this backup image is : 20240101120000",
            MEDIA_ERROR,
            "SQL1035N  The operation failed because the database is in use.  SQLSTATE=57019",
        ]
    )
    assert embedded_error_lines(output) == [MEDIA_ERROR, output.splitlines()[2]]
    assert embedded_error_lines(BACKUP_OK) == []


def test_parse_application_handles():
    assert parse_application_handles(APPLICATIONS_LISTING) == [27, 31]
    assert parse_application_handles("SQL1611W  No data was returned by Database System Monitor.") == []


class TestBuildCommand:
    def session(self, config, mode, deactivated=False):
        session = BackupSession.create(config, datetime(2024, 1, 1, 12, 0, 0))
        session.logging_mode = mode
        session.deactivated = deactivated
        return session

    def test_archive_is_online(self, executor, handle, config):
        command = executor.build_command(handle, config, self.session(config, LoggingMode.ARCHIVE))
        assert " ONLINE " in command
        assert "20240101_120000000" in command
        assert command.endswith("BUFFER 1024 PARALLELISM 4 COMPRESS WITHOUT PROMPTING'")

    def test_circular_is_offline(self, executor, handle, config):
        command = executor.build_command(handle, config, self.session(config, LoggingMode.CIRCULAR, True))
        assert "ONLINE" not in command

    def test_incremental_uncompressed(self, executor, handle, backup_root):
        config = BackupConfig(db_name="SAMPLE", backup_path=str(backup_root), backup_type="delta", compress=False)
        command = executor.build_command(handle, config, self.session(config, LoggingMode.ARCHIVE))
        assert "ONLINE INCREMENTAL DELTA TO" in command
        assert "COMPRESS" not in command


class TestArchiveRun:
    def test_online_backup_into_session_dir(self, runner, executor, handle, config):
        session = BackupSession.create(config)
        artifacts = executor.run(handle, config, session)

        assert session.logging_mode is LoggingMode.ARCHIVE
        assert session.deactivated is False
        assert artifacts.location == session.session_dir
        assert artifacts.misplaced is False
        assert len(artifacts) == 1
        assert artifacts.total_size == 4096
        assert session.session_dir.parent == config.database_directory
        backup = runner.statements[runner.index_of("BACKUP DATABASE")]
        assert backup.startswith("BACKUP DATABASE SAMPLE ONLINE TO")
        assert runner.count("DEACTIVATE") == 0
        assert handle.closed is True

    def test_reported_error_with_zero_exit(self, runner, executor, handle, config):
        runner.on("BACKUP DATABASE", ok(MEDIA_ERROR))
        with pytest.raises(BackupReportedError) as excinfo:
            executor.run(handle, config)
        assert excinfo.value.lines == [MEDIA_ERROR]
        assert handle.closed is True

    def test_timeout(self, runner, executor, handle, backup_root):
        config = BackupConfig(db_name="SAMPLE", backup_path=str(backup_root), backup_timeout=60)
        runner.on("BACKUP DATABASE", CommandResult(command="", exit_code=124, timed_out=True))
        with pytest.raises(BackupCommandFailed, match="таймаут"):
            executor.run(handle, config)

    def test_no_files_produced(self, runner, executor, handle, config):
        runner.on("BACKUP DATABASE", ok(BACKUP_OK))
        with pytest.raises(NoArtifactsProduced):
            executor.run(handle, config)

    def test_files_in_parent_directory(self, runner, executor, handle, config, caplog):
        def write_next_to_target(statement):
            session_dir = statement.split("TO '")[1].split("'")[0]
            return write_backup_image(statement.replace(session_dir, session_dir.rsplit("/", 1)[0]))

        runner.on("BACKUP DATABASE", write_next_to_target)
        session = BackupSession.create(config)
        with caplog.at_level(logging.WARNING):
            artifacts = executor.run(handle, config, session)
        assert artifacts.misplaced is True
        assert artifacts.location == config.database_directory
        assert len(artifacts) == 1
        assert session.warnings
        assert "не найдены" in caplog.text

    def test_existing_session_dir(self, runner, executor, handle, config):
        session = BackupSession.create(config)
        session.session_dir.mkdir(parents=True)
        with pytest.raises(SessionDirExists):
            executor.run(handle, config, session)
        assert runner.count("BACKUP DATABASE") == 0
        assert handle.closed is True

    def test_password_is_masked_in_logs(self, runner, executor, backup_root, caplog):
        config = BackupConfig(
            db_name="SAMPLE",
            backup_path=str(backup_root),
            connection_type="cataloged",
            db_user="backup",
            db_password="s3cret",
        )
        handle = executor.connections.connect(config)
        with caplog.at_level(logging.DEBUG):
            executor.run(handle, config)
        assert "USER backup USING ***" in caplog.text
        assert "s3cret" not in caplog.text


class TestCircularRun:
    def test_offline_sequence(self, circular, executor, handle, config):
        session = BackupSession.create(config)
        artifacts = executor.run(handle, config, session)

        runner = circular
        force = runner.index_of("FORCE APPLICATION (27, 31)")
        deactivate = runner.index_of("DEACTIVATE DATABASE SAMPLE")
        backup = runner.index_of("BACKUP DATABASE SAMPLE TO")
        (activate,) = statements_starting(runner, "ACTIVATE DATABASE SAMPLE")
        assert -1 < force < deactivate < backup < activate
        assert "ONLINE" not in runner.statements[backup]
        assert session.deactivated is True
        assert session.reactivated is True
        assert session.requires_manual_attention is False
        assert len(artifacts) == 1

    def test_backup_failure_still_reactivates(self, circular, executor, handle, config):
        circular.on("BACKUP DATABASE", sql_error("SQL1035N  The database is currently in use.  SQLSTATE=57019"))
        session = BackupSession.create(config)
        with pytest.raises(BackupCommandFailed):
            executor.run(handle, config, session)
        assert statements_starting(circular, "ACTIVATE DATABASE")
        assert session.reactivated is True
        assert handle.closed is True

    def test_deactivate_failure_aborts(self, circular, executor, handle, config):
        circular.on("DEACTIVATE DATABASE", sql_error("SQL1035N  The database is currently in use.  SQLSTATE=57019"))
        session = BackupSession.create(config)
        with pytest.raises(DeactivateFailed):
            executor.run(handle, config, session)
        assert circular.count("BACKUP DATABASE") == 0
        assert statements_starting(circular, "ACTIVATE DATABASE") == []
        assert not session.session_dir.exists()
        assert handle.closed is True

    def test_deactivate_warning_is_not_fatal(self, circular, executor, handle, config):
        circular.on("DEACTIVATE DATABASE", ok("SQL1495W  Deactivate database is successful.", exit_code=2))
        session = BackupSession.create(config)
        executor.run(handle, config, session)
        assert session.reactivated is True

    def test_listing_failure_is_a_warning(self, circular, executor, handle, config):
        circular.on("LIST APPLICATIONS", sql_error())
        session = BackupSession.create(config)
        executor.run(handle, config, session)
        assert circular.count("FORCE APPLICATION") == 0
        assert len(session.warnings) == 1

    def test_no_applications_skips_force(self, circular, executor, handle, config):
        circular.on("LIST APPLICATIONS", ok("SQL1611W  No data was returned by Database System Monitor.", exit_code=2))
        executor.run(handle, config)
        assert circular.count("FORCE APPLICATION") == 0

    def test_reactivation_failure_needs_attention(self, circular, executor, handle, config, caplog):
        circular.on("ACTIVATE DATABASE", sql_error("SQL1224N  The database manager is not able to accept new requests."))
        circular.on("DEACTIVATE DATABASE", ok())
        session = BackupSession.create(config)
        with caplog.at_level(logging.ERROR):
            artifacts = executor.run(handle, config, session)
        assert len(artifacts) == 1
        assert session.reactivated is False
        assert session.requires_manual_attention is True
        assert "db2 activate database SAMPLE" in caplog.text
        assert any("активировать" in warning for warning in session.warnings)


class TestNonCatalogedRun:
    def test_forces_through_attached_node(self, circular, connections, executor, backup_root):
        config = BackupConfig(
            db_name="SAMPLE",
            backup_path=str(backup_root),
            connection_type="non-cataloged",
            db_host="db2.example.com",
            db_user="backup",
            db_password="s3cret",
        )
        handle = connections.connect(config)
        executor.run(handle, config)
        listing = [command for command in circular.calls if "LIST APPLICATIONS" in command][0]
        assert "ATTACH TO TNABC123 USER backup USING s3cret" in listing
        backup = circular.statements[circular.index_of("BACKUP DATABASE")]
        assert backup.startswith("BACKUP DATABASE TDABC123 USER backup USING s3cret TO")
        assert circular.count("UNCATALOG DATABASE TDABC123") == 1
        assert circular.count("UNCATALOG NODE TNABC123") == 1


def test_sessions_one_millisecond_apart_get_distinct_dirs(config):
    first = datetime(2024, 1, 1, 12, 0, 0, 1000)
    second = BackupSession.create(config, first + timedelta(milliseconds=1))
    assert BackupSession.create(config, first).session_dir != second.session_dir
    assert second.session_id == "20240101_120000002"


DIRECTORY_LISTING = """
 System Database Directory

 Number of entries in the directory = 2

Database 1 entry:

 Database alias                       = LOCALDB
 Database name                        = LOCALDB
 Local database directory             = /db2/data
 Database release level               = 15.00
 Directory entry type                 = Indirect
 Catalog database partition number    = 0

Database 2 entry:

 Database alias                       = REMOTEDB
 Database name                        = SAMPLE
 Node name                            = DBNODE1
 Database release level               = 15.00
 Directory entry type                 = Remote
 Authentication                       = SERVER
 Catalog database partition number    = -1
"""


def test_parse_directory_node():
    assert parse_directory_node(DIRECTORY_LISTING, "remotedb") == "DBNODE1"
    assert parse_directory_node(DIRECTORY_LISTING, "LOCALDB") is None
    assert parse_directory_node(DIRECTORY_LISTING, "MISSING") is None


class TestCatalogedRun:
    @pytest.fixture
    def remote_config(self, backup_root):
        return BackupConfig(
            db_name="REMOTEDB",
            backup_path=str(backup_root),
            connection_type="cataloged",
            db_user="backup",
            db_password="s3cret",
        )

    def test_forces_through_cataloged_node(self, circular, connections, executor, remote_config):
        circular.on("LIST DATABASE DIRECTORY", ok(DIRECTORY_LISTING))
        handle = connections.connect(remote_config)
        executor.run(handle, remote_config)

        listing = [command for command in circular.calls if "LIST APPLICATIONS" in command][0]
        force = [command for command in circular.calls if "FORCE APPLICATION" in command][0]
        assert "ATTACH TO DBNODE1 USER backup USING s3cret" in listing
        assert "ATTACH TO DBNODE1 USER backup USING s3cret" in force
        assert circular.count("LIST DATABASE DIRECTORY") == 1

    def test_unknown_node_falls_back_to_local_instance(self, circular, connections, executor, remote_config, caplog):
        handle = connections.connect(remote_config)
        with caplog.at_level(logging.WARNING):
            executor.run(handle, remote_config)
        listing = [command for command in circular.calls if "LIST APPLICATIONS" in command][0]
        assert "ATTACH" not in listing
        assert "Не удалось определить узел для REMOTEDB" in caplog.text


def test_parent_fallback_ignores_other_databases(runner, executor, handle, config):
    def write_foreign_image(statement):
        session_dir = Path(statement.split("TO '")[1].split("'")[0])
        (session_dir.parent / "OTHERDB.0.db2inst1.DBPART000.20240101120000.001").write_bytes(b"\0")
        return ok(BACKUP_OK)

    runner.on("BACKUP DATABASE", write_foreign_image)
    with pytest.raises(NoArtifactsProduced):
        executor.run(handle, config)


def test_parent_fallback_claims_only_own_images(runner, executor, handle, config):
    def write_both(statement):
        session_dir = statement.split("TO '")[1].split("'")[0]
        parent = Path(session_dir).parent
        (parent / "OTHERDB.0.db2inst1.DBPART000.20240101120000.001").write_bytes(b"\0")
        return write_backup_image(statement.replace(session_dir, str(parent)))

    runner.on("BACKUP DATABASE", write_both)
    artifacts = executor.run(handle, config)
    assert artifacts.misplaced is True
    assert [artifact.path.name.split(".")[0] for artifact in artifacts] == ["SAMPLE"]
