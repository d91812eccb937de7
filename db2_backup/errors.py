"""Domain exceptions for the DB2 backup tool.

Fatal failures abort the run and propagate to the command line. ``ReactivateFailed``
and ``PruneFailed`` are non-fatal: they are logged and recorded on the run
report instead of being raised out of the orchestrator.
"""
from __future__ import annotations

from typing import Iterable, Optional


class Db2BackupError(RuntimeError):
    """Base exception for all backup failures.

    The orchestrator attaches its partial ``RunReport`` as ``report`` before
    re-raising, so callers can still inspect the session state.
    """

    report = None


class IdentityError(Db2BackupError):
    """Raised when the DB2 instance owner cannot be determined."""


class Db2NotFound(Db2BackupError):
    """Raised when the ``db2`` command line processor is not available."""


class BackupPathError(Db2BackupError):
    """Raised when the backup destination is missing or not writable."""


class ConnectFailed(Db2BackupError):
    """Raised when no session to the database could be established."""


class CatalogFailed(ConnectFailed):
    """Raised when temporary catalog entries could not be created.

    Entries created before the failure have already been removed when this is
    raised.
    """


class InsufficientRights(Db2BackupError):
    """Raised when the session verifiably lacks any authority to back up."""


class DeactivateFailed(Db2BackupError):
    """Raised when a circular-logged database could not be taken offline."""


class SessionDirExists(Db2BackupError):
    """Raised when the session directory is already present on disk."""


class DirCreateFailed(Db2BackupError):
    """Raised when the session directory could not be created."""


class BackupFailed(Db2BackupError):
    """Base class for failures of the BACKUP DATABASE invocation itself."""

    def __init__(self, message: str, output: str = "", lines: Optional[Iterable[str]] = None) -> None:
        super().__init__(message)
        self.output = output
        self.lines = list(lines or [])


class BackupCommandFailed(BackupFailed):
    """Raised when the backup command exits with a non-zero status."""


class BackupReportedError(BackupFailed):
    """Raised when the backup command exits 0 but reports an error in its output."""


class NoArtifactsProduced(Db2BackupError):
    """Raised when a backup reported success but left no files behind."""


class ReactivateFailed(Db2BackupError):
    """Reactivation after an offline backup failed; needs manual attention."""


class PruneFailed(Db2BackupError):
    """An expired session directory could not be removed."""


__all__ = [
    "BackupCommandFailed",
    "BackupFailed",
    "BackupPathError",
    "BackupReportedError",
    "CatalogFailed",
    "ConnectFailed",
    "Db2BackupError",
    "Db2NotFound",
    "DeactivateFailed",
    "DirCreateFailed",
    "IdentityError",
    "InsufficientRights",
    "NoArtifactsProduced",
    "PruneFailed",
    "ReactivateFailed",
    "SessionDirExists",
]
