"""Checks of the backup destination before anything touches the database."""
from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path

from .config import BackupConfig
from .errors import BackupPathError

LOGGER = logging.getLogger(__name__)

LOW_SPACE_BYTES = 1024 ** 3


def check_backup_path(config: BackupConfig, logger: logging.Logger = LOGGER) -> None:
    """Verify that ``backup_path`` exists and is writable.

    For remote connections the path lives on the DB2 server and cannot be
    inspected from here, so only a warning is logged.
    """

    path = Path(config.backup_path)
    if config.is_remote:
        logger.warning(
            "Путь %s должен существовать и быть доступен на запись на сервере DB2 %s.",
            path,
            config.db_host or "(каталогизированный)",
        )
        return

    if not path.is_dir():
        raise BackupPathError(f"Путь не существует: {path}")
    if os.path.ismount(path):
        logger.info("Точка монтирования: %s", path)
    if not os.access(path, os.W_OK | os.X_OK):
        raise BackupPathError(f"Путь недоступен на запись: {path}")

    try:
        usage = shutil.disk_usage(path)
    except OSError as exc:
        logger.warning("Не удалось определить свободное место в %s: %s", path, exc)
        return
    free_gb = usage.free / LOW_SPACE_BYTES
    if usage.free < LOW_SPACE_BYTES:
        logger.warning("Мало свободного места в %s: %.1f ГБ", path, free_gb)
    else:
        logger.info("Свободно в %s: %.1f ГБ", path, free_gb)


__all__ = ["check_backup_path"]
