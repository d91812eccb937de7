"""Configuration model and helpers for the DB2 backup tool."""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, Optional

import yaml

CONFIG_FILENAME = "etc/backup-config.yaml"

BACKUP_TYPES = ("full", "incremental", "delta")
CONNECTION_TYPES = ("local", "cataloged", "non-cataloged")

_KNOWN_KEYS = {
    "backup_type",
    "compress",
    "parallelism",
    "buffer_size",
    "backup_path",
    "db_name",
    "connection_type",
    "db_host",
    "db_port",
    "db_user",
    "db_password",
    "retention_days",
    "db_instance",
    "backup_timeout",
    "log_file",
}


class ConfigError(Exception):
    """Raised when configuration loading or validation fails."""


@dataclass(frozen=True)
class BackupConfig:
    db_name: str
    backup_path: str
    backup_type: str = "full"
    compress: bool = True
    parallelism: int = 4
    buffer_size: int = 1024
    connection_type: str = "local"
    db_host: Optional[str] = None
    db_port: int = 50000
    db_user: Optional[str] = None
    db_password: Optional[str] = None
    retention_days: int = 30
    db_instance: Optional[str] = None
    backup_timeout: Optional[int] = None
    log_file: Optional[str] = None
    extra: Dict[str, object] = field(default_factory=dict)

    @property
    def is_remote(self) -> bool:
        return self.connection_type != "local"

    @property
    def database_directory(self) -> Path:
        return Path(self.backup_path) / self.db_name

    def validate(self) -> None:
        if not self.db_name:
            raise ConfigError("Поле 'db_name' не может быть пустым.")
        if not self.backup_path:
            raise ConfigError("Не задан путь для сохранения бэкапов (backup_path).")
        if not Path(self.backup_path).is_absolute():
            raise ConfigError(f"Путь backup_path '{self.backup_path}' должен быть абсолютным.")
        if self.backup_type not in BACKUP_TYPES:
            raise ConfigError(
                f"Неверный тип бэкапа '{self.backup_type}'. Используйте full, incremental или delta."
            )
        if self.connection_type not in CONNECTION_TYPES:
            raise ConfigError(
                f"Неверный тип подключения '{self.connection_type}'. "
                "Используйте local, cataloged или non-cataloged."
            )
        if self.connection_type == "non-cataloged" and not self.db_host:
            raise ConfigError("Для подключения non-cataloged необходимо указать db_host.")
        if self.parallelism <= 0:
            raise ConfigError("Поле parallelism должно быть положительным.")
        if self.buffer_size <= 0:
            raise ConfigError("Поле buffer_size должно быть положительным.")
        if not 0 < self.db_port < 65536:
            raise ConfigError(f"Неверный порт db_port: {self.db_port}.")
        if self.retention_days < 0:
            raise ConfigError("Поле retention_days должно быть неотрицательным.")
        if self.backup_timeout is not None and self.backup_timeout <= 0:
            raise ConfigError("Поле backup_timeout должно быть положительным.")

    def masked(self) -> "BackupConfig":
        """Return a copy safe for printing."""

        if not self.db_password:
            return self
        return replace(self, db_password="***")

    @classmethod
    def from_dict(cls, data: Dict) -> "BackupConfig":
        extra = {key: value for key, value in data.items() if key not in _KNOWN_KEYS}
        config = cls(
            db_name=_safe_str(data.get("db_name")) or "",
            backup_path=_safe_str(data.get("backup_path")) or "",
            backup_type=_normalize(data.get("backup_type"), "full"),
            compress=_safe_bool(data.get("compress"), default=True),
            parallelism=_safe_int(data.get("parallelism"), default=4),
            buffer_size=_safe_int(data.get("buffer_size"), default=1024),
            connection_type=_normalize(data.get("connection_type"), "local"),
            db_host=_safe_str(data.get("db_host")),
            db_port=_safe_int(data.get("db_port"), default=50000),
            db_user=_safe_str(data.get("db_user")),
            db_password=_safe_str(data.get("db_password")),
            retention_days=_safe_int(data.get("retention_days"), default=30),
            db_instance=_safe_str(data.get("db_instance")),
            backup_timeout=_safe_int(data.get("backup_timeout")),
            log_file=_safe_str(data.get("log_file")),
            extra=extra,
        )
        config.validate()
        return config

    def to_dict(self) -> Dict:
        result: Dict[str, object] = {
            "backup_type": self.backup_type,
            "compress": self.compress,
            "parallelism": self.parallelism,
            "buffer_size": self.buffer_size,
            "backup_path": self.backup_path,
            "db_instance": self.db_instance,
            "db_name": self.db_name,
            "connection_type": self.connection_type,
            "db_host": self.db_host,
            "db_port": self.db_port,
            "db_user": self.db_user,
            "db_password": self.db_password,
            "retention_days": self.retention_days,
            "backup_timeout": self.backup_timeout,
            "log_file": self.log_file,
        }
        result.update(self.extra)
        # remove None values for cleaner YAML
        return {key: value for key, value in result.items() if value is not None}


# ---------------------------------------------------------------------------
def _safe_int(value, default: Optional[int] = None) -> Optional[int]:
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        raise ConfigError(f"Значение '{value}' не может быть преобразовано в целое число.")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"Значение '{value}' не может быть преобразовано в целое число.")


def _safe_bool(value, default: bool) -> bool:
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in {"true", "yes", "on", "1", "y"}:
        return True
    if text in {"false", "no", "off", "0", "n"}:
        return False
    raise ConfigError(f"Значение '{value}' не является логическим.")


def _safe_str(value) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _normalize(value, default: str) -> str:
    text = _safe_str(value)
    return text.lower() if text else default


# ---------------------------------------------------------------------------
def load_config(path: Path = Path(CONFIG_FILENAME)) -> BackupConfig:
    path = Path(path)
    if not path.exists():
        raise ConfigError(f"Файл конфигурации не найден: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ConfigError(f"Ошибка разбора YAML в '{path}': {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Файл конфигурации '{path}' должен содержать словарь параметров.")
    return BackupConfig.from_dict(data)


def save_config(config: BackupConfig, path: Path = Path(CONFIG_FILENAME)) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as fh:
        yaml.safe_dump(
            config.to_dict(),
            fh,
            allow_unicode=True,
            sort_keys=False,
            default_flow_style=False,
        )


__all__ = [
    "BACKUP_TYPES",
    "CONNECTION_TYPES",
    "BackupConfig",
    "ConfigError",
    "load_config",
    "save_config",
]
