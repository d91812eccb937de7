"""Interactive helpers for building configuration files."""
from __future__ import annotations

from dataclasses import dataclass
from getpass import getpass
from typing import Callable, Optional

from .config import BACKUP_TYPES, CONNECTION_TYPES, BackupConfig


@dataclass
class InteractiveConfigurator:
    input_func: Callable[[str], str] = input
    password_func: Callable[[str], str] = getpass

    def create_config(self) -> BackupConfig:
        print("Создание конфигурации резервного копирования DB2. Нажмите Ctrl+C для отмены.\n")

        db_name = self._prompt_non_empty("Имя базы данных [SAMPLE]: ", default="SAMPLE").upper()
        backup_path = self._prompt_absolute_path("Каталог для бэкапов (NFS или локальный) [/mnt/backup/db2]: ")
        backup_type = self._prompt_choice("Тип бэкапа", BACKUP_TYPES, default="full")
        compress = self._prompt_bool("Сжимать образ бэкапа? [Y/n]: ", default=True)
        parallelism = self._prompt_int("Параллелизм (по умолчанию 4): ", default=4, minimum=1)
        buffer_size = self._prompt_int("Размер буфера в страницах (по умолчанию 1024): ", default=1024, minimum=1)
        retention_days = self._prompt_int(
            "Сколько дней хранить бэкапы, 0 — не удалять (по умолчанию 30): ",
            default=30,
            minimum=0,
        )

        connection_type = self._prompt_choice("Тип подключения", CONNECTION_TYPES, default="local")
        db_instance = db_host = db_user = db_password = None
        db_port = 50000
        if connection_type == "local":
            db_instance = self._prompt_optional("Экземпляр DB2 (Enter — по умолчанию): ")
        else:
            if connection_type == "non-cataloged":
                db_host = self._prompt_non_empty("Адрес сервера DB2: ")
                db_port = self._prompt_int("Порт сервера DB2 (по умолчанию 50000): ", default=50000, minimum=1)
            db_user = self._prompt_optional("Пользователь (Enter — без пользователя): ")
            if db_user:
                db_password = self._prompt_password() or None

        config = BackupConfig(
            db_name=db_name,
            backup_path=backup_path,
            backup_type=backup_type,
            compress=compress,
            parallelism=parallelism,
            buffer_size=buffer_size,
            connection_type=connection_type,
            db_host=db_host,
            db_port=db_port,
            db_user=db_user,
            db_password=db_password,
            retention_days=retention_days,
            db_instance=db_instance,
        )
        config.validate()
        return config

    # ------------------------------------------------------------------
    def _prompt_password(self) -> str:
        while True:
            first = self.password_func("Пароль (Enter — без пароля): ")
            if not first:
                return ""
            second = self.password_func("Повторите пароль: ")
            if first != second:
                print("Значения не совпадают, попробуйте ещё раз.")
                continue
            return first

    # ------------------------------------------------------------------
    def _prompt_absolute_path(self, question: str, default: str = "/mnt/backup/db2") -> str:
        while True:
            answer = self._prompt_non_empty(question, default=default)
            if not answer.startswith("/"):
                print("Путь должен быть абсолютным.")
                continue
            return answer

    # ------------------------------------------------------------------
    def _prompt_choice(self, title: str, choices, *, default: str) -> str:
        options = ", ".join(choices)
        while True:
            answer = self.input_func(f"{title} ({options}) [{default}]: ").strip().lower()
            if not answer:
                return default
            if answer in choices:
                return answer
            print(f"Некорректный выбор. Допустимые значения: {options}.")

    # ------------------------------------------------------------------
    def _prompt_bool(self, question: str, *, default: bool) -> bool:
        true_values = {"y", "yes", "д", "да", "true", "1"}
        false_values = {"n", "no", "н", "нет", "false", "0"}
        while True:
            answer = self.input_func(question).strip().lower()
            if not answer:
                return default
            if answer in true_values:
                return True
            if answer in false_values:
                return False
            print("Ответ не распознан. Введите 'y' или 'n'.")

    # ------------------------------------------------------------------
    def _prompt_non_empty(self, question: str, default: Optional[str] = None) -> str:
        while True:
            answer = self.input_func(question).strip()
            if not answer:
                if default is not None:
                    return default
                print("Значение не может быть пустым.")
                continue
            return answer

    # ------------------------------------------------------------------
    def _prompt_optional(self, question: str) -> Optional[str]:
        answer = self.input_func(question).strip()
        return answer or None

    # ------------------------------------------------------------------
    def _prompt_int(self, question: str, *, default: int, minimum: Optional[int] = None) -> int:
        while True:
            answer = self.input_func(question).strip()
            if not answer:
                return default
            try:
                value = int(answer)
            except ValueError:
                print("Введите целое число.")
                continue
            if minimum is not None and value < minimum:
                print(f"Значение должно быть не меньше {minimum}.")
                continue
            return value


__all__ = ["InteractiveConfigurator"]
