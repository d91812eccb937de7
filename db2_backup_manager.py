"""Command line interface for the DB2 backup automation tool."""
from __future__ import annotations

import argparse
import logging
import sys
import tempfile
from pathlib import Path
from typing import Iterable, Optional

from db2_backup.config import CONFIG_FILENAME, BackupConfig, ConfigError, load_config, save_config
from db2_backup.configurator import InteractiveConfigurator
from db2_backup.errors import Db2BackupError
from db2_backup.orchestrator import BackupOrchestrator
from db2_backup.utils import ensure_directory

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DEFAULT_LOG_FILE = "logs/db2-backup.log"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Резервное копирование баз DB2 в смонтированный каталог (NFS или локальный).",
        epilog=(
            "Не запускайте одновременно несколько бэкапов одной базы с циклическим журналированием: "
            "они конкурируют за деактивацию и активацию базы."
        ),
    )
    parser.add_argument("--config", default=CONFIG_FILENAME, help="Путь к файлу конфигурации.")
    parser.add_argument("--log-file", help="Файл журнала (по умолчанию logs/db2-backup.log).")
    parser.add_argument("-v", "--verbose", action="count", default=0, help="Увеличить уровень логирования.")

    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("run", help="Выполнить резервное копирование.")
    subparsers.add_parser("check-config", help="Проверить конфигурацию и показать параметры.")
    parser_init = subparsers.add_parser("init-config", help="Интерактивно создать файл конфигурации.")
    parser_init.add_argument("--force", action="store_true", help="Перезаписать существующий файл.")

    return parser


def resolve_log_file(preferred: Optional[str]) -> Optional[Path]:
    """Return the first writable log file location, or ``None``."""

    candidates = []
    if preferred:
        candidates.append(Path(preferred).expanduser())
    candidates.append(Path(DEFAULT_LOG_FILE))
    candidates.append(Path.home() / "db2-backup-logs" / "db2-backup.log")
    candidates.append(Path(tempfile.gettempdir()) / "db2-backup-logs" / "db2-backup.log")
    for candidate in candidates:
        try:
            ensure_directory(candidate.parent)
            with candidate.open("a", encoding="utf-8"):
                pass
        except OSError:
            continue
        return candidate
    return None


def configure_logging(level: int, log_file: Optional[str] = None) -> Optional[Path]:
    if level >= 2:
        log_level = logging.DEBUG
    elif level == 1:
        log_level = logging.INFO
    else:
        log_level = logging.WARNING
    handlers: list = [logging.StreamHandler()]
    path = resolve_log_file(log_file)
    if path is not None:
        handlers.append(logging.FileHandler(path, encoding="utf-8"))
    logging.basicConfig(level=log_level, format=LOG_FORMAT, handlers=handlers)
    if path is None:
        logging.getLogger(__name__).warning("Не удалось открыть файл журнала, пишем только в консоль.")
    return path


def load_application_config(path: Path) -> BackupConfig:
    try:
        return load_config(path)
    except ConfigError as exc:
        print(f"Ошибка чтения конфигурации: {exc}", file=sys.stderr)
        sys.exit(1)


def handle_run(config: BackupConfig) -> None:
    orchestrator = BackupOrchestrator(config)
    try:
        report = orchestrator.run()
    except Db2BackupError as exc:
        logging.getLogger(__name__).error("Резервное копирование не выполнено: %s", exc)
        print(f"Ошибка выполнения: {exc}", file=sys.stderr)
        warn_manual_attention(config, exc.report)
        sys.exit(1)
    if report.exit_code != 0:
        print("Резервное копирование не подтверждено: файлы бэкапа не найдены.", file=sys.stderr)
        warn_manual_attention(config, report)
        sys.exit(report.exit_code)
    print(f"Резервное копирование завершено успешно: {report.artifacts.location}")
    warn_manual_attention(config, report)


def warn_manual_attention(config: BackupConfig, report) -> None:
    if report is None or report.session is None or not report.session.requires_manual_attention:
        return
    print(
        f"ВНИМАНИЕ: база {config.db_name} не была активирована после бэкапа, требуется ручное вмешательство.",
        file=sys.stderr,
    )


def handle_check_config(config: BackupConfig, config_path: Path) -> None:
    print(f"Конфигурация {config_path} корректна:")
    for key, value in config.masked().to_dict().items():
        print(f"  {key}: {value}")


def handle_init_config(config_path: Path, force: bool) -> None:
    if config_path.exists() and not force:
        print(f"Файл {config_path} уже существует. Используйте --force для перезаписи.", file=sys.stderr)
        sys.exit(1)
    configurator = InteractiveConfigurator()
    try:
        config = configurator.create_config()
    except KeyboardInterrupt:
        print("\nОперация отменена пользователем.")
        return
    except ConfigError as exc:
        print(f"Ошибка: {exc}", file=sys.stderr)
        sys.exit(1)
    save_config(config, config_path)
    print(f"Конфигурация сохранена в {config_path}.")


def main(argv: Optional[Iterable[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return

    config_path = Path(args.config)
    if args.command == "init-config":
        handle_init_config(config_path, args.force)
        return

    config = load_application_config(config_path)
    if args.command == "check-config":
        handle_check_config(config, config_path)
    elif args.command == "run":
        configure_logging(max(args.verbose, 1), args.log_file or config.log_file)
        handle_run(config)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
