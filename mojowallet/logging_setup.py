from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from concurrent_log_handler import ConcurrentRotatingFileHandler

DEFAULT_LOG_LEVEL_NAME = "INFO"
WALLET_LOGGER_NAME = "mojowallet"
_LOG_LINE_FORMAT = "%(asctime)s.%(msecs)03d {service} %(levelname)-8s %(name)s: %(message)s"
_LOG_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"

_wallet_file_logger_initialized = False
_wallet_file_log_handler: ConcurrentRotatingFileHandler | None = None


@dataclass(frozen=True, slots=True)
class LogFileSettings:
    relative_path: str = "logs/debug.log"
    max_bytes: int = 25 * 1024 * 1024
    backup_count: int = 4

    def resolve(self, home_dir: str | Path) -> Path:
        return (Path(home_dir).expanduser() / self.relative_path).resolve()


def normalize_log_level_name(log_level: str | None) -> str:
    """Upper-case a configured level name; anything logging does not know becomes INFO."""
    name = str(log_level or "").strip().upper()
    if name not in logging.getLevelNamesMapping():
        return DEFAULT_LOG_LEVEL_NAME
    return name


def log_level_value(log_level: str | None) -> int:
    return logging.getLevelNamesMapping()[normalize_log_level_name(log_level)]


def build_wallet_file_handler(
    home_dir: str | Path,
    *,
    service_name: str,
    settings: LogFileSettings | None = None,
) -> ConcurrentRotatingFileHandler:
    settings = settings or LogFileSettings()
    log_path = settings.resolve(home_dir)
    log_path.parent.mkdir(parents=True, exist_ok=True)
    handler = ConcurrentRotatingFileHandler(
        os.fspath(log_path),
        "a",
        maxBytes=settings.max_bytes,
        backupCount=settings.backup_count,
        use_gzip=False,
    )
    handler.setFormatter(
        logging.Formatter(
            fmt=_LOG_LINE_FORMAT.format(service=service_name), datefmt=_LOG_DATE_FORMAT
        )
    )
    return handler


def initialize_file_logging(
    home_dir: str | Path,
    *,
    service_name: str,
    log_level: str | None,
    settings: LogFileSettings | None = None,
) -> ConcurrentRotatingFileHandler:
    """Attach the wallet's rotating file handler once per process and (re)apply the level.

    Only the wallet's own handler and logger are adjusted; handlers installed by
    an embedding application keep their levels.
    """
    global _wallet_file_logger_initialized, _wallet_file_log_handler
    level = log_level_value(log_level)
    if not _wallet_file_logger_initialized or _wallet_file_log_handler is None:
        handler = build_wallet_file_handler(home_dir, service_name=service_name, settings=settings)
        logging.getLogger().addHandler(handler)
        _wallet_file_log_handler = handler
        _wallet_file_logger_initialized = True
    _wallet_file_log_handler.setLevel(level)
    logging.getLogger(WALLET_LOGGER_NAME).setLevel(level)
    root_logger = logging.getLogger()
    if root_logger.level > level:
        root_logger.setLevel(level)
    return _wallet_file_log_handler
