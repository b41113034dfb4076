from __future__ import annotations

import logging

import mojowallet.logging_setup as logging_setup_mod
from mojowallet.logging_setup import (
    LogFileSettings,
    build_wallet_file_handler,
    initialize_file_logging,
    log_level_value,
    normalize_log_level_name,
)
from tests.logging_helpers import reset_concurrent_log_handlers


def test_normalize_log_level_name() -> None:
    for level in ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG", "NOTSET"):
        assert normalize_log_level_name(level) == level
        assert normalize_log_level_name(f" {level.lower()} ") == level
    assert normalize_log_level_name("VERBOSE") == "INFO"
    assert normalize_log_level_name("") == "INFO"
    assert normalize_log_level_name(None) == "INFO"


def test_log_level_value() -> None:
    assert log_level_value("debug") == logging.DEBUG
    assert log_level_value("VERBOSE") == logging.INFO
    assert log_level_value(None) == logging.INFO


def test_build_handler_honours_settings(tmp_path) -> None:
    settings = LogFileSettings(relative_path="var/wallet.log", max_bytes=1024, backup_count=2)
    handler = build_wallet_file_handler(tmp_path, service_name="test", settings=settings)
    try:
        assert (tmp_path / "var").is_dir()
        assert handler.maxBytes == 1024
        assert handler.backupCount == 2
    finally:
        handler.close()


def test_initialize_file_logging_attaches_one_handler_and_reapplies_level(tmp_path) -> None:
    reset_concurrent_log_handlers(module=logging_setup_mod)
    root = logging.getLogger()
    previous_root_level = root.level
    try:
        first = initialize_file_logging(tmp_path, service_name="wallet", log_level="WARNING")
        second = initialize_file_logging(tmp_path, service_name="wallet", log_level="debug")
        assert first is second
        assert len([h for h in root.handlers if h is first]) == 1
        assert first.level == logging.DEBUG
        assert logging.getLogger("mojowallet").level == logging.DEBUG

        logging.getLogger("mojowallet.sync").debug("sync_complete coins=%s", 2)
        first.flush()
        content = (tmp_path / "logs" / "debug.log").read_text(encoding="utf-8")
        assert "wallet DEBUG    mojowallet.sync: sync_complete coins=2" in content
    finally:
        reset_concurrent_log_handlers(module=logging_setup_mod)
        root.setLevel(previous_root_level)


def test_initialize_file_logging_leaves_foreign_handlers_alone(tmp_path) -> None:
    reset_concurrent_log_handlers(module=logging_setup_mod)
    root = logging.getLogger()
    previous_root_level = root.level
    foreign = logging.NullHandler()
    foreign.setLevel(logging.ERROR)
    root.addHandler(foreign)
    try:
        initialize_file_logging(tmp_path, service_name="wallet", log_level="DEBUG")
        assert foreign.level == logging.ERROR
    finally:
        root.removeHandler(foreign)
        reset_concurrent_log_handlers(module=logging_setup_mod)
        root.setLevel(previous_root_level)
