from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml

from mojowallet.config.models import WalletConfig, parse_wallet_config

_config_logger = logging.getLogger("mojowallet.config")


def load_yaml(path: Path) -> dict[str, Any]:
    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"YAML file must parse to a mapping: {path}")
    return data


def write_yaml(path: Path, data: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as f:
        yaml.safe_dump(data, f, sort_keys=False)


def load_wallet_config(path: Path) -> WalletConfig:
    raw = load_yaml(path)
    config = parse_wallet_config(raw)
    if config.app_log_level_was_missing:
        app = raw.get("app")
        if isinstance(app, dict):
            app["log_level"] = config.app_log_level
            write_yaml(path, raw)
            _config_logger.warning(
                "wallet config missing app.log_level; wrote default %s to %s",
                config.app_log_level,
                path,
            )
    return config


def default_config_path() -> Path:
    home_default = Path("~/.mojowallet/config/wallet.yaml").expanduser()
    if home_default.exists():
        return home_default
    return Path("config/wallet.yaml")
