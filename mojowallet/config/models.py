from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from mojowallet.logging_setup import DEFAULT_LOG_LEVEL_NAME, normalize_log_level_name

DEFAULT_IPFS_GATEWAY = "https://gateway.pinata.cloud/ipfs"
DEFAULT_DEXIE_API_BASE = "https://api.dexie.space"
DEFAULT_CREDENTIAL_ENV = "MOJOWALLET_LEDGER_TOKEN"


@dataclass(frozen=True, slots=True)
class SyncPolicy:
    staleness_seconds: float = 30.0
    max_retries: int = 3
    backoff_base_seconds: float = 2.0
    timeout_seconds: float = 60.0

    def backoff_delay(self, retry_number: int) -> float:
        """Delay before retry ``retry_number`` (1-based): 2s, 4s, 8s with the defaults."""
        return self.backoff_base_seconds * (2 ** (max(1, retry_number) - 1))


@dataclass(frozen=True, slots=True)
class MetadataPolicy:
    ttl_seconds: float = 86_400.0
    fetch_timeout_seconds: float = 10.0
    ipfs_gateway: str = DEFAULT_IPFS_GATEWAY


@dataclass(slots=True)
class WalletConfig:
    app_network: str
    home_dir: str
    ledger_base_url: str
    app_log_level: str = DEFAULT_LOG_LEVEL_NAME
    app_log_level_was_missing: bool = False
    allow_testnet_addresses: bool = False
    ledger_request_timeout_seconds: float = 30.0
    ledger_credential_env: str = DEFAULT_CREDENTIAL_ENV
    dexie_api_base: str = DEFAULT_DEXIE_API_BASE
    sync: SyncPolicy = SyncPolicy()
    metadata: MetadataPolicy = MetadataPolicy()


def _req(mapping: dict[str, Any], key: str) -> Any:
    if key not in mapping:
        raise ValueError(f"Missing required field: {key}")
    return mapping[key]


def _positive_float(section: dict[str, Any], key: str, default: float, *, label: str) -> float:
    raw = section.get(key, default)
    try:
        value = float(raw)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{label}.{key} must be numeric") from exc
    if value <= 0:
        raise ValueError(f"{label}.{key} must be positive")
    return value


def _parse_sync_policy(raw: dict[str, Any]) -> SyncPolicy:
    defaults = SyncPolicy()
    try:
        max_retries = int(raw.get("max_retries", defaults.max_retries))
    except (TypeError, ValueError) as exc:
        raise ValueError("sync.max_retries must be an integer") from exc
    if max_retries < 0:
        raise ValueError("sync.max_retries must be >= 0")
    return SyncPolicy(
        staleness_seconds=_positive_float(
            raw, "staleness_seconds", defaults.staleness_seconds, label="sync"
        ),
        max_retries=max_retries,
        backoff_base_seconds=_positive_float(
            raw, "backoff_base_seconds", defaults.backoff_base_seconds, label="sync"
        ),
        timeout_seconds=_positive_float(
            raw, "timeout_seconds", defaults.timeout_seconds, label="sync"
        ),
    )


def _parse_metadata_policy(raw: dict[str, Any]) -> MetadataPolicy:
    defaults = MetadataPolicy()
    gateway = str(raw.get("ipfs_gateway", defaults.ipfs_gateway)).strip().rstrip("/")
    if not gateway.startswith(("http://", "https://")):
        raise ValueError("metadata.ipfs_gateway must be an http(s) URL")
    return MetadataPolicy(
        ttl_seconds=_positive_float(raw, "ttl_seconds", defaults.ttl_seconds, label="metadata"),
        fetch_timeout_seconds=_positive_float(
            raw, "fetch_timeout_seconds", defaults.fetch_timeout_seconds, label="metadata"
        ),
        ipfs_gateway=gateway,
    )


def parse_wallet_config(raw: dict[str, Any]) -> WalletConfig:
    app = _req(raw, "app")
    ledger = _req(raw, "ledger")
    venues = raw.get("venues") or {}
    dexie = venues.get("dexie") or {}

    network = str(_req(app, "network")).strip().lower()
    if network not in {"mainnet", "testnet11"}:
        raise ValueError("app.network must be one of: mainnet, testnet11")
    log_level_was_missing = "log_level" not in app
    allow_testnet = bool(app.get("allow_testnet_addresses", network == "testnet11"))

    base_url = str(_req(ledger, "base_url")).strip().rstrip("/")
    if not base_url:
        raise ValueError("ledger.base_url must be non-empty")

    return WalletConfig(
        app_network=network,
        home_dir=str(_req(app, "home_dir")),
        ledger_base_url=base_url,
        app_log_level=normalize_log_level_name(app.get("log_level")),
        app_log_level_was_missing=log_level_was_missing,
        allow_testnet_addresses=allow_testnet,
        ledger_request_timeout_seconds=_positive_float(
            ledger, "request_timeout_seconds", 30.0, label="ledger"
        ),
        ledger_credential_env=str(ledger.get("credential_env", DEFAULT_CREDENTIAL_ENV)).strip()
        or DEFAULT_CREDENTIAL_ENV,
        dexie_api_base=str(dexie.get("api_base", DEFAULT_DEXIE_API_BASE)).strip().rstrip("/"),
        sync=_parse_sync_policy(raw.get("sync") or {}),
        metadata=_parse_metadata_policy(raw.get("metadata") or {}),
    )
