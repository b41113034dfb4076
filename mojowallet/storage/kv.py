from __future__ import annotations

import hashlib
import json
import logging
import sqlite3
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from mojowallet.core.errors import StorageError

_kv_logger = logging.getLogger("mojowallet.storage")


def _utcnow_iso() -> str:
    return datetime.now(UTC).isoformat()


def account_namespace(address: str) -> str:
    """Stable storage prefix for an account, derived from the full address."""
    digest = hashlib.sha256(str(address).strip().lower().encode("utf-8")).hexdigest()
    return f"acct:{digest}"


def namespaced_key(address: str, name: str) -> str:
    return f"{account_namespace(address)}:{name}"


class SqliteKeyValueStore:
    """Durable string-keyed store; values are JSON text."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(self.db_path)
        self.conn.row_factory = sqlite3.Row
        self._init_schema()

    def close(self) -> None:
        self.conn.close()

    def _init_schema(self) -> None:
        self.conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS kv_entry (
              key TEXT PRIMARY KEY,
              value TEXT NOT NULL,
              updated_at TEXT NOT NULL
            );
            """
        )
        self.conn.commit()

    def get(self, key: str) -> str | None:
        row = self.conn.execute("SELECT value FROM kv_entry WHERE key = ?", (key,)).fetchone()
        if row is None:
            return None
        return str(row["value"])

    def set(self, key: str, value: str) -> None:
        self.conn.execute(
            """
            INSERT INTO kv_entry (key, value, updated_at)
            VALUES (?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET
              value = excluded.value,
              updated_at = excluded.updated_at
            """,
            (key, value, _utcnow_iso()),
        )
        self.conn.commit()

    def delete(self, key: str) -> bool:
        cur = self.conn.execute("DELETE FROM kv_entry WHERE key = ?", (key,))
        self.conn.commit()
        return bool(cur.rowcount)

    def keys(self, prefix: str = "") -> list[str]:
        rows = self.conn.execute(
            "SELECT key FROM kv_entry WHERE substr(key, 1, ?) = ? ORDER BY key",
            (len(prefix), prefix),
        ).fetchall()
        return [str(r["key"]) for r in rows]


def read_json(store: Any, key: str, *, discard_corrupt: bool = True) -> Any | None:
    """Read and decode a JSON value; unreadable or corrupt entries count as absent."""
    try:
        raw = store.get(key)
    except Exception as exc:
        _kv_logger.warning("kv_read_failed key=%s error=%s", key, exc)
        return None
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except (TypeError, ValueError) as exc:
        if not discard_corrupt:
            _kv_logger.warning("kv_corrupt_entry key=%s error=%s", key, exc)
            return None
        _kv_logger.warning("kv_corrupt_entry_discarded key=%s error=%s", key, exc)
        try:
            store.delete(key)
        except Exception as delete_exc:
            _kv_logger.warning("kv_delete_failed key=%s error=%s", key, delete_exc)
        return None


def write_json(store: Any, key: str, value: Any) -> None:
    store.set(key, json.dumps(value, sort_keys=True, separators=(",", ":")))


def quarantine_raw(store: Any, key: str, raw: str) -> str:
    """Copy an unreadable value aside so the key can be rewritten without losing it."""
    quarantine_key = f"{key}:quarantine:{_utcnow_iso()}"
    try:
        store.set(quarantine_key, raw)
    except Exception as exc:
        raise StorageError(f"kv_quarantine_failed:{key}:{exc}") from exc
    _kv_logger.error("kv_corrupt_entry_quarantined key=%s quarantine_key=%s", key, quarantine_key)
    return quarantine_key


def read_json_for_update(store: Any, key: str) -> Any | None:
    """Read a JSON value that is about to be rewritten.

    Store failures raise ``StorageError`` instead of reading as absent. A
    corrupt value is quarantined before None is returned, so writing the key
    afterwards never destroys the only copy.
    """
    try:
        raw = store.get(key)
    except Exception as exc:
        raise StorageError(f"kv_read_failed:{key}:{exc}") from exc
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except (TypeError, ValueError):
        quarantine_raw(store, key, str(raw))
        return None


def try_write_json(store: Any, key: str, value: Any) -> bool:
    try:
        write_json(store, key, value)
    except Exception as exc:
        _kv_logger.warning("kv_write_failed key=%s error=%s", key, exc)
        return False
    return True
