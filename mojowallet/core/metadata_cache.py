from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import aiohttp

from mojowallet.config.models import MetadataPolicy
from mojowallet.core.types import HydratedCoin, NftDriver
from mojowallet.storage.kv import read_json, try_write_json

_metadata_logger = logging.getLogger("mojowallet.metadata")

STORE_KEY_PREFIX = "nft_metadata:"
_MIN_RAW_CID_LENGTH = 40


@dataclass(frozen=True, slots=True)
class MetadataCacheEntry:
    key: str
    payload: dict[str, Any]
    fetched_at: float

    def is_fresh(self, now: float, ttl_seconds: float) -> bool:
        return (now - self.fetched_at) < ttl_seconds

    def to_json(self) -> dict[str, Any]:
        return {"payload": self.payload, "fetched_at": self.fetched_at}


def _entry_from_json(key: str, raw: Any) -> MetadataCacheEntry | None:
    if not isinstance(raw, dict):
        return None
    payload = raw.get("payload")
    fetched_at = raw.get("fetched_at")
    if not isinstance(payload, dict):
        return None
    if isinstance(fetched_at, bool) or not isinstance(fetched_at, int | float):
        return None
    return MetadataCacheEntry(key=key, payload=payload, fetched_at=float(fetched_at))


def normalize_metadata_uri(uri: str, gateway: str) -> str:
    """Rewrite IPFS references onto an HTTP gateway; other URLs pass through."""
    clean = str(uri or "").strip()
    base = gateway.rstrip("/")
    if not clean:
        return clean
    if clean.startswith("ipfs://"):
        cid_path = clean[len("ipfs://") :]
        cid_path = cid_path.removeprefix("ipfs/")
        return f"{base}/{cid_path}"
    if clean.startswith("/ipfs/"):
        return f"{base}/{clean[len('/ipfs/'):]}"
    if clean.startswith(("http://", "https://")):
        marker = "/ipfs/"
        if marker in clean and not clean.startswith(base + "/"):
            return f"{base}/{clean.split(marker, 1)[1]}"
        return clean
    if len(clean) > _MIN_RAW_CID_LENGTH and "/" not in clean and ":" not in clean:
        return f"{base}/{clean}"
    return clean


def metadata_cache_key(hydrated: HydratedCoin, uri: str) -> str:
    coin = hydrated.coin
    return f"0x{coin.parent_coin_info.hex()}_0x{coin.puzzle_hash.hex()}_{uri}"


class MetadataCache:
    def __init__(
        self,
        store: Any | None = None,
        *,
        policy: MetadataPolicy | None = None,
        session_factory: Callable[[], Any] | None = None,
        now_fn: Callable[[], float] | None = None,
    ) -> None:
        self.store = store
        self.policy = policy or MetadataPolicy()
        self._session_factory = session_factory
        self._now_fn = now_fn or time.time
        self._memory: dict[str, MetadataCacheEntry] = {}
        self._inflight: dict[str, asyncio.Task[dict[str, Any] | None]] = {}

    def normalize_uri(self, uri: str) -> str:
        return normalize_metadata_uri(uri, self.policy.ipfs_gateway)

    def _cached_entry(self, key: str) -> MetadataCacheEntry | None:
        entry = self._memory.get(key)
        if entry is not None:
            return entry
        if self.store is None:
            return None
        store_key = f"{STORE_KEY_PREFIX}{key}"
        raw = read_json(self.store, store_key)
        if raw is None:
            return None
        entry = _entry_from_json(key, raw)
        if entry is None:
            _metadata_logger.warning("metadata_cache_entry_discarded key=%s", key)
            try:
                self.store.delete(store_key)
            except Exception as exc:
                _metadata_logger.warning("metadata_cache_delete_failed key=%s error=%s", key, exc)
            return None
        self._memory[key] = entry
        return entry

    async def resolve(self, uri: str, cache_key: str) -> dict[str, Any] | None:
        """Return the JSON metadata at ``uri``, or None when it cannot be fetched.

        Concurrent calls for one key share a single request. A failed
        refresh falls back to a stale entry when one exists; failures are
        never written to the cache.
        """
        now = float(self._now_fn())
        cached = self._cached_entry(cache_key)
        if cached is not None and cached.is_fresh(now, self.policy.ttl_seconds):
            return cached.payload

        task = self._inflight.get(cache_key)
        if task is None:
            task = asyncio.ensure_future(self._fetch_and_store(uri, cache_key))
            self._inflight[cache_key] = task
            task.add_done_callback(lambda done, key=cache_key: self._forget_inflight(key, done))
        payload = await asyncio.shield(task)
        if payload is not None:
            return payload
        if cached is not None:
            _metadata_logger.info("metadata_serving_stale key=%s", cache_key)
            return cached.payload
        return None

    async def resolve_for_coin(self, hydrated: HydratedCoin) -> dict[str, Any] | None:
        driver = hydrated.driver
        if not isinstance(driver, NftDriver) or not driver.metadata_uris:
            return None
        uri = driver.metadata_uris[0]
        return await self.resolve(uri, metadata_cache_key(hydrated, uri))

    def _forget_inflight(self, key: str, done: asyncio.Task[Any]) -> None:
        if self._inflight.get(key) is done:
            del self._inflight[key]

    async def _fetch_and_store(self, uri: str, key: str) -> dict[str, Any] | None:
        url = self.normalize_uri(uri)
        try:
            payload = await asyncio.wait_for(
                self._fetch(url), timeout=self.policy.fetch_timeout_seconds
            )
        except (asyncio.TimeoutError, TimeoutError):
            _metadata_logger.warning("metadata_fetch_timeout url=%s", url)
            return None
        except aiohttp.ClientError as exc:
            _metadata_logger.warning("metadata_fetch_failed url=%s error=%s", url, exc)
            return None
        if payload is None:
            return None
        entry = MetadataCacheEntry(key=key, payload=payload, fetched_at=float(self._now_fn()))
        self._memory[key] = entry
        if self.store is not None:
            try_write_json(self.store, f"{STORE_KEY_PREFIX}{key}", entry.to_json())
        return payload

    async def _fetch(self, url: str) -> dict[str, Any] | None:
        if self._session_factory is None:
            session_cm = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.policy.fetch_timeout_seconds)
            )
        else:
            session_cm = self._session_factory()

        async with session_cm as session:
            async with session.get(url) as response:
                status = int(response.status)
                body = await response.read()

        if not 200 <= status < 300:
            _metadata_logger.warning("metadata_http_error status=%s url=%s", status, url)
            return None
        try:
            payload = json.loads(body)
        except (TypeError, ValueError):
            _metadata_logger.warning("metadata_malformed_json url=%s", url)
            return None
        if not isinstance(payload, dict):
            _metadata_logger.warning("metadata_not_an_object url=%s", url)
            return None
        return payload

    def clear(self) -> None:
        self._memory.clear()
        if self.store is None:
            return
        for key in self.store.keys(STORE_KEY_PREFIX):
            self.store.delete(key)
