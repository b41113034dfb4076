from __future__ import annotations

import asyncio
import json
import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from typing import Any

from mojowallet.adapters.dexie import offer_url_for
from mojowallet.adapters.ledger import OfferSpec
from mojowallet.core.address import AddressCodec
from mojowallet.core.errors import (
    AddressError,
    InvalidDepositAddress,
    InvalidOfferAmount,
    InvalidStatusTransition,
    OfferNotFound,
    SigningKeyUnavailable,
    StorageError,
    SubmissionError,
)
from mojowallet.core.offer_lifecycle import (
    OfferBuildStage,
    OfferStatus,
    apply_status_change,
    parse_offer_status,
)
from mojowallet.core.types import (
    HydratedCoin,
    RequestedPayment,
    hydrated_coin_from_payload,
    requested_payment_from_payload,
)
from mojowallet.storage.kv import (
    namespaced_key,
    quarantine_raw,
    read_json,
    read_json_for_update,
    write_json,
)

_offer_logger = logging.getLogger("mojowallet.offers")

OFFERS_KEY_NAME = "offers"

# Dexie numeric offer states that end an offer's life.
_DEXIE_TERMINAL_STATUS = {
    3: OfferStatus.CANCELLED,
    4: OfferStatus.COMPLETED,
    6: OfferStatus.EXPIRED,
}


@dataclass(frozen=True, slots=True)
class SavedOffer:
    id: str
    created_at: str
    updated_at: str
    status: OfferStatus
    offered_coin: HydratedCoin
    requested_payment: RequestedPayment
    offer_blob: str
    marketplace_id: str | None = None
    marketplace_url: str | None = None

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "status": self.status.value,
            "offered_coin": self.offered_coin.to_payload(),
            "requested_payment": self.requested_payment.to_payload(),
            "offer_blob": self.offer_blob,
            "marketplace_id": self.marketplace_id,
            "marketplace_url": self.marketplace_url,
        }


def saved_offer_from_payload(payload: dict[str, Any]) -> SavedOffer:
    offer_id = str(payload.get("id", "")).strip()
    if not offer_id:
        raise ValueError("saved_offer_missing_id")
    created_at = str(payload.get("created_at", "")).strip()
    return SavedOffer(
        id=offer_id,
        created_at=created_at,
        updated_at=str(payload.get("updated_at") or created_at),
        status=parse_offer_status(payload.get("status")),
        offered_coin=hydrated_coin_from_payload(payload.get("offered_coin") or {}),
        requested_payment=requested_payment_from_payload(payload.get("requested_payment") or {}),
        offer_blob=str(payload.get("offer_blob", "")),
        marketplace_id=payload.get("marketplace_id") or None,
        marketplace_url=payload.get("marketplace_url") or None,
    )


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _validate_offer_amount(value: object) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidOfferAmount(f"invalid_offer_amount:not_an_integer:{value!r}")
    if value <= 0:
        raise InvalidOfferAmount(f"invalid_offer_amount:must_be_positive:{value}")
    return value


class OfferLedger:
    def __init__(
        self,
        store: Any,
        coin_store: Any,
        ledger: Any,
        *,
        codec: AddressCodec | None = None,
        marketplace: Any | None = None,
        now_fn: Callable[[], datetime] | None = None,
        id_fn: Callable[[], str] | None = None,
    ) -> None:
        self.store = store
        self.coin_store = coin_store
        self.ledger = ledger
        self.codec = codec or AddressCodec()
        self.marketplace = marketplace
        self._now_fn = now_fn or _utcnow
        self._id_fn = id_fn or (lambda: str(uuid.uuid4()))

    def _storage_key(self) -> str | None:
        address = self.coin_store.address
        if not address:
            return None
        return namespaced_key(address, OFFERS_KEY_NAME)

    def _parse_rows(self, rows: list[Any]) -> tuple[list[SavedOffer], list[Any]]:
        offers: list[SavedOffer] = []
        unreadable: list[Any] = []
        for row in rows:
            try:
                if not isinstance(row, dict):
                    raise ValueError("saved_offer_not_an_object")
                offers.append(saved_offer_from_payload(row))
            except ValueError as exc:
                offer_id = row.get("id") if isinstance(row, dict) else None
                _offer_logger.warning("saved_offer_skipped id=%s error=%s", offer_id, exc)
                unreadable.append(row)
        return offers, unreadable

    def _load(self) -> list[SavedOffer]:
        key = self._storage_key()
        if key is None:
            return []
        raw = read_json(self.store, key, discard_corrupt=False)
        if not isinstance(raw, list):
            return []
        return self._parse_rows(raw)[0]

    def _load_for_update(self) -> tuple[list[SavedOffer], list[Any]]:
        """Load offers for rewriting; rows that fail to parse are carried along untouched."""
        key = self._storage_key()
        if key is None:
            raise SigningKeyUnavailable("signing_key_unavailable:account_not_connected")
        raw = read_json_for_update(self.store, key)
        if raw is None:
            return [], []
        if not isinstance(raw, list):
            quarantine_raw(self.store, key, json.dumps(raw))
            return [], []
        return self._parse_rows(raw)

    def _save(self, offers: list[SavedOffer], unreadable: list[Any]) -> None:
        key = self._storage_key()
        if key is None:
            raise SigningKeyUnavailable("signing_key_unavailable:account_not_connected")
        rows = [*unreadable, *(o.to_payload() for o in offers)]
        try:
            write_json(self.store, key, rows)
        except Exception as exc:
            raise StorageError(f"kv_write_failed:{key}:{exc}") from exc

    def _replace(self, updated: SavedOffer) -> SavedOffer:
        offers, unreadable = self._load_for_update()
        for index, existing in enumerate(offers):
            if existing.id == updated.id:
                offers[index] = updated
                break
        else:
            raise OfferNotFound(updated.id)
        self._save(offers, unreadable)
        return updated

    def list_offers(self, status: OfferStatus | str | None = None) -> list[SavedOffer]:
        offers = self._load()
        if status is not None:
            wanted = parse_offer_status(status)
            offers = [o for o in offers if o.status == wanted]
        return sorted(offers, key=lambda o: o.created_at, reverse=True)

    def get_offer(self, offer_id: str) -> SavedOffer:
        for offer in self._load():
            if offer.id == offer_id:
                return offer
        raise OfferNotFound(offer_id)

    def offer_stats(self) -> dict[str, int]:
        counts = {status.value: 0 for status in OfferStatus}
        offers = self._load()
        for offer in offers:
            counts[offer.status.value] += 1
        counts["total"] = len(offers)
        return counts

    async def create_offer(
        self,
        offered_coin: HydratedCoin,
        requested_amount: int,
        requested_asset_id: str | None,
        deposit_address: str,
    ) -> SavedOffer:
        """Sign an offer for ``offered_coin`` and persist it as active.

        Nothing is stored unless the ledger returns a signed offer. The
        record is written before any marketplace submission is attempted.
        """
        try:
            deposit_puzzle_hash = self.codec.puzzle_hash_from_address_or_hex(deposit_address)
        except AddressError as exc:
            raise InvalidDepositAddress(deposit_address, exc) from exc
        amount = _validate_offer_amount(requested_amount)
        synthetic_key = self.coin_store.synthetic_key()

        asset_id = (requested_asset_id or "").strip().lower().removeprefix("0x") or None
        _offer_logger.debug(
            "offer_stage stage=%s asset_id=%s amount=%s",
            OfferBuildStage.CONSTRUCTED,
            asset_id or "xch",
            amount,
        )
        offer_blob = await self.ledger.submit_offer(
            synthetic_key,
            OfferSpec(
                offered_coin=offered_coin,
                requested_amount=amount,
                requested_asset_id=asset_id,
                deposit_puzzle_hash=deposit_puzzle_hash,
            ),
        )

        now_iso = self._now_fn().isoformat()
        offer = SavedOffer(
            id=self._id_fn(),
            created_at=now_iso,
            updated_at=now_iso,
            status=OfferStatus.ACTIVE,
            offered_coin=offered_coin,
            requested_payment=RequestedPayment(
                amount=amount,
                asset_id=asset_id,
                deposit_address=deposit_address.strip(),
            ),
            offer_blob=offer_blob,
        )
        offers, unreadable = self._load_for_update()
        offers.append(offer)
        self._save(offers, unreadable)
        _offer_logger.info(
            "offer_created id=%s stage=%s asset_id=%s amount=%s coin=%s",
            offer.id,
            OfferBuildStage.SUBMITTED,
            asset_id or "xch",
            amount,
            offered_coin.coin.name().hex(),
        )
        return offer

    async def submit_to_marketplace(self, offer: SavedOffer) -> str:
        if self.marketplace is None:
            raise SubmissionError("marketplace_not_configured")
        try:
            result = await asyncio.to_thread(self.marketplace.post_offer, offer.offer_blob)
        except Exception as exc:
            raise SubmissionError(f"marketplace_submit_failed:{exc}") from exc
        if not isinstance(result, dict) or not result.get("success"):
            error = result.get("error", "unknown") if isinstance(result, dict) else "unknown"
            raise SubmissionError(f"marketplace_rejected:{error}")
        marketplace_id = str(result.get("id", "")).strip()
        if not marketplace_id:
            raise SubmissionError("marketplace_rejected:missing_offer_id")

        current = self.get_offer(offer.id)
        self._replace(
            replace(
                current,
                marketplace_id=marketplace_id,
                marketplace_url=offer_url_for(marketplace_id, result),
                updated_at=self._now_fn().isoformat(),
            )
        )
        _offer_logger.info("offer_posted id=%s marketplace_id=%s", offer.id, marketplace_id)
        return marketplace_id

    async def create_and_submit_offer(
        self,
        offered_coin: HydratedCoin,
        requested_amount: int,
        requested_asset_id: str | None,
        deposit_address: str,
    ) -> SavedOffer:
        offer = await self.create_offer(
            offered_coin, requested_amount, requested_asset_id, deposit_address
        )
        try:
            await self.submit_to_marketplace(offer)
        except SubmissionError as exc:
            _offer_logger.warning("offer_post_failed id=%s error=%s", offer.id, exc)
            return offer
        return self.get_offer(offer.id)

    def update_status(self, offer_id: str, status: OfferStatus | str) -> SavedOffer:
        requested = parse_offer_status(status)
        current = self.get_offer(offer_id)
        transition = apply_status_change(current.status, requested)
        if transition.action == "reject":
            raise InvalidStatusTransition(
                f"invalid_status_transition:{current.status.value}->{requested.value}"
            )
        if not transition.changed:
            return current
        updated = self._replace(
            replace(current, status=transition.new_status, updated_at=self._now_fn().isoformat())
        )
        _offer_logger.info(
            "offer_status_changed id=%s old=%s new=%s",
            offer_id,
            transition.old_status,
            transition.new_status,
        )
        return updated

    async def refresh_from_marketplace(self, offer_id: str) -> SavedOffer:
        """Pull the venue's view of a posted offer and apply any terminal status."""
        current = self.get_offer(offer_id)
        if self.marketplace is None or not current.marketplace_id:
            return current
        if current.status != OfferStatus.ACTIVE:
            return current
        try:
            result = await asyncio.to_thread(self.marketplace.get_offer, current.marketplace_id)
        except Exception as exc:
            raise SubmissionError(f"marketplace_lookup_failed:{exc}") from exc
        venue_offer = result.get("offer") if isinstance(result, dict) else None
        if not isinstance(venue_offer, dict):
            return current
        try:
            venue_status = int(venue_offer.get("status"))
        except (TypeError, ValueError):
            return current
        mapped = _DEXIE_TERMINAL_STATUS.get(venue_status)
        if mapped is None or current.status == mapped:
            return current
        return self.update_status(offer_id, mapped)
