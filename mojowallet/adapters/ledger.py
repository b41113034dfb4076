from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any

import aiohttp

from mojowallet.core.errors import (
    LedgerRequestError,
    NotAuthenticated,
    SigningKeyUnavailable,
    TransientNetworkError,
)
from mojowallet.core.types import (
    Coin,
    HydratedCoin,
    Payment,
    PublicKeyInfo,
    hex_to_bytes32,
    hydrated_coin_from_payload,
)

_ledger_logger = logging.getLogger("mojowallet.ledger")

PUBLIC_KEY_PATH = "/api/enclave/public-key"
HYDRATED_COINS_PATH = "/api/wallet/hydrated-coins"
SEND_XCH_PATH = "/api/wallet/send-xch"
BROADCAST_PATH = "/api/broadcast"
MAKE_UNSIGNED_OFFER_PATH = "/api/wallet/make-unsigned-nft-offer"
SIGN_OFFER_PATH = "/api/enclave/sign-offer"

_RETRYABLE_CLIENT_STATUSES = frozenset({408, 429})


@dataclass(frozen=True, slots=True)
class OfferSpec:
    """Inputs for a one-coin offer: give ``offered_coin``, receive ``amount`` of ``asset_id``."""

    offered_coin: HydratedCoin
    requested_amount: int
    requested_asset_id: str | None
    deposit_puzzle_hash: bytes

    def requested_payments_payload(self) -> dict[str, list[dict[str, Any]]]:
        puzzle_hash_hex = "0x" + self.deposit_puzzle_hash.hex()
        if self.requested_asset_id:
            return {
                "cats": [
                    {
                        "asset_id": self.requested_asset_id,
                        "puzzle_hash": puzzle_hash_hex,
                        "amount": self.requested_amount,
                    }
                ]
            }
        return {"xch": [{"puzzle_hash": puzzle_hash_hex, "amount": self.requested_amount}]}


def _coin_request_payload(coin: Coin) -> dict[str, Any]:
    return {
        "parentCoinInfo": "0x" + coin.parent_coin_info.hex(),
        "puzzleHash": "0x" + coin.puzzle_hash.hex(),
        "amount": str(coin.amount),
    }


def _extract_coin_rows(payload: Any) -> list[dict[str, Any]]:
    # Seen in the wild: a bare list, {"data": [...]}, and {"data": {"data": [...]}}.
    rows: Any = payload
    if isinstance(rows, dict):
        rows = rows.get("data", [])
    if isinstance(rows, dict):
        rows = rows.get("data", [])
    if not isinstance(rows, list):
        raise LedgerRequestError("ledger_invalid_response:hydrated_coins_not_a_list")
    return [row for row in rows if isinstance(row, dict)]


class LedgerServiceAdapter:
    def __init__(
        self,
        base_url: str,
        *,
        credential: str | None = None,
        timeout_seconds: float = 30.0,
        session_factory: Callable[[], Any] | None = None,
        hydrated_coins_url: str | None = None,
        unsigned_offer_url: str | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = float(timeout_seconds)
        self.hydrated_coins_url = hydrated_coins_url or f"{self.base_url}{HYDRATED_COINS_PATH}"
        self.unsigned_offer_url = unsigned_offer_url or f"{self.base_url}{MAKE_UNSIGNED_OFFER_PATH}"
        self._credential = (credential or "").strip() or None
        self._session_factory = session_factory

    @property
    def has_credential(self) -> bool:
        return self._credential is not None

    def set_credential(self, credential: str | None) -> None:
        self._credential = (credential or "").strip() or None

    def _headers(self) -> dict[str, str]:
        if self._credential is None:
            raise NotAuthenticated()
        return {
            "Authorization": f"Bearer {self._credential}",
            "Content-Type": "application/json",
        }

    def _open_session(self) -> Any:
        if self._session_factory is not None:
            return self._session_factory()
        return aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout_seconds))

    async def _request(
        self,
        method: str,
        url: str,
        *,
        body: dict[str, Any] | None = None,
        params: dict[str, str] | None = None,
    ) -> Any:
        headers = self._headers()
        try:
            async with self._open_session() as session:
                async with session.request(
                    method, url, json=body, params=params, headers=headers
                ) as response:
                    status = int(response.status)
                    raw = await response.read()
        except (asyncio.TimeoutError, TimeoutError) as exc:
            raise TransientNetworkError(f"ledger_timeout:{url}") from exc
        except aiohttp.ClientError as exc:
            raise TransientNetworkError(f"ledger_network_error:{exc}") from exc

        snippet = raw.decode("utf-8", errors="replace").strip()[:500]
        if status in (401, 403):
            raise NotAuthenticated(f"not_authenticated:http_{status}")
        if status >= 500 or status in _RETRYABLE_CLIENT_STATUSES:
            _ledger_logger.warning("ledger_http_error status=%s url=%s", status, url)
            raise TransientNetworkError(f"ledger_http_error:{status}:{snippet}", status=status)
        if status >= 400:
            raise LedgerRequestError(f"ledger_http_error:{status}:{snippet}", status=status)
        try:
            return json.loads(raw)
        except (TypeError, ValueError) as exc:
            raise LedgerRequestError("ledger_invalid_response:malformed_json", status=status) from exc

    async def get_public_key_info(self) -> PublicKeyInfo:
        payload = await self._request("POST", f"{self.base_url}{PUBLIC_KEY_PATH}", body={})
        if not isinstance(payload, dict):
            raise LedgerRequestError("ledger_invalid_response:public_key_not_an_object")
        address = str(payload.get("address", "")).strip()
        if not address:
            raise LedgerRequestError("ledger_invalid_response:missing_address")
        try:
            puzzle_hash = hex_to_bytes32(payload.get("puzzle_hash"), field_name="puzzle_hash")
        except ValueError as exc:
            raise LedgerRequestError(f"ledger_invalid_response:{exc}") from exc
        synthetic_key = str(payload.get("synthetic_public_key") or "").strip() or None
        return PublicKeyInfo(address=address, puzzle_hash=puzzle_hash, synthetic_key=synthetic_key)

    async def get_unspent_coins(self, address: str) -> list[HydratedCoin]:
        payload = await self._request("GET", self.hydrated_coins_url, params={"address": address})
        coins: list[HydratedCoin] = []
        for row in _extract_coin_rows(payload):
            try:
                coins.append(hydrated_coin_from_payload(row))
            except ValueError as exc:
                # Balance must cover every reported coin; never skip one.
                raise LedgerRequestError(f"ledger_invalid_response:malformed_coin:{exc}") from exc
        _ledger_logger.debug("ledger_unspent_coins address=%s count=%s", address, len(coins))
        return coins

    async def submit_spend(
        self,
        synthetic_key: str,
        payments: Sequence[Payment],
        selected_coins: Sequence[Coin],
        fee: int,
    ) -> str:
        if not str(synthetic_key or "").strip():
            raise SigningKeyUnavailable()
        if not payments:
            raise LedgerRequestError("send_xch_requires_payments")
        if not selected_coins:
            raise LedgerRequestError("send_xch_requires_selected_coins")
        signed = await self._request(
            "POST",
            f"{self.base_url}{SEND_XCH_PATH}",
            body={
                "payments": [{"address": p.address, "amount": p.amount} for p in payments],
                "selected_coins": [_coin_request_payload(c) for c in selected_coins],
                "fee": int(fee),
                "synthetic_public_key": synthetic_key,
            },
        )
        bundle = signed.get("signed_spend_bundle") if isinstance(signed, dict) else None
        if not isinstance(bundle, dict) or not bundle.get("coin_spends"):
            raise LedgerRequestError("ledger_invalid_response:missing_signed_spend_bundle")
        broadcast = await self._request(
            "POST",
            f"{self.base_url}{BROADCAST_PATH}",
            body={
                "coinSpends": bundle["coin_spends"],
                "signature": bundle.get("aggregated_signature", ""),
            },
        )
        transaction_id = (
            str(broadcast.get("transaction_id", "")).strip() if isinstance(broadcast, dict) else ""
        )
        if not transaction_id:
            raise LedgerRequestError("ledger_invalid_response:missing_transaction_id")
        _ledger_logger.info(
            "ledger_spend_broadcast transaction_id=%s coins=%s fee=%s",
            transaction_id,
            len(selected_coins),
            fee,
        )
        return transaction_id

    async def submit_offer(self, synthetic_key: str, offer_spec: OfferSpec) -> str:
        """Build an unsigned offer, have the ledger sign it and return the ``offer1…`` blob."""
        unsigned = await self._request(
            "POST",
            self.unsigned_offer_url,
            body={
                "synthetic_public_key": synthetic_key,
                "requested_payments": offer_spec.requested_payments_payload(),
                "nft_data": offer_spec.offered_coin.to_payload(),
            },
        )
        data = unsigned.get("data") if isinstance(unsigned, dict) else None
        if not isinstance(data, dict):
            data = {}
        unsigned_offer = str(data.get("unsigned_offer_string", "")).strip()
        if not unsigned_offer.startswith("offer1"):
            raise LedgerRequestError("ledger_invalid_response:missing_unsigned_offer")
        signed = await self._request(
            "POST", f"{self.base_url}{SIGN_OFFER_PATH}", body={"offer": unsigned_offer}
        )
        signed_offer = str(signed.get("signed_offer", "")).strip() if isinstance(signed, dict) else ""
        if not signed_offer.startswith("offer1"):
            raise LedgerRequestError("ledger_invalid_response:missing_signed_offer")
        return signed_offer
