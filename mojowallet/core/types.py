from __future__ import annotations

import importlib
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

MOJOS_PER_XCH = 10**12


class DriverKind(StrEnum):
    STANDARD = "standard"
    CAT = "cat"
    NFT = "nft"
    ANY = "any"


def hex_to_bytes32(value: object, *, field_name: str) -> bytes:
    raw = str(value or "").strip().lower()
    if raw.startswith("0x"):
        raw = raw[2:]
    try:
        parsed = bytes.fromhex(raw)
    except ValueError as exc:
        raise ValueError(f"invalid_hex:{field_name}") from exc
    if len(parsed) != 32:
        raise ValueError(f"invalid_bytes32_length:{field_name}:{len(parsed)}")
    return parsed


def _parse_amount(value: object) -> int:
    if isinstance(value, bool) or isinstance(value, float):
        raise ValueError("invalid_amount_type")
    try:
        amount = int(str(value).strip()) if isinstance(value, str) else int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise ValueError(f"invalid_amount:{value}") from exc
    if amount < 0:
        raise ValueError(f"negative_amount:{amount}")
    return amount


def _import_sdk() -> Any:
    return importlib.import_module("chia_wallet_sdk")


@dataclass(frozen=True, slots=True)
class Coin:
    parent_coin_info: bytes
    puzzle_hash: bytes
    amount: int

    def name(self) -> bytes:
        """Coin id: sha256 of parent, puzzle hash and the CLVM-encoded amount."""
        sdk = _import_sdk()
        return bytes(sdk.Coin(self.parent_coin_info, self.puzzle_hash, self.amount).coin_id())

    def to_payload(self) -> dict[str, Any]:
        return {
            "parent_coin_info": "0x" + self.parent_coin_info.hex(),
            "puzzle_hash": "0x" + self.puzzle_hash.hex(),
            "amount": self.amount,
        }


def coin_from_payload(payload: dict[str, Any]) -> Coin:
    """Build a Coin from either the camelCase or snake_case API shape."""
    parent = payload.get("parentCoinInfo") or payload.get("parent_coin_info")
    puzzle_hash = payload.get("puzzleHash") or payload.get("puzzle_hash")
    return Coin(
        parent_coin_info=hex_to_bytes32(parent, field_name="parent_coin_info"),
        puzzle_hash=hex_to_bytes32(puzzle_hash, field_name="puzzle_hash"),
        amount=_parse_amount(payload.get("amount")),
    )


@dataclass(frozen=True, slots=True)
class StandardDriver:
    kind: DriverKind = DriverKind.STANDARD


@dataclass(frozen=True, slots=True)
class CatDriver:
    asset_id: str
    kind: DriverKind = DriverKind.CAT


@dataclass(frozen=True, slots=True)
class NftDriver:
    launcher_id: str
    metadata_uris: tuple[str, ...] = ()
    data_uris: tuple[str, ...] = ()
    edition_number: int | None = None
    edition_total: int | None = None
    kind: DriverKind = DriverKind.NFT


DriverInfo = StandardDriver | CatDriver | NftDriver


def _optional_int(value: object) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(str(value))
    except (TypeError, ValueError):
        return None


def _str_tuple(value: object) -> tuple[str, ...]:
    if not isinstance(value, list):
        return ()
    return tuple(str(v).strip() for v in value if isinstance(v, str) and v.strip())


def driver_from_payload(payload: dict[str, Any] | None) -> DriverInfo:
    if not isinstance(payload, dict):
        return StandardDriver()
    driver_type = str(payload.get("type", "")).strip().upper()
    if driver_type == "CAT":
        asset_id = str(payload.get("assetId") or payload.get("asset_id") or "").strip().lower()
        if not asset_id:
            raise ValueError("cat_driver_missing_asset_id")
        return CatDriver(asset_id=asset_id.removeprefix("0x"))
    if driver_type == "NFT":
        info = payload.get("info") if isinstance(payload.get("info"), dict) else {}
        metadata = info.get("metadata") if isinstance(info.get("metadata"), dict) else {}
        launcher_id = str(info.get("launcherId") or info.get("launcher_id") or "").strip().lower()
        if not launcher_id:
            raise ValueError("nft_driver_missing_launcher_id")
        return NftDriver(
            launcher_id=launcher_id.removeprefix("0x"),
            metadata_uris=_str_tuple(metadata.get("metadataUris") or metadata.get("metadata_uris")),
            data_uris=_str_tuple(metadata.get("dataUris") or metadata.get("data_uris")),
            edition_number=_optional_int(
                metadata.get("editionNumber") or metadata.get("edition_number")
            ),
            edition_total=_optional_int(
                metadata.get("editionTotal") or metadata.get("edition_total")
            ),
        )
    return StandardDriver()


@dataclass(frozen=True, slots=True)
class HydratedCoin:
    coin: Coin
    created_height: int
    driver: DriverInfo
    raw_payload: dict[str, Any] = field(default_factory=dict, compare=False, hash=False, repr=False)

    @property
    def kind(self) -> DriverKind:
        return self.driver.kind

    def matches(self, kind: DriverKind) -> bool:
        return kind == DriverKind.ANY or self.driver.kind == kind

    def to_payload(self) -> dict[str, Any]:
        """Return the coin in the Ledger Service's hydrated shape."""
        if self.raw_payload:
            return dict(self.raw_payload)
        return {
            "coin": {
                "parentCoinInfo": "0x" + self.coin.parent_coin_info.hex(),
                "puzzleHash": "0x" + self.coin.puzzle_hash.hex(),
                "amount": str(self.coin.amount),
            },
            "createdHeight": str(self.created_height),
            "parentSpendInfo": {"driverInfo": _driver_to_payload(self.driver)},
        }


def _driver_to_payload(driver: DriverInfo) -> dict[str, Any] | None:
    if isinstance(driver, CatDriver):
        return {"type": "CAT", "assetId": driver.asset_id}
    if isinstance(driver, NftDriver):
        return {
            "type": "NFT",
            "info": {
                "launcherId": driver.launcher_id,
                "metadata": {
                    "metadataUris": list(driver.metadata_uris),
                    "dataUris": list(driver.data_uris),
                    "editionNumber": driver.edition_number,
                    "editionTotal": driver.edition_total,
                },
            },
        }
    return None


def hydrated_coin_from_payload(payload: dict[str, Any]) -> HydratedCoin:
    coin_payload = payload.get("coin")
    if not isinstance(coin_payload, dict):
        raise ValueError("hydrated_coin_missing_coin")
    parent_spend = payload.get("parentSpendInfo") or payload.get("parent_spend_info") or {}
    driver_payload = parent_spend.get("driverInfo") if isinstance(parent_spend, dict) else None
    if driver_payload is None and isinstance(parent_spend, dict):
        driver_payload = parent_spend.get("driver_info")
    created_height = _optional_int(payload.get("createdHeight") or payload.get("created_height"))
    return HydratedCoin(
        coin=coin_from_payload(coin_payload),
        created_height=created_height or 0,
        driver=driver_from_payload(driver_payload),
        raw_payload=dict(payload),
    )


@dataclass(frozen=True, slots=True)
class BalanceBreakdown:
    total: int
    standard: int
    cat: int
    nft: int
    coin_count: int
    standard_coin_count: int
    cat_coin_count: int
    nft_coin_count: int


@dataclass(frozen=True, slots=True)
class AccountSnapshot:
    address: str
    puzzle_hash: bytes
    synthetic_key: str | None
    coins: tuple[HydratedCoin, ...]
    fetched_at: float

    @property
    def balance(self) -> int:
        return sum(c.coin.amount for c in self.coins)

    def coins_of(self, kind: DriverKind) -> tuple[HydratedCoin, ...]:
        return tuple(c for c in self.coins if c.matches(kind))

    def balance_breakdown(self) -> BalanceBreakdown:
        totals = {DriverKind.STANDARD: 0, DriverKind.CAT: 0, DriverKind.NFT: 0}
        counts = {DriverKind.STANDARD: 0, DriverKind.CAT: 0, DriverKind.NFT: 0}
        for hydrated in self.coins:
            totals[hydrated.kind] += hydrated.coin.amount
            counts[hydrated.kind] += 1
        return BalanceBreakdown(
            total=sum(totals.values()),
            standard=totals[DriverKind.STANDARD],
            cat=totals[DriverKind.CAT],
            nft=totals[DriverKind.NFT],
            coin_count=len(self.coins),
            standard_coin_count=counts[DriverKind.STANDARD],
            cat_coin_count=counts[DriverKind.CAT],
            nft_coin_count=counts[DriverKind.NFT],
        )


@dataclass(frozen=True, slots=True)
class PublicKeyInfo:
    address: str
    puzzle_hash: bytes
    synthetic_key: str | None


def format_mojos_as_xch(mojos: int) -> str:
    whole, frac = divmod(int(mojos), MOJOS_PER_XCH)
    if frac == 0:
        return str(whole)
    return f"{whole}.{frac:012d}".rstrip("0")


@dataclass(frozen=True, slots=True)
class Payment:
    address: str
    amount: int


@dataclass(frozen=True, slots=True)
class RequestedPayment:
    """What the offer maker wants in return. ``asset_id`` None means native XCH."""

    amount: int
    asset_id: str | None
    deposit_address: str

    def to_payload(self) -> dict[str, Any]:
        return {
            "amount": self.amount,
            "asset_id": self.asset_id,
            "deposit_address": self.deposit_address,
        }


def requested_payment_from_payload(payload: dict[str, Any]) -> RequestedPayment:
    asset_id = payload.get("asset_id")
    return RequestedPayment(
        amount=_parse_amount(payload.get("amount")),
        asset_id=str(asset_id) if asset_id else None,
        deposit_address=str(payload.get("deposit_address", "")),
    )
