from __future__ import annotations

import hashlib

import pytest

from mojowallet.core.types import (
    AccountSnapshot,
    CatDriver,
    Coin,
    DriverKind,
    NftDriver,
    StandardDriver,
    coin_from_payload,
    format_mojos_as_xch,
    hydrated_coin_from_payload,
)

PARENT = "0x" + "11" * 32
PUZZLE = "0x" + "22" * 32


def _hydrated(amount: int, driver: dict | None = None, *, camel: bool = True) -> dict:
    coin = (
        {"parentCoinInfo": PARENT, "puzzleHash": PUZZLE, "amount": str(amount)}
        if camel
        else {"parent_coin_info": PARENT, "puzzle_hash": PUZZLE, "amount": amount}
    )
    payload: dict = {"coin": coin, "createdHeight": "123"}
    if driver is not None:
        payload["parentSpendInfo"] = {"driverInfo": driver}
    return payload


def test_coin_name_matches_chia_amount_encoding() -> None:
    parent = bytes.fromhex("11" * 32)
    puzzle = bytes.fromhex("22" * 32)
    # 0x80 needs a leading zero byte to stay positive in signed encoding.
    assert Coin(parent, puzzle, 128).name() == hashlib.sha256(parent + puzzle + b"\x00\x80").digest()
    assert Coin(parent, puzzle, 127).name() == hashlib.sha256(parent + puzzle + b"\x7f").digest()
    assert Coin(parent, puzzle, 0).name() == hashlib.sha256(parent + puzzle).digest()
    assert Coin(parent, puzzle, 256).name() == hashlib.sha256(parent + puzzle + b"\x01\x00").digest()


def test_coin_from_payload_accepts_camel_and_snake_case() -> None:
    camel = coin_from_payload({"parentCoinInfo": PARENT, "puzzleHash": PUZZLE, "amount": "5"})
    snake = coin_from_payload({"parent_coin_info": PARENT[2:], "puzzle_hash": PUZZLE, "amount": 5})
    assert camel == snake
    assert camel.amount == 5


@pytest.mark.parametrize("amount", [1.5, True, -1, "abc"])
def test_coin_from_payload_rejects_non_integer_amounts(amount) -> None:
    with pytest.raises(ValueError):
        coin_from_payload({"parentCoinInfo": PARENT, "puzzleHash": PUZZLE, "amount": amount})


def test_coin_from_payload_rejects_short_hashes() -> None:
    with pytest.raises(ValueError, match="invalid_bytes32_length"):
        coin_from_payload({"parentCoinInfo": "0x1234", "puzzleHash": PUZZLE, "amount": 1})


def test_driver_resolution_for_each_kind() -> None:
    standard = hydrated_coin_from_payload(_hydrated(10))
    cat = hydrated_coin_from_payload(_hydrated(20, {"type": "CAT", "assetId": "0xABCD"}))
    nft = hydrated_coin_from_payload(
        _hydrated(
            1,
            {
                "type": "NFT",
                "info": {
                    "launcherId": "0x" + "33" * 32,
                    "metadata": {
                        "metadataUris": ["ipfs://meta"],
                        "dataUris": ["https://img"],
                        "editionNumber": 2,
                        "editionTotal": "10",
                    },
                },
            },
        )
    )
    assert standard.driver == StandardDriver()
    assert cat.driver == CatDriver(asset_id="abcd")
    assert isinstance(nft.driver, NftDriver)
    assert nft.driver.launcher_id == "33" * 32
    assert nft.driver.metadata_uris == ("ipfs://meta",)
    assert nft.driver.edition_number == 2
    assert nft.driver.edition_total == 10
    assert nft.created_height == 123
    assert [c.kind for c in (standard, cat, nft)] == [
        DriverKind.STANDARD,
        DriverKind.CAT,
        DriverKind.NFT,
    ]


def test_cat_driver_without_asset_id_is_rejected() -> None:
    with pytest.raises(ValueError, match="cat_driver_missing_asset_id"):
        hydrated_coin_from_payload(_hydrated(1, {"type": "CAT"}))


def test_snake_case_hydrated_payload() -> None:
    payload = _hydrated(7, camel=False)
    payload["parent_spend_info"] = {"driver_info": {"type": "CAT", "asset_id": "ff"}}
    coin = hydrated_coin_from_payload(payload)
    assert coin.kind == DriverKind.CAT
    assert coin.coin.amount == 7


def test_to_payload_without_raw_payload_round_trips() -> None:
    original = hydrated_coin_from_payload(_hydrated(20, {"type": "CAT", "assetId": "abcd"}))
    rebuilt = hydrated_coin_from_payload(
        type(original)(coin=original.coin, created_height=5, driver=original.driver).to_payload()
    )
    assert rebuilt.coin == original.coin
    assert rebuilt.driver == original.driver
    assert rebuilt.created_height == 5


def test_snapshot_balance_is_exact_sum_and_breakdown_by_kind() -> None:
    coins = (
        hydrated_coin_from_payload(_hydrated(1_000_000_000_001)),
        hydrated_coin_from_payload(_hydrated(3, {"type": "CAT", "assetId": "aa"})),
        hydrated_coin_from_payload(_hydrated(1, {"type": "NFT", "info": {"launcherId": "bb"}})),
    )
    snapshot = AccountSnapshot(
        address="xch1test", puzzle_hash=bytes(32), synthetic_key=None, coins=coins, fetched_at=0.0
    )
    assert snapshot.balance == 1_000_000_000_005
    breakdown = snapshot.balance_breakdown()
    assert breakdown.total == snapshot.balance
    assert (breakdown.standard, breakdown.cat, breakdown.nft) == (1_000_000_000_001, 3, 1)
    assert breakdown.coin_count == 3
    assert len(snapshot.coins_of(DriverKind.ANY)) == 3
    assert len(snapshot.coins_of(DriverKind.CAT)) == 1


def test_format_mojos_as_xch() -> None:
    assert format_mojos_as_xch(0) == "0"
    assert format_mojos_as_xch(2 * 10**12) == "2"
    assert format_mojos_as_xch(1_500_000_000_000) == "1.5"
    assert format_mojos_as_xch(1) == "0.000000000001"
