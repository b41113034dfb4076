from __future__ import annotations

import argparse
import asyncio
import json
from pathlib import Path

from mojowallet.config.io import default_config_path, load_wallet_config
from mojowallet.config.models import WalletConfig
from mojowallet.core.address import MAINNET_PREFIX, AddressCodec, encode_puzzle_hash
from mojowallet.core.errors import WalletError
from mojowallet.core.offer_ledger import SavedOffer
from mojowallet.core.offer_lifecycle import OfferStatus
from mojowallet.core.types import DriverKind, HydratedCoin, format_mojos_as_xch
from mojowallet.logging_setup import initialize_file_logging
from mojowallet.wallet import Wallet

EXIT_WALLET_ERROR = 2


def _load_config(config_path: Path) -> WalletConfig:
    config = load_wallet_config(config_path)
    initialize_file_logging(
        config.home_dir, service_name="mojowallet_manager", log_level=config.app_log_level
    )
    return config


def _new_wallet(config: WalletConfig) -> Wallet:
    return Wallet.from_config(config)


def _coin_item(hydrated: HydratedCoin) -> dict:
    item = {
        "coin_id": hydrated.coin.name().hex(),
        "amount": hydrated.coin.amount,
        "kind": hydrated.kind.value,
        "created_height": hydrated.created_height,
    }
    driver = hydrated.driver
    asset_id = getattr(driver, "asset_id", None)
    launcher_id = getattr(driver, "launcher_id", None)
    if asset_id:
        item["asset_id"] = asset_id
    if launcher_id:
        item["launcher_id"] = launcher_id
    return item


def _offer_item(offer: SavedOffer) -> dict:
    return {
        "id": offer.id,
        "status": offer.status.value,
        "created_at": offer.created_at,
        "updated_at": offer.updated_at,
        "offered_coin_id": offer.offered_coin.coin.name().hex(),
        "requested_payment": offer.requested_payment.to_payload(),
        "marketplace_id": offer.marketplace_id,
        "marketplace_url": offer.marketplace_url,
    }


def _validate(config_path: Path) -> int:
    config = load_wallet_config(config_path)
    print(
        json.dumps(
            {
                "ok": True,
                "config_path": str(config_path),
                "network": config.app_network,
                "ledger_base_url": config.ledger_base_url,
                "allow_testnet_addresses": config.allow_testnet_addresses,
            }
        )
    )
    return 0


def _address_decode(address: str, *, allow_testnet: bool) -> int:
    decoded = AddressCodec(allow_testnet=allow_testnet).decode(address)
    print(json.dumps({"prefix": decoded.prefix, "puzzle_hash": decoded.puzzle_hash.hex()}))
    return 0


def _address_encode(puzzle_hash_hex: str, *, prefix: str) -> int:
    raw = puzzle_hash_hex.strip().lower().removeprefix("0x")
    try:
        puzzle_hash = bytes.fromhex(raw)
    except ValueError as exc:
        raise ValueError(f"puzzle_hash must be hex: {puzzle_hash_hex}") from exc
    print(json.dumps({"address": encode_puzzle_hash(puzzle_hash, prefix)}))
    return 0


def _balance(*, config_path: Path, force: bool) -> int:
    wallet = _new_wallet(_load_config(config_path))
    try:
        snapshot = asyncio.run(wallet.refresh(force=force))
        breakdown = snapshot.balance_breakdown()
        payload = wallet.status().to_payload()
    finally:
        wallet.close()
    payload["breakdown"] = {
        "standard": breakdown.standard,
        "cat": breakdown.cat,
        "nft": breakdown.nft,
        "standard_coin_count": breakdown.standard_coin_count,
        "cat_coin_count": breakdown.cat_coin_count,
        "nft_coin_count": breakdown.nft_coin_count,
    }
    print(json.dumps(payload))
    return 0


def _coins_list(*, config_path: Path, kind: str) -> int:
    wallet = _new_wallet(_load_config(config_path))
    try:
        snapshot = asyncio.run(wallet.refresh())
    finally:
        wallet.close()
    coins = snapshot.coins_of(DriverKind(kind))
    items = [_coin_item(c) for c in coins]
    total = sum(c.coin.amount for c in coins)
    print(
        json.dumps(
            {
                "address": snapshot.address,
                "kind": kind,
                "count": len(items),
                "total": total,
                "total_xch": format_mojos_as_xch(total),
                "items": items,
            }
        )
    )
    return 0


def _offers_list(*, config_path: Path, status: str | None) -> int:
    wallet = _new_wallet(_load_config(config_path))
    try:
        asyncio.run(wallet.refresh())
        offers = wallet.offers.list_offers(status)
        stats = wallet.offers.offer_stats()
    finally:
        wallet.close()
    print(
        json.dumps(
            {
                "status_filter": status,
                "count": len(offers),
                "by_status": stats,
                "offers": [_offer_item(o) for o in offers],
            }
        )
    )
    return 0


def _offers_set_status(*, config_path: Path, offer_id: str, status: str) -> int:
    wallet = _new_wallet(_load_config(config_path))
    try:
        asyncio.run(wallet.refresh())
        offer = wallet.offers.update_status(offer_id, status)
    finally:
        wallet.close()
    print(json.dumps(_offer_item(offer)))
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description="mojowallet manager CLI")
    parser.add_argument("--config", default=str(default_config_path()))

    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("config-validate")

    p_decode = sub.add_parser("address-decode")
    p_decode.add_argument("address")
    p_decode.add_argument("--allow-testnet", action="store_true")

    p_encode = sub.add_parser("address-encode")
    p_encode.add_argument("puzzle_hash")
    p_encode.add_argument("--prefix", default=MAINNET_PREFIX, choices=["xch", "txch"])

    p_balance = sub.add_parser("balance")
    p_balance.add_argument("--force", action="store_true")

    p_coins_list = sub.add_parser("coins-list")
    p_coins_list.add_argument(
        "--kind", default=DriverKind.ANY.value, choices=[k.value for k in DriverKind]
    )

    p_offers_list = sub.add_parser("offers-list")
    p_offers_list.add_argument("--status", default="", choices=["", *[s.value for s in OfferStatus]])

    p_offers_set = sub.add_parser("offers-set-status")
    p_offers_set.add_argument("--offer-id", required=True)
    p_offers_set.add_argument("--status", required=True, choices=[s.value for s in OfferStatus])

    args = parser.parse_args()
    config_path = Path(args.config)
    try:
        if args.command == "config-validate":
            code = _validate(config_path)
        elif args.command == "address-decode":
            code = _address_decode(args.address, allow_testnet=bool(args.allow_testnet))
        elif args.command == "address-encode":
            code = _address_encode(args.puzzle_hash, prefix=args.prefix)
        elif args.command == "balance":
            code = _balance(config_path=config_path, force=bool(args.force))
        elif args.command == "coins-list":
            code = _coins_list(config_path=config_path, kind=args.kind)
        elif args.command == "offers-list":
            code = _offers_list(config_path=config_path, status=args.status or None)
        elif args.command == "offers-set-status":
            code = _offers_set_status(
                config_path=config_path, offer_id=args.offer_id, status=args.status
            )
        else:
            raise ValueError(f"unsupported command: {args.command}")
    except WalletError as exc:
        print(json.dumps({"error": str(exc), "error_type": type(exc).__name__}))
        code = EXIT_WALLET_ERROR
    raise SystemExit(code)
