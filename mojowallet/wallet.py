from __future__ import annotations

import logging
import os
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from mojowallet.adapters.dexie import DexieAdapter
from mojowallet.adapters.ledger import LedgerServiceAdapter
from mojowallet.config.models import WalletConfig
from mojowallet.core.address import AddressCodec
from mojowallet.core.coin_selection import select_spend
from mojowallet.core.coin_store import CoinStore, SyncState
from mojowallet.core.errors import ValidationError, WalletError
from mojowallet.core.metadata_cache import MetadataCache
from mojowallet.core.offer_ledger import OfferLedger
from mojowallet.core.types import AccountSnapshot, DriverKind, Payment, format_mojos_as_xch
from mojowallet.storage.kv import SqliteKeyValueStore

_wallet_logger = logging.getLogger("mojowallet.wallet")

DEFAULT_DB_RELATIVE_PATH = "db/wallet.sqlite"


@dataclass(frozen=True, slots=True)
class WalletStatus:
    state: SyncState
    address: str | None
    balance: int
    balance_xch: str
    coin_count: int
    stale: bool
    balance_error: str | None
    send_error: str | None

    def to_payload(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "address": self.address,
            "balance": self.balance,
            "balance_xch": self.balance_xch,
            "coin_count": self.coin_count,
            "stale": self.stale,
            "balance_error": self.balance_error,
            "send_error": self.send_error,
        }


def resolve_db_path(config: WalletConfig) -> Path:
    return (Path(config.home_dir).expanduser() / DEFAULT_DB_RELATIVE_PATH).resolve()


class Wallet:
    """One connected account: coin sync, sends, offers and NFT metadata."""

    def __init__(
        self,
        config: WalletConfig,
        *,
        ledger: Any,
        store: Any,
        marketplace: Any | None = None,
        metadata_session_factory: Callable[[], Any] | None = None,
        now_fn: Callable[[], float] | None = None,
        sleep_fn: Callable[[float], Awaitable[None]] | None = None,
    ) -> None:
        self.config = config
        self.ledger = ledger
        self.store = store
        self.codec = AddressCodec(allow_testnet=config.allow_testnet_addresses)
        self.coin_store = CoinStore(ledger, policy=config.sync, now_fn=now_fn, sleep_fn=sleep_fn)
        self.offers = OfferLedger(
            store, self.coin_store, ledger, codec=self.codec, marketplace=marketplace
        )
        self.metadata = MetadataCache(
            store,
            policy=config.metadata,
            session_factory=metadata_session_factory,
            now_fn=now_fn,
        )
        self._send_error: str | None = None

    @classmethod
    def from_config(cls, config: WalletConfig, *, credential: str | None = None) -> Wallet:
        token = credential if credential is not None else os.getenv(config.ledger_credential_env)
        ledger = LedgerServiceAdapter(
            config.ledger_base_url,
            credential=token,
            timeout_seconds=config.ledger_request_timeout_seconds,
        )
        store = SqliteKeyValueStore(resolve_db_path(config))
        return cls(
            config,
            ledger=ledger,
            store=store,
            marketplace=DexieAdapter(config.dexie_api_base),
        )

    def close(self) -> None:
        self.store.close()

    def disconnect(self) -> None:
        self.coin_store.reset()
        self._send_error = None
        if hasattr(self.ledger, "set_credential"):
            self.ledger.set_credential(None)

    async def refresh(self, force: bool = False) -> AccountSnapshot:
        return await self.coin_store.sync(force=force)

    def status(self) -> WalletStatus:
        snapshot = self.coin_store.snapshot
        balance = self.coin_store.current_balance()
        return WalletStatus(
            state=self.coin_store.state,
            address=self.coin_store.address,
            balance=balance,
            balance_xch=format_mojos_as_xch(balance),
            coin_count=len(snapshot.coins) if snapshot is not None else 0,
            stale=self.coin_store.is_stale(),
            balance_error=self.coin_store.balance_error,
            send_error=self._send_error,
        )

    async def send_xch(self, address: str, amount: int, fee: int = 0) -> str:
        """Pay ``amount`` mojos to ``address`` from standard coins; returns the transaction id."""
        self._send_error = None
        try:
            self.codec.decode(address)
            if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
                raise ValidationError(f"invalid_send_amount:{amount!r}")
            if isinstance(fee, bool) or not isinstance(fee, int) or fee < 0:
                raise ValidationError(f"invalid_send_fee:{fee!r}")
            snapshot = await self.coin_store.sync()
            synthetic_key = self.coin_store.synthetic_key()
            spendable = [c.coin for c in snapshot.coins_of(DriverKind.STANDARD)]
            selected = select_spend(spendable, amount=amount, fee=fee)
            transaction_id = await self.ledger.submit_spend(
                synthetic_key, [Payment(address=address.strip(), amount=amount)], selected, fee
            )
        except WalletError as exc:
            self._send_error = str(exc)
            raise
        _wallet_logger.info(
            "send_xch_submitted transaction_id=%s amount=%s fee=%s coins=%s",
            transaction_id,
            amount,
            fee,
            len(selected),
        )
        try:
            await self.coin_store.sync(force=True)
        except WalletError as exc:
            _wallet_logger.warning("post_send_refresh_failed error=%s", exc)
        return transaction_id
