from __future__ import annotations

import asyncio

import pytest

from mojowallet.config.models import SyncPolicy
from mojowallet.core.coin_store import CoinStore, SyncState
from mojowallet.core.errors import (
    LedgerRequestError,
    NotAuthenticated,
    SigningKeyUnavailable,
    SyncError,
    TransientNetworkError,
)
from mojowallet.core.types import DriverKind, PublicKeyInfo, hydrated_coin_from_payload

ACCOUNT_ADDRESS = "xch1" + "q" * 48 + "m6ks6e8mvy"


def _coins(*amounts: int, asset_id: str | None = None) -> list:
    rows = []
    for idx, amount in enumerate(amounts):
        row = {
            "coin": {
                "parentCoinInfo": "0x" + f"{idx + 1:02x}" * 32,
                "puzzleHash": "0x" + "22" * 32,
                "amount": amount,
            },
            "createdHeight": 1,
        }
        if asset_id:
            row["parentSpendInfo"] = {"driverInfo": {"type": "CAT", "assetId": asset_id}}
        rows.append(hydrated_coin_from_payload(row))
    return rows


class _Gate:
    """Hold a scripted ledger reply until ``event`` is set."""

    def __init__(self, event: asyncio.Event, reply) -> None:
        self.event = event
        self.reply = reply


class _FakeLedger:
    def __init__(self, script: list, *, synthetic_key: str | None = "0xkey") -> None:
        self.script = script
        self.synthetic_key = synthetic_key
        self.coin_calls = 0
        self.key_calls = 0

    async def get_public_key_info(self) -> PublicKeyInfo:
        self.key_calls += 1
        return PublicKeyInfo(
            address=ACCOUNT_ADDRESS, puzzle_hash=bytes(32), synthetic_key=self.synthetic_key
        )

    async def get_unspent_coins(self, address: str):
        assert address == ACCOUNT_ADDRESS
        self.coin_calls += 1
        reply = self.script.pop(0)
        if isinstance(reply, _Gate):
            await reply.event.wait()
            reply = reply.reply
        if isinstance(reply, Exception):
            raise reply
        return reply


class _Clock:
    def __init__(self, value: float = 1_000.0) -> None:
        self.value = value

    def __call__(self) -> float:
        return self.value


def _recording_sleep(delays: list):
    async def _sleep(delay: float) -> None:
        delays.append(delay)

    return _sleep


def _store(ledger, *, clock=None, delays=None, policy=None) -> CoinStore:
    return CoinStore(
        ledger,
        policy=policy or SyncPolicy(),
        now_fn=clock or _Clock(),
        sleep_fn=_recording_sleep(delays if delays is not None else []),
    )


def test_sync_builds_snapshot_with_exact_balance() -> None:
    ledger = _FakeLedger([_coins(1_000_000_000_000, 1) + _coins(7, asset_id="aa")])
    store = _store(ledger)
    assert store.state == SyncState.UNINITIALIZED
    snapshot = asyncio.run(store.sync())
    assert store.state == SyncState.READY
    assert snapshot.address == ACCOUNT_ADDRESS
    assert store.current_balance() == 1_000_000_000_008
    assert len(store.current_coins(DriverKind.STANDARD)) == 2
    assert len(store.current_coins(DriverKind.CAT)) == 1
    assert store.synthetic_key() == "0xkey"
    assert store.balance_error is None


def test_concurrent_syncs_share_one_network_call() -> None:
    async def _run():
        release = asyncio.Event()
        ledger = _FakeLedger([_Gate(release, _coins(5))])
        store = _store(ledger)
        first = asyncio.ensure_future(store.sync())
        second = asyncio.ensure_future(store.sync())
        await asyncio.sleep(0)
        assert store.state == SyncState.SYNCING
        release.set()
        a, b = await asyncio.gather(first, second)
        return ledger, a, b

    ledger, a, b = asyncio.run(_run())
    assert a is b
    assert ledger.coin_calls == 1
    assert ledger.key_calls == 1


def test_fresh_snapshot_skips_network_until_stale_or_forced() -> None:
    clock = _Clock()
    ledger = _FakeLedger([_coins(5), _coins(6), _coins(7)])
    store = _store(ledger, clock=clock)

    async def _run():
        first = await store.sync()
        clock.value += 10
        assert store.is_stale() is False
        assert await store.sync() is first
        assert ledger.coin_calls == 1
        clock.value += 25
        assert store.is_stale() is True
        second = await store.sync()
        assert ledger.coin_calls == 2
        third = await store.sync(force=True)
        return second, third

    second, third = asyncio.run(_run())
    assert second.balance == 6
    assert third.balance == 7
    assert ledger.coin_calls == 3


def test_transient_failures_retry_with_exponential_backoff() -> None:
    delays: list = []
    ledger = _FakeLedger(
        [TransientNetworkError("ledger_http_error:503"), TransientNetworkError("timeout"), _coins(9)]
    )
    store = _store(ledger, delays=delays)
    snapshot = asyncio.run(store.sync())
    assert snapshot.balance == 9
    assert delays == [2.0, 4.0]
    assert ledger.coin_calls == 3
    assert store.state == SyncState.READY


def test_exhausted_retries_raise_sync_error_without_snapshot() -> None:
    delays: list = []
    ledger = _FakeLedger([TransientNetworkError(f"down-{i}") for i in range(4)])
    store = _store(ledger, delays=delays)
    with pytest.raises(SyncError) as excinfo:
        asyncio.run(store.sync())
    assert excinfo.value.attempts == 4
    assert delays == [2.0, 4.0, 8.0]
    assert ledger.coin_calls == 4
    assert store.snapshot is None
    assert store.state == SyncState.UNINITIALIZED
    assert store.balance_error is not None and "down-3" in store.balance_error
    assert store.current_balance() == 0


def test_failed_refresh_keeps_previous_snapshot_and_degrades() -> None:
    clock = _Clock()
    ledger = _FakeLedger([_coins(40, 2)] + [TransientNetworkError("down")] * 4)
    store = _store(ledger, clock=clock)

    async def _run():
        good = await store.sync()
        clock.value += 60
        with pytest.raises(SyncError):
            await store.sync()
        return good

    good = asyncio.run(_run())
    assert store.snapshot is good
    assert store.current_balance() == 42
    assert store.state == SyncState.DEGRADED
    assert isinstance(store.last_error, SyncError)


def test_not_authenticated_is_not_retried() -> None:
    delays: list = []
    ledger = _FakeLedger([NotAuthenticated()])
    store = _store(ledger, delays=delays)
    with pytest.raises(NotAuthenticated):
        asyncio.run(store.sync())
    assert ledger.coin_calls == 1
    assert delays == []
    assert isinstance(store.last_error, NotAuthenticated)


def test_rejected_request_is_not_retried() -> None:
    ledger = _FakeLedger([LedgerRequestError("ledger_http_error:400", status=400)])
    store = _store(ledger)
    with pytest.raises(LedgerRequestError):
        asyncio.run(store.sync())
    assert ledger.coin_calls == 1


def test_forced_sync_supersedes_retrying_sync() -> None:
    async def _run():
        release = asyncio.Event()
        delays: list = []

        async def _blocking_sleep(delay: float) -> None:
            delays.append(delay)
            await release.wait()

        ledger = _FakeLedger([TransientNetworkError("blip"), _coins(11)])
        store = CoinStore(ledger, now_fn=_Clock(), sleep_fn=_blocking_sleep)
        background = asyncio.ensure_future(store.sync())
        while not delays:
            await asyncio.sleep(0)
        forced = await store.sync(force=True)
        release.set()
        joined = await background
        return ledger, forced, joined

    ledger, forced, joined = asyncio.run(_run())
    assert forced.balance == 11
    assert joined is forced
    # The superseded task stopped at its retry boundary.
    assert ledger.coin_calls == 2


def test_late_result_from_superseded_sync_is_discarded() -> None:
    async def _run():
        release = asyncio.Event()
        ledger = _FakeLedger([_Gate(release, _coins(1)), _coins(2)])
        store = _store(ledger)
        slow = asyncio.ensure_future(store.sync())
        while ledger.coin_calls == 0:
            await asyncio.sleep(0)
        fast = await store.sync(force=True)
        release.set()
        slow_result = await slow
        return store, fast, slow_result

    store, fast, slow_result = asyncio.run(_run())
    assert fast.balance == 2
    assert slow_result is fast
    assert store.snapshot is fast
    assert store.current_balance() == 2


def test_sync_timeout_raises_sync_error() -> None:
    class _HangingLedger(_FakeLedger):
        async def get_unspent_coins(self, address: str):
            await asyncio.sleep(5)
            return []

    store = CoinStore(
        _HangingLedger([]),
        policy=SyncPolicy(timeout_seconds=0.05),
        now_fn=_Clock(),
    )
    with pytest.raises(SyncError, match="sync_timeout"):
        asyncio.run(store.sync())
    assert store.state == SyncState.UNINITIALIZED


def test_synthetic_key_unavailable_until_connected() -> None:
    store = _store(_FakeLedger([_coins(1)], synthetic_key=None))
    with pytest.raises(SigningKeyUnavailable):
        store.synthetic_key()
    asyncio.run(store.sync())
    with pytest.raises(SigningKeyUnavailable):
        store.synthetic_key()


def test_reset_forgets_account() -> None:
    ledger = _FakeLedger([_coins(3), _coins(4)])
    store = _store(ledger)
    asyncio.run(store.sync())
    store.reset()
    assert store.snapshot is None
    assert store.address is None
    assert store.state == SyncState.UNINITIALIZED
    assert asyncio.run(store.sync()).balance == 4
    assert ledger.key_calls == 2


def test_reset_during_key_fetch_drops_the_old_account() -> None:
    class _SwitchingLedger(_FakeLedger):
        def __init__(self) -> None:
            super().__init__([_coins(7)])
            self.release = asyncio.Event()
            self.accounts = [
                PublicKeyInfo(
                    address="xch1oldaccount", puzzle_hash=b"\x01" * 32, synthetic_key="0xold"
                ),
                PublicKeyInfo(
                    address=ACCOUNT_ADDRESS, puzzle_hash=bytes(32), synthetic_key="0xnew"
                ),
            ]

        async def get_public_key_info(self) -> PublicKeyInfo:
            self.key_calls += 1
            account = self.accounts.pop(0)
            if account.synthetic_key == "0xold":
                await self.release.wait()
            return account

    async def _run():
        ledger = _SwitchingLedger()
        store = _store(ledger)
        pending = asyncio.ensure_future(store.sync())
        while ledger.key_calls == 0:
            await asyncio.sleep(0)
        store.reset()
        ledger.release.set()
        with pytest.raises(SyncError, match="sync_cancelled:account_reset"):
            await pending
        assert store.address is None
        with pytest.raises(SigningKeyUnavailable):
            store.synthetic_key()
        snapshot = await store.sync()
        return ledger, store, snapshot

    ledger, store, snapshot = asyncio.run(_run())
    assert ledger.key_calls == 2
    assert snapshot.address == ACCOUNT_ADDRESS
    assert store.synthetic_key() == "0xnew"
    assert snapshot.balance == 7
