from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from enum import StrEnum
from typing import Any

from mojowallet.config.models import SyncPolicy
from mojowallet.core.errors import (
    SigningKeyUnavailable,
    SyncError,
    TransientNetworkError,
)
from mojowallet.core.types import AccountSnapshot, DriverKind, HydratedCoin, PublicKeyInfo

_sync_logger = logging.getLogger("mojowallet.sync")


class SyncState(StrEnum):
    UNINITIALIZED = "uninitialized"
    SYNCING = "syncing"
    READY = "ready"
    DEGRADED = "degraded"


class CoinStore:
    """Holds one account's coin snapshot and keeps it in step with the ledger.

    Concurrent ``sync()`` calls share one in-flight task. A forced sync
    supersedes the running one; the superseded task stops at its next retry
    boundary and its result is thrown away.
    """

    def __init__(
        self,
        ledger: Any,
        *,
        policy: SyncPolicy | None = None,
        now_fn: Callable[[], float] | None = None,
        sleep_fn: Callable[[float], Awaitable[None]] | None = None,
    ) -> None:
        self.ledger = ledger
        self.policy = policy or SyncPolicy()
        self._now_fn = now_fn or time.time
        self._sleep_fn = sleep_fn or asyncio.sleep
        self._snapshot: AccountSnapshot | None = None
        self._account: PublicKeyInfo | None = None
        self._state = SyncState.UNINITIALIZED
        self._last_error: Exception | None = None
        self._generation = 0
        self._task: asyncio.Task[AccountSnapshot | None] | None = None

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def snapshot(self) -> AccountSnapshot | None:
        return self._snapshot

    @property
    def last_error(self) -> Exception | None:
        return self._last_error

    @property
    def balance_error(self) -> str | None:
        if self._last_error is None:
            return None
        return str(self._last_error)

    @property
    def address(self) -> str | None:
        if self._snapshot is not None:
            return self._snapshot.address
        if self._account is not None:
            return self._account.address
        return None

    def age_seconds(self) -> float | None:
        if self._snapshot is None:
            return None
        return max(0.0, float(self._now_fn()) - self._snapshot.fetched_at)

    def is_stale(self) -> bool:
        age = self.age_seconds()
        return age is None or age >= self.policy.staleness_seconds

    def current_balance(self) -> int:
        if self._snapshot is None:
            return 0
        return self._snapshot.balance

    def current_coins(self, kind: DriverKind = DriverKind.ANY) -> tuple[HydratedCoin, ...]:
        if self._snapshot is None:
            return ()
        return self._snapshot.coins_of(kind)

    def synthetic_key(self) -> str:
        key = None
        if self._snapshot is not None:
            key = self._snapshot.synthetic_key
        elif self._account is not None:
            key = self._account.synthetic_key
        if not key:
            raise SigningKeyUnavailable()
        return key

    def reset(self) -> None:
        """Forget the account; any in-flight sync finishes but its result is dropped."""
        self._generation += 1
        self._task = None
        self._snapshot = None
        self._account = None
        self._last_error = None
        self._state = SyncState.UNINITIALIZED
        _sync_logger.info("coin_store_reset generation=%s", self._generation)

    async def sync(self, force: bool = False) -> AccountSnapshot:
        if not force and self._snapshot is not None and not self.is_stale():
            return self._snapshot

        task = self._task
        if task is None or task.done() or force:
            if force and task is not None and not task.done():
                _sync_logger.info("sync_superseded generation=%s", self._generation)
            self._generation += 1
            task = asyncio.ensure_future(self._run_sync(self._generation))
            self._task = task
            self._state = SyncState.SYNCING

        result = await asyncio.shield(task)
        while result is None:
            # The task we joined was superseded; follow whichever sync replaced it.
            newer = self._task
            if newer is None:
                raise SyncError("sync_cancelled:account_reset")
            result = await asyncio.shield(newer)
        return result

    def _superseded(self, generation: int) -> bool:
        return generation != self._generation

    async def _fetch_snapshot(self, generation: int) -> AccountSnapshot | None:
        account = self._account
        if account is None:
            account = await self.ledger.get_public_key_info()
            if self._superseded(generation):
                return None
            self._account = account
        coins = await self.ledger.get_unspent_coins(account.address)
        return AccountSnapshot(
            address=account.address,
            puzzle_hash=account.puzzle_hash,
            synthetic_key=account.synthetic_key,
            coins=tuple(coins),
            fetched_at=float(self._now_fn()),
        )

    async def _run_sync(self, generation: int) -> AccountSnapshot | None:
        attempts = 0
        last_transient: TransientNetworkError | None = None
        try:
            async with asyncio.timeout(self.policy.timeout_seconds):
                for attempt in range(1, self.policy.max_retries + 2):
                    if self._superseded(generation):
                        return None
                    attempts = attempt
                    try:
                        snapshot = await self._fetch_snapshot(generation)
                    except TransientNetworkError as exc:
                        last_transient = exc
                        if attempt > self.policy.max_retries:
                            break
                        delay = self.policy.backoff_delay(attempt)
                        _sync_logger.warning(
                            "sync_retry attempt=%s delay_seconds=%s error=%s",
                            attempt,
                            delay,
                            exc,
                        )
                        await self._sleep_fn(delay)
                        continue
                    if snapshot is None or self._superseded(generation):
                        _sync_logger.info("sync_result_discarded generation=%s", generation)
                        return None
                    self._snapshot = snapshot
                    self._last_error = None
                    self._state = SyncState.READY
                    _sync_logger.info(
                        "sync_complete address=%s coins=%s balance=%s attempts=%s",
                        snapshot.address,
                        len(snapshot.coins),
                        snapshot.balance,
                        attempts,
                    )
                    return snapshot
        except TimeoutError as exc:
            if self._superseded(generation):
                return None
            error = SyncError(
                f"sync_timeout:{self.policy.timeout_seconds}s", attempts=attempts
            )
            self._record_failure(error)
            raise error from exc
        except Exception as exc:
            # Not retryable (auth, rejected request, malformed payload).
            if self._superseded(generation):
                return None
            self._record_failure(exc)
            raise

        if self._superseded(generation):
            return None
        error = SyncError(f"sync_failed:{last_transient}", attempts=attempts)
        self._record_failure(error)
        raise error from last_transient

    def _record_failure(self, exc: Exception) -> None:
        self._last_error = exc
        self._state = SyncState.DEGRADED if self._snapshot is not None else SyncState.UNINITIALIZED
        _sync_logger.error(
            "sync_failed state=%s error_type=%s error=%s",
            self._state,
            type(exc).__name__,
            exc,
        )
