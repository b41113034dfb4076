from __future__ import annotations

from collections.abc import Sequence

from mojowallet.core.errors import InsufficientFundsError, ValidationError
from mojowallet.core.types import Coin


def select_coins(coins: Sequence[Coin], target_amount: int) -> list[Coin]:
    """Select coins largest-first until their total covers ``target_amount``.

    Greedy by descending amount so the result is deterministic and auditable.
    Callers must pre-filter ``coins`` to a single asset.
    """
    target = int(target_amount)
    if target < 0:
        raise ValidationError(f"negative_target_amount:{target}")
    available = sum(c.amount for c in coins)
    if available < target:
        raise InsufficientFundsError(available=available, required=target)

    selected: list[Coin] = []
    total = 0
    for coin in sorted(coins, key=lambda c: c.amount, reverse=True):
        if total >= target:
            break
        selected.append(coin)
        total += coin.amount
    return selected


def select_spend(coins: Sequence[Coin], *, amount: int, fee: int) -> list[Coin]:
    if int(amount) <= 0:
        raise ValidationError(f"non_positive_amount:{amount}")
    if int(fee) < 0:
        raise ValidationError(f"negative_fee:{fee}")
    return select_coins(coins, int(amount) + int(fee))
