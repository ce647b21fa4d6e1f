"""Validation rules for swap, match and settlement tasks.

Comparisons are pure functions over ledger snapshots. Checks that need
remote state (loan health, ledger settleability) fail closed: a failed
query is logged and counts as invalid.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterable
from typing import Protocol

import bittensor as bt

from irsavs.chain.interface import LedgerGateway, LendingPool
from irsavs.operator.models import Swap, SwapRequest

MIN_HEALTH_FACTOR = 150  # percent
MAX_RATE_DEVIATION_BPS = 200


async def check_loan_health(
    user: str,
    pool: LendingPool,
    amount: int,
    min_health_factor: int = MIN_HEALTH_FACTOR,
) -> bool:
    """True iff the user's debt in ``pool`` covers ``amount`` and the
    position's health factor is at least ``min_health_factor``."""
    try:
        account = await pool.get_user_account_data(user)
    except Exception as e:
        bt.logging.error({"loan_health": {"user": user, "pool": pool.address, "error": str(e)}})
        return False
    return account.total_debt >= amount and account.health_factor >= min_health_factor


def check_rate_deviation(
    proposed_rate: int,
    current_rate: int,
    max_deviation: int = MAX_RATE_DEVIATION_BPS,
) -> bool:
    """True iff ``|proposed - current| <= max_deviation`` (all bps)."""
    return abs(int(proposed_rate) - int(current_rate)) <= max_deviation


def check_match_compatibility(a: Swap, b: Swap) -> bool:
    return (
        not a.matched
        and not b.matched
        and a.is_active
        and b.is_active
        and a.notional_amount == b.notional_amount
        and a.fixed_rate == b.fixed_rate
        and a.is_paying_fixed != b.is_paying_fixed
    )


def find_matching_swap(request: SwapRequest, swaps: Iterable[Swap]) -> Swap | None:
    """First unmatched, active swap in id order on the opposite side with
    equal notional, or None. Linear in the number of swaps."""
    for swap in sorted(swaps, key=lambda s: s.id):
        if (
            swap.is_active
            and not swap.matched
            and swap.is_paying_fixed != request.is_paying_fixed
            and swap.notional_amount == request.notional_amount
        ):
            return swap
    return None


# ---------------------------------------------------------------------------
# Settlement eligibility
# ---------------------------------------------------------------------------


class SettlementPolicy(Protocol):
    name: str

    async def is_settleable(
        self, swap_id: int, ledger: LedgerGateway, swap: Swap | None = None,
    ) -> bool:
        ...


class LedgerSettlementPolicy:
    """Defers to the ledger's ``canBeSettled``. Default source of truth."""

    name = "ledger"

    async def is_settleable(
        self, swap_id: int, ledger: LedgerGateway, swap: Swap | None = None,
    ) -> bool:
        try:
            settleable = await ledger.can_be_settled(swap_id)
        except Exception as e:
            bt.logging.error({"settlement_check": {"swap_id": swap_id, "error": str(e)}})
            return False
        if not settleable:
            bt.logging.debug({"settlement_check": {"swap_id": swap_id, "settleable": False}})
        return bool(settleable)


class IntervalSettlementPolicy:
    """Recomputes settleability locally from ``last_settlement``.

    A second source of truth next to the ledger predicate; only use it
    when the deployed ledger settles on the same fixed interval.
    """

    name = "interval"

    def __init__(self, interval_seconds: int, clock: Callable[[], float] = time.time):
        self.interval_seconds = interval_seconds
        self._clock = clock

    async def is_settleable(
        self, swap_id: int, ledger: LedgerGateway, swap: Swap | None = None,
    ) -> bool:
        if swap is None:
            try:
                swap = await ledger.get_swap(swap_id)
            except Exception as e:
                bt.logging.error({"settlement_check": {"swap_id": swap_id, "error": str(e)}})
                return False
        if not (swap.is_active and swap.matched):
            return False
        return int(self._clock()) >= swap.last_settlement + self.interval_seconds


def make_settlement_policy(name: str, interval_seconds: int = 86400) -> SettlementPolicy:
    if name == LedgerSettlementPolicy.name:
        return LedgerSettlementPolicy()
    if name == IntervalSettlementPolicy.name:
        return IntervalSettlementPolicy(interval_seconds)
    raise ValueError(f"unknown settlement policy: {name}")


async def check_settlement_eligibility(
    swap_id: int, policy: SettlementPolicy, ledger: LedgerGateway,
) -> bool:
    return await policy.is_settleable(swap_id, ledger)


async def scan_settleable_swaps(ledger: LedgerGateway, policy: SettlementPolicy) -> list[int]:
    """Ids of active, matched swaps the policy considers due."""
    due: list[int] = []
    for swap in await ledger.list_swaps():
        if not (swap.is_active and swap.matched):
            continue
        if await policy.is_settleable(swap.id, ledger, swap=swap):
            due.append(swap.id)
    return due


__all__ = [
    "IntervalSettlementPolicy",
    "LedgerSettlementPolicy",
    "MAX_RATE_DEVIATION_BPS",
    "MIN_HEALTH_FACTOR",
    "SettlementPolicy",
    "check_loan_health",
    "check_match_compatibility",
    "check_rate_deviation",
    "check_settlement_eligibility",
    "find_matching_swap",
    "make_settlement_policy",
    "scan_settleable_swaps",
]
