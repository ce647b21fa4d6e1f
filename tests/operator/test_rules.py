"""Tests for the validation rules."""

import itertools

import pytest

from irsavs.operator.models import AccountData, SwapRequest
from irsavs.operator.rates import RAY, bps_to_ray, format_bps, format_duration, ray_to_bps
from irsavs.operator.rules import (
    IntervalSettlementPolicy,
    LedgerSettlementPolicy,
    check_loan_health,
    check_match_compatibility,
    check_rate_deviation,
    check_settlement_eligibility,
    find_matching_swap,
    make_settlement_policy,
    scan_settleable_swaps,
)

from doubles import ONE_ETH, YEAR, FakeLedger, FakePool, make_swap

USER = "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"


class TestMatchCompatibility:

    def test_mirror_swaps_are_compatible(self):
        a = make_swap(0, notional_amount=10 * ONE_ETH, fixed_rate=600, is_paying_fixed=True, duration=YEAR)
        b = make_swap(1, notional_amount=10 * ONE_ETH, fixed_rate=600, is_paying_fixed=False)
        assert check_match_compatibility(a, b)
        assert check_match_compatibility(b, a)

    @pytest.mark.parametrize(
        "overrides",
        [
            {"notional_amount": 5 * ONE_ETH},
            {"fixed_rate": 601},
            {"is_paying_fixed": True},
            {"matched": True},
            {"is_active": False},
        ],
    )
    def test_any_difference_breaks_compatibility(self, overrides):
        a = make_swap(0, is_paying_fixed=True)
        b = make_swap(1, **{"is_paying_fixed": False, **overrides})
        assert not check_match_compatibility(a, b)

    def test_matches_exact_predicate_over_grid(self):
        options = list(itertools.product([5, 10], [600, 700], [True, False], [True, False], [True, False]))
        for left, right in itertools.product(options[:8], options):
            a = make_swap(0, notional_amount=left[0], fixed_rate=left[1], is_paying_fixed=left[2],
                          matched=left[3], is_active=left[4])
            b = make_swap(1, notional_amount=right[0], fixed_rate=right[1], is_paying_fixed=right[2],
                          matched=right[3], is_active=right[4])
            expected = (
                a.notional_amount == b.notional_amount
                and a.fixed_rate == b.fixed_rate
                and a.is_paying_fixed != b.is_paying_fixed
                and not a.matched and not b.matched
                and a.is_active and b.is_active
            )
            assert check_match_compatibility(a, b) is expected


class TestRateDeviation:

    def test_outside_bound(self):
        assert check_rate_deviation(500, 750, 200) is False

    def test_on_bound(self):
        assert check_rate_deviation(550, 750, 200) is True

    def test_symmetric(self):
        for a, b in itertools.product([0, 300, 500, 750, 1000], repeat=2):
            assert check_rate_deviation(a, b) == check_rate_deviation(b, a)


class TestFindMatchingSwap:

    def _request(self, **overrides):
        values = dict(user=USER, notional_amount=10 * ONE_ETH, fixed_rate=600,
                      is_paying_fixed=True, duration=YEAR, margin=ONE_ETH)
        values.update(overrides)
        return SwapRequest(**values)

    def test_no_unmatched_swaps_means_no_match(self):
        swaps = [make_swap(i, matched=True, is_paying_fixed=bool(i % 2)) for i in range(4)]
        assert find_matching_swap(self._request(), swaps) is None

    def test_empty_ledger(self):
        assert find_matching_swap(self._request(), []) is None

    def test_first_by_id(self):
        swaps = [
            make_swap(4, is_paying_fixed=False),
            make_swap(2, is_paying_fixed=False),
            make_swap(1, is_paying_fixed=True),
        ]
        assert find_matching_swap(self._request(), swaps).id == 2

    def test_skips_inactive_and_other_notional(self):
        swaps = [
            make_swap(0, is_paying_fixed=False, is_active=False),
            make_swap(1, is_paying_fixed=False, notional_amount=ONE_ETH),
            make_swap(2, is_paying_fixed=False, fixed_rate=900),
        ]
        # rate is not part of the search
        assert find_matching_swap(self._request(), swaps).id == 2


class TestLoanHealth:

    @pytest.mark.asyncio
    async def test_healthy_position(self):
        pool = FakePool({USER: AccountData(total_collateral=20 * ONE_ETH, total_debt=10 * ONE_ETH, health_factor=200)})
        assert await check_loan_health(USER, pool, 10 * ONE_ETH, 150)

    @pytest.mark.asyncio
    async def test_debt_below_notional(self):
        pool = FakePool({USER: AccountData(total_debt=5 * ONE_ETH, health_factor=300)})
        assert not await check_loan_health(USER, pool, 10 * ONE_ETH, 150)

    @pytest.mark.asyncio
    async def test_health_factor_below_minimum(self):
        pool = FakePool({USER: AccountData(total_debt=10 * ONE_ETH, health_factor=149)})
        assert not await check_loan_health(USER, pool, 10 * ONE_ETH, 150)

    @pytest.mark.asyncio
    async def test_query_failure_fails_closed(self):
        pool = FakePool({USER: AccountData(total_debt=10 * ONE_ETH, health_factor=500)})
        pool.fail = True
        assert not await check_loan_health(USER, pool, 10 * ONE_ETH, 150)


class TestSettlementPolicies:

    @pytest.mark.asyncio
    async def test_ledger_policy_defers_to_ledger(self):
        ledger = FakeLedger([make_swap(0, matched=True)], settleable={0})
        policy = LedgerSettlementPolicy()
        assert await check_settlement_eligibility(0, policy, ledger)
        assert not await check_settlement_eligibility(1, policy, ledger)

    @pytest.mark.asyncio
    async def test_ledger_policy_fails_closed(self):
        ledger = FakeLedger([make_swap(0, matched=True)], settleable={0})
        ledger.fail_can_be_settled = True
        assert not await LedgerSettlementPolicy().is_settleable(0, ledger)

    @pytest.mark.asyncio
    async def test_interval_policy(self):
        ledger = FakeLedger([
            make_swap(0, matched=True, last_settlement=1_000),
            make_swap(1, matched=True, last_settlement=50_000),
            make_swap(2, matched=False, last_settlement=0),
        ])
        policy = IntervalSettlementPolicy(86400, clock=lambda: 90_000)
        assert await policy.is_settleable(0, ledger)
        assert not await policy.is_settleable(1, ledger)
        assert not await policy.is_settleable(2, ledger)

    @pytest.mark.asyncio
    async def test_interval_policy_boundary_is_inclusive(self):
        ledger = FakeLedger([make_swap(0, matched=True, last_settlement=3_600)])
        assert await IntervalSettlementPolicy(86400, clock=lambda: 90_000).is_settleable(0, ledger)
        assert not await IntervalSettlementPolicy(86400, clock=lambda: 89_999).is_settleable(0, ledger)

    def test_factory(self):
        assert isinstance(make_settlement_policy("ledger"), LedgerSettlementPolicy)
        interval = make_settlement_policy("interval", 3600)
        assert isinstance(interval, IntervalSettlementPolicy)
        assert interval.interval_seconds == 3600
        with pytest.raises(ValueError):
            make_settlement_policy("sometimes")

    @pytest.mark.asyncio
    async def test_scan_excludes_inactive_and_unmatched(self):
        swaps = [
            make_swap(0, matched=True),
            make_swap(1, matched=False),
            make_swap(2, matched=True, is_active=False),
            make_swap(3, matched=True),
        ]
        # the ledger claims everything is settleable
        ledger = FakeLedger(swaps, settleable={0, 1, 2, 3})
        assert await scan_settleable_swaps(ledger, LedgerSettlementPolicy()) == [0, 3]

    @pytest.mark.asyncio
    async def test_scan_with_interval_policy(self):
        swaps = [
            make_swap(0, matched=True, last_settlement=3_600),
            make_swap(1, matched=True, last_settlement=50_000),
            make_swap(2, matched=False, last_settlement=0),
            make_swap(3, matched=True, is_active=False, last_settlement=0),
            make_swap(4, matched=True, last_settlement=0),
        ]
        # the ledger predicate is never consulted
        ledger = FakeLedger(swaps, settleable=set())
        policy = IntervalSettlementPolicy(86400, clock=lambda: 90_000)
        assert await scan_settleable_swaps(ledger, policy) == [0, 4]


class TestRates:

    def test_ray_to_bps(self):
        assert ray_to_bps(RAY) == 10_000
        assert ray_to_bps(RAY * 6 // 100) == 600
        assert ray_to_bps(bps_to_ray(750)) == 750

    def test_ray_to_bps_rounds_down(self):
        assert ray_to_bps(bps_to_ray(600) - 1) == 599

    def test_formatting(self):
        assert format_bps(600) == "6.00%"
        assert format_bps(5) == "0.05%"
        assert format_duration(YEAR) == "365 days"
