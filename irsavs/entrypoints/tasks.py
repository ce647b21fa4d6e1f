"""Task-creation tooling for a local IRS AVS deployment.

Submits swap, match and settlement tasks to the service manager, lists
ledger swaps and sets up demo lending positions.

Usage:
    irs-tasks swap --notional 10 --rate 600 --duration-days 365 --margin 1
    irs-tasks swap --wallet 2 --pay-variable
    irs-tasks match 0 1
    irs-tasks settle            # every due swap
    irs-tasks settle 0 1
    irs-tasks list
    irs-tasks lend
"""

from __future__ import annotations

import argparse
import asyncio
import os
import sys
from collections.abc import Callable
from typing import Any

import bittensor as bt
from dotenv import load_dotenv
from web3 import Web3

from irsavs.base.config import OperatorSettings
from irsavs.base.errors import IrsOperatorError
from irsavs.operator.codec import encode_payload
from irsavs.operator.models import (
    MatchRequest,
    ProtocolVariant,
    SwapRequest,
    TaskType,
)
from irsavs.operator.rates import SECONDS_PER_DAY, format_bps, format_duration, format_ether
from irsavs.operator.rules import make_settlement_policy, scan_settleable_swaps
from irsavs.operator.scheduler import SettlementScheduler


class TaskToolParser(argparse.ArgumentParser):
    """Argument parser that exits with status 1 on usage errors."""

    def error(self, message: str) -> None:  # type: ignore[override]
        self.print_usage(sys.stderr)
        self.exit(1, f"{self.prog}: error: {message}\n")


def build_parser() -> TaskToolParser:
    parser = TaskToolParser(prog="irs-tasks", description="IRS AVS task tooling")
    sub = parser.add_subparsers(dest="command", required=True, parser_class=TaskToolParser)

    swap = sub.add_parser("swap", help="submit a swap-validation task")
    swap.add_argument("--notional", type=float, default=10.0, help="Notional in ETH")
    swap.add_argument("--rate", type=int, default=600, help="Fixed rate in basis points")
    swap.add_argument("--duration-days", type=int, default=365)
    swap.add_argument("--margin", type=float, default=1.0, help="Margin in ETH, sent as value")
    side = swap.add_mutually_exclusive_group()
    side.add_argument("--pay-fixed", dest="pay_fixed", action="store_true", default=None)
    side.add_argument("--pay-variable", dest="pay_fixed", action="store_false")
    swap.add_argument("--wallet", type=int, choices=[1, 2], default=1)

    match = sub.add_parser("match", help="submit a match-validation task")
    match.add_argument("swap1", type=int)
    match.add_argument("swap2", type=int)
    match.add_argument("--wallet", type=int, choices=[1, 2], default=1)

    settle = sub.add_parser("settle", help="submit a settlement task")
    settle.add_argument("swap_ids", type=int, nargs="*")
    settle.add_argument("--wallet", type=int, choices=[1, 2], default=1)

    sub.add_parser("list", help="print every swap on the ledger")

    lend = sub.add_parser("lend", help="open the demo lending positions")
    lend.add_argument("--collateral", type=float, default=20.0, help="Collateral in ETH per wallet")
    lend.add_argument("--borrow", type=float, default=10.0, help="Borrowed amount in ETH per wallet")
    lend.add_argument("--duration-days", type=int, default=365)

    return parser


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


async def cmd_swap(args: Any, settings: OperatorSettings, clients_for: Callable[[int], Any]) -> int:
    clients = clients_for(args.wallet)
    # wallet 2 is the variable payer unless told otherwise
    pay_fixed = args.pay_fixed if args.pay_fixed is not None else args.wallet == 1
    margin = Web3.to_wei(args.margin, "ether")
    request = SwapRequest(
        user=clients.account.address,
        notional_amount=Web3.to_wei(args.notional, "ether"),
        fixed_rate=args.rate,
        is_paying_fixed=pay_fixed,
        duration=args.duration_days * SECONDS_PER_DAY,
        margin=margin,
    )
    tx_hash = await clients.ledger.create_new_task(
        int(TaskType.SWAP_VALIDATION), encode_payload(request), value=margin,
    )
    print(f"Swap task created: {tx_hash}")
    print(f"  user:      {request.user}")
    print(f"  notional:  {format_ether(request.notional_amount)}")
    print(f"  rate:      {format_bps(request.fixed_rate)}")
    print(f"  side:      {'pay fixed' if pay_fixed else 'pay variable'}")
    print(f"  duration:  {format_duration(request.duration)}")
    print(f"  margin:    {format_ether(margin)}")
    return 0


async def cmd_match(args: Any, settings: OperatorSettings, clients_for: Callable[[int], Any]) -> int:
    if settings.variant is not ProtocolVariant.MATCH:
        print("match tasks exist only in the match protocol variant", file=sys.stderr)
        return 1
    clients = clients_for(args.wallet)
    request = MatchRequest(swap1_id=args.swap1, swap2_id=args.swap2, matcher=clients.account.address)
    tx_hash = await clients.ledger.create_new_task(int(TaskType.MATCH_VALIDATION), encode_payload(request))
    print(f"Match task created for swaps {args.swap1} and {args.swap2}: {tx_hash}")
    return 0


async def cmd_settle(args: Any, settings: OperatorSettings, clients_for: Callable[[int], Any]) -> int:
    clients = clients_for(args.wallet)
    policy = make_settlement_policy(settings.settlement_policy, settings.settlement_interval)
    swap_ids = list(args.swap_ids)
    if not swap_ids:
        swap_ids = await scan_settleable_swaps(clients.ledger, policy)
        if not swap_ids:
            print("No swaps are due for settlement.")
            return 0

    scheduler = SettlementScheduler(
        ledger=clients.ledger,
        variable_pool=clients.variable_pool,
        policy=policy,
        settler=clients.account.address,
        variant=settings.variant,
    )
    task_type, payload = await scheduler.build_task(swap_ids)
    tx_hash = await clients.ledger.create_new_task(task_type, payload)
    print(f"Settlement task created for swaps {swap_ids}: {tx_hash}")
    return 0


async def cmd_list(args: Any, settings: OperatorSettings, clients_for: Callable[[int], Any]) -> int:
    swaps = await clients_for(1).ledger.list_swaps()
    if not swaps:
        print("No swaps on the ledger.")
        return 0

    print(f"{'ID':>4}  {'Owner':<42}  {'Notional':>12}  {'Rate':>7}  {'Side':<8}  {'Duration':>10}  {'Matched':>7}  {'Active':>6}")
    print(f"{'-' * 4}  {'-' * 42}  {'-' * 12}  {'-' * 7}  {'-' * 8}  {'-' * 10}  {'-' * 7}  {'-' * 6}")
    for swap in swaps:
        matched = str(swap.matched_with) if swap.matched else "-"
        print(
            f"{swap.id:>4}  {swap.owner:<42}  {format_ether(swap.notional_amount):>12}  "
            f"{format_bps(swap.fixed_rate):>7}  {'fixed' if swap.is_paying_fixed else 'variable':<8}  "
            f"{format_duration(swap.duration):>10}  {matched:>7}  {'yes' if swap.is_active else 'no':>6}"
        )
    return 0


async def _print_balances(label: str, wallets: list[Any]) -> None:
    print(f"Balances {label}")
    for clients in wallets:
        balance = await clients.balance_of(clients.account.address)
        print(f"  {clients.account.address}:  {format_ether(balance)}")


async def cmd_lend(args: Any, settings: OperatorSettings, clients_for: Callable[[int], Any]) -> int:
    collateral = Web3.to_wei(args.collateral, "ether")
    amount = Web3.to_wei(args.borrow, "ether")
    first, second = clients_for(1), clients_for(2)
    await _print_balances("before setup", [first, second])

    # Wallet 1 pays fixed, so it holds the variable-rate loan
    await first.variable_pool.deposit(collateral)
    await first.variable_pool.borrow(amount)
    data = await first.variable_pool.get_user_account_data(first.account.address)
    print(f"Variable loan for {first.account.address}")
    print(f"  collateral:     {format_ether(data.total_collateral)}")
    print(f"  debt:           {format_ether(data.total_debt)}")
    print(f"  health factor:  {data.health_factor}%")

    await second.fixed_pool.deposit_collateral(collateral)
    await second.fixed_pool.open_fixed_position(amount, args.duration_days * SECONDS_PER_DAY)
    position = await second.fixed_pool.get_user_fixed_rate_position(second.account.address)
    print(f"Fixed loan for {second.account.address}")
    print(f"  principal:      {format_ether(position['principal'])}")
    print(f"  fixed rate:     {format_bps(position['fixed_rate'])}")
    print(f"  maturity:       {position['maturity']}")
    print(f"  health factor:  {position['health_factor']}%")

    await _print_balances("after setup", [first, second])
    return 0


_HANDLERS = {
    "swap": cmd_swap,
    "match": cmd_match,
    "settle": cmd_settle,
    "list": cmd_list,
    "lend": cmd_lend,
}


async def run_command(args: Any, settings: OperatorSettings, clients_for: Callable[[int], Any]) -> int:
    """Run one command. Returns the process exit code."""
    return await _HANDLERS[args.command](args, settings, clients_for)


def _chain_clients_factory(settings: OperatorSettings) -> Callable[[int], Any]:
    from eth_account import Account

    from irsavs.base.config import load_deployment
    from irsavs.base.errors import ConfigurationError
    from irsavs.chain.web3_client import ChainClients

    deployment = load_deployment(settings)
    cache: dict[int, ChainClients] = {}

    def clients_for(wallet: int) -> ChainClients:
        if wallet not in cache:
            key = settings.private_key if wallet == 1 else settings.private_key_2
            if key is None:
                raise ConfigurationError("PRIVATE_KEY_2 is required for wallet 2")
            cache[wallet] = ChainClients(settings, deployment, Account.from_key(key.get_secret_value()))
        return cache[wallet]

    return clients_for


def main(argv: list[str] | None = None) -> None:
    if os.environ.get("IRS_TEST_MODE") != "true":
        load_dotenv()

    parser = build_parser()
    args = parser.parse_args(argv)

    from irsavs.base.config import load_settings

    try:
        settings = load_settings()
        clients_for = _chain_clients_factory(settings)
        code = asyncio.run(run_command(args, settings, clients_for))
    except IrsOperatorError as e:
        print(f"error: {e}", file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        bt.logging.error({"irs_tasks": {"command": args.command, "error": str(e)}})
        print(f"error: {e}", file=sys.stderr)
        sys.exit(1)
    sys.exit(code)


if __name__ == "__main__":
    main()
