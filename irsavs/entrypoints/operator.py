"""Operator entrypoint.

Long-running listener: registers the operator with the restaking core and
the AVS, then validates, signs and answers every task the service manager
emits until SIGINT/SIGTERM.
"""

import asyncio
import os
import signal
import sys
from typing import Any

import bittensor as bt
from dotenv import load_dotenv

from irsavs.base.config import OperatorSettings
from irsavs.base.errors import ConfigurationError
from irsavs.chain.interface import LedgerGateway, LendingPool, VariableRatePool
from irsavs.operator.runtime import WATCHER_EXITED, OperatorRuntime

# CLI flag -> settings field
_CLI_OPTIONS: dict[str, str] = {
    "operator.variant": "variant",
    "operator.deployments_dir": "deployments_dir",
    "operator.abi_dir": "abi_dir",
    "operator.min_health_factor": "min_health_factor",
    "operator.max_rate_deviation_bps": "max_rate_deviation_bps",
    "operator.settlement_policy": "settlement_policy",
    "operator.settlement_interval": "settlement_interval",
    "operator.settlement_poll_interval": "settlement_poll_interval",
    "operator.task_poll_interval": "task_poll_interval",
    "operator.queue_size": "queue_size",
    "chain.id": "chain_id",
    "rpc_url": "rpc_url",
}


def build_parser():
    import argparse
    parser = argparse.ArgumentParser(description="IRS AVS Operator")
    bt.logging.add_args(parser)
    parser.add_argument("--rpc_url", type=str, default=None)
    parser.add_argument("--chain.id", type=int, default=None)
    parser.add_argument("--operator.variant", type=str, choices=["match", "rate"], default=None)
    parser.add_argument("--operator.deployments_dir", type=str, default=None)
    parser.add_argument("--operator.abi_dir", type=str, default=None)
    parser.add_argument("--operator.min_health_factor", type=int, default=None)
    parser.add_argument("--operator.max_rate_deviation_bps", type=int, default=None)
    parser.add_argument("--operator.settlement_policy", type=str, choices=["ledger", "interval"], default=None)
    parser.add_argument("--operator.settlement_interval", type=int, default=None)
    parser.add_argument("--operator.settlement_poll_interval", type=float, default=None)
    parser.add_argument("--operator.task_poll_interval", type=float, default=None)
    parser.add_argument("--operator.queue_size", type=int, default=None)
    parser.add_argument("--operator.skip_registration", action="store_true")
    return parser


def cli_defaults(args: Any) -> dict[str, Any]:
    """Settings values given on the command line (env still wins)."""
    values = {field: getattr(args, flag, None) for flag, field in _CLI_OPTIONS.items()}
    if getattr(args, "operator.skip_registration", False):
        values["register_on_startup"] = False
    return {k: v for k, v in values.items() if v is not None}


def build_runtime(
    settings: OperatorSettings,
    ledger: LedgerGateway,
    variable_pool: VariableRatePool,
    fixed_pool: LendingPool,
    account: Any,
) -> OperatorRuntime:
    """Wire context, handlers, dispatcher, watcher and scheduler."""
    from irsavs.operator.dispatcher import TaskDispatcher
    from irsavs.operator.handlers import OperatorContext, build_registry
    from irsavs.operator.rules import make_settlement_policy
    from irsavs.operator.scheduler import SettlementScheduler
    from irsavs.operator.watcher import TaskWatcher

    policy = make_settlement_policy(settings.settlement_policy, settings.settlement_interval)
    context = OperatorContext(
        ledger=ledger,
        variable_pool=variable_pool,
        fixed_pool=fixed_pool,
        variant=settings.variant,
        settlement_policy=policy,
        min_health_factor=settings.min_health_factor,
        max_rate_deviation_bps=settings.max_rate_deviation_bps,
        verify_loans=settings.verify_loans,
    )
    dispatcher = TaskDispatcher(build_registry(settings.variant), context, account)
    watcher = TaskWatcher(ledger, poll_interval=settings.task_poll_interval)

    scheduler = None
    if settings.settlement_poll_interval > 0:
        scheduler = SettlementScheduler(
            ledger=ledger,
            variable_pool=variable_pool,
            policy=policy,
            settler=account.address,
            variant=settings.variant,
            interval=settings.settlement_poll_interval,
        )

    return OperatorRuntime(
        watcher=watcher,
        dispatcher=dispatcher,
        scheduler=scheduler,
        queue_size=settings.queue_size,
    )


def run_until_stopped(loop: asyncio.AbstractEventLoop, runtime: OperatorRuntime) -> int:
    """Run the runtime on ``loop``. Returns the process exit code."""
    try:
        reason = loop.run_until_complete(runtime.run())
    except KeyboardInterrupt:
        bt.logging.info({"operator": "keyboard_interrupt"})
        return 0
    if reason == WATCHER_EXITED:
        bt.logging.error({"operator": "task watcher exited, shutting down with failure"})
        return 1
    return 0


def main() -> None:
    # Load .env if not in test mode
    if os.environ.get("IRS_TEST_MODE") != "true":
        load_dotenv()

    parser = build_parser()
    args = parser.parse_args()
    bt.logging.set_config(config=bt.Config(parser).logging)
    bt.logging.info({"operator": "starting"})

    from eth_account import Account

    from irsavs.base.config import load_deployment, load_settings
    from irsavs.chain.web3_client import ChainClients
    from irsavs.operator.registration import OperatorRegistrar

    try:
        settings = load_settings(defaults=cli_defaults(args))
        deployment = load_deployment(settings)
        account = Account.from_key(settings.private_key.get_secret_value())
        clients = ChainClients(settings, deployment, account)
    except ConfigurationError as e:
        bt.logging.error({"operator_config_error": str(e)})
        sys.exit(1)
    except ValueError as e:
        bt.logging.error({"operator_config_error": f"invalid private key: {e}"})
        sys.exit(1)

    bt.logging.info({
        "operator_config": {
            "operator": account.address,
            "rpc_url": settings.rpc_url,
            "chain_id": settings.chain_id,
            "service_manager": deployment.service_manager,
            "variant": settings.variant.value,
            "settlement_policy": settings.settlement_policy,
            "verify_loans": settings.verify_loans,
        }
    })

    loop = asyncio.new_event_loop()

    if settings.register_on_startup:
        try:
            registrar = OperatorRegistrar(clients.registry, account)
        except ConfigurationError as e:
            bt.logging.error({"operator_config_error": str(e)})
            loop.close()
            sys.exit(1)
        result = loop.run_until_complete(registrar.register())
        if not result and settings.require_registration:
            bt.logging.error({"operator": "registration required but failed, exiting"})
            loop.close()
            sys.exit(1)

    runtime = build_runtime(
        settings, clients.ledger, clients.variable_pool, clients.fixed_pool, account,
    )

    # Graceful shutdown
    def _signal_handler(sig, frame):
        bt.logging.info({"operator": "shutdown_signal_received"})
        runtime.stop()

    signal.signal(signal.SIGINT, _signal_handler)
    signal.signal(signal.SIGTERM, _signal_handler)

    try:
        code = run_until_stopped(loop, runtime)
    finally:
        loop.close()
        bt.logging.info({"operator": "stopped"})
    sys.exit(code)


if __name__ == "__main__":
    main()
