"""Settlement scheduler - the operator as a task producer.

Periodically scans the ledger for matched, active swaps that are due and
creates a settlement task for them. Duplicate tasks for the same swaps are
left to the ledger to reject.
"""

from __future__ import annotations

import asyncio

import bittensor as bt

from irsavs.chain.interface import LedgerGateway, VariableRatePool
from irsavs.operator.codec import encode_payload
from irsavs.operator.models import (
    ProtocolVariant,
    RateSettlementRequest,
    RateTaskType,
    SettlementRequest,
    TaskType,
)
from irsavs.operator.rules import SettlementPolicy, scan_settleable_swaps


class SettlementScheduler:
    """Creates settlement tasks for due swaps every ``interval`` seconds."""

    def __init__(
        self,
        ledger: LedgerGateway,
        variable_pool: VariableRatePool,
        policy: SettlementPolicy,
        settler: str,
        variant: ProtocolVariant = ProtocolVariant.MATCH,
        interval: float = 24.0,
        max_consecutive_errors: int = 10,
    ):
        self.ledger = ledger
        self.variable_pool = variable_pool
        self.policy = policy
        self.settler = settler
        self.variant = variant
        self.interval = interval
        self.max_consecutive_errors = max_consecutive_errors
        self._running = False

    async def build_task(self, swap_ids: list[int]) -> tuple[int, bytes]:
        """Task type and payload for settling ``swap_ids``."""
        if self.variant is ProtocolVariant.MATCH:
            request = SettlementRequest(swap_ids=swap_ids, settler=self.settler)
            return int(TaskType.SETTLEMENT), encode_payload(request)
        current_rate = await self.variable_pool.get_current_rate()
        rate_request = RateSettlementRequest(swap_ids=swap_ids, proposed_rate=current_rate)
        return int(RateTaskType.RATE_AND_SETTLEMENT), encode_payload(rate_request)

    async def tick(self) -> str | None:
        """One scan. Returns the created task's tx hash, or None if nothing is due."""
        due = await scan_settleable_swaps(self.ledger, self.policy)
        if not due:
            bt.logging.debug({"settlement_scheduler": {"due": 0}})
            return None

        task_type, payload = await self.build_task(due)
        tx_hash = await self.ledger.create_new_task(task_type, payload)
        bt.logging.info({
            "settlement_scheduler": {
                "swap_ids": due,
                "task_type": self.variant.task_type_name(task_type),
                "tx_hash": tx_hash,
            }
        })
        return tx_hash

    async def run(self) -> None:
        self._running = True
        consecutive_errors = 0

        while self._running:
            try:
                await self.tick()
                consecutive_errors = 0
            except asyncio.CancelledError:
                break
            except Exception as e:
                consecutive_errors += 1
                bt.logging.error({"settlement_scheduler_error": str(e), "consecutive": consecutive_errors})
                if consecutive_errors >= self.max_consecutive_errors:
                    bt.logging.error({"settlement_scheduler": "too_many_errors, stopping"})
                    break

            try:
                await asyncio.sleep(self.interval)
            except asyncio.CancelledError:
                break

        self._running = False
        bt.logging.info({"settlement_scheduler": "stopped"})

    def stop(self) -> None:
        self._running = False


__all__ = ["SettlementScheduler"]
