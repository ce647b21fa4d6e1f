"""Settlement handlers - per-swap settleability at the current variable rate.

The plain settlement task always gets a response listing which swaps are
due, together with the pool's reserve rate as the pool reports it (ray). The rate-and-settlement task first attests the proposed variable
rate; a proposal outside the deviation bound is not answered.
"""

from __future__ import annotations

import asyncio

import bittensor as bt

from irsavs.operator.codec import (
    decode_rate_settlement_request,
    decode_settlement_request,
    encode_rate_settlement_response,
    encode_settlement_response,
)
from irsavs.operator.handlers import OperatorContext, Verdict
from irsavs.operator.models import (
    RateSettlementRequest,
    RateSettlementResponse,
    RateTaskType,
    SettlementRequest,
    SettlementResponse,
    Task,
    TaskType,
)
from irsavs.operator.rates import format_bps, ray_to_bps
from irsavs.operator.rules import check_rate_deviation


async def _settleable(swap_ids: list[int], context: OperatorContext) -> list[bool]:
    policy = context.settlement_policy
    return list(await asyncio.gather(
        *(policy.is_settleable(swap_id, context.ledger) for swap_id in swap_ids)
    ))


class SettlementHandler:
    """Settlement task of the three-type protocol."""

    name = "settlement"
    task_type = TaskType.SETTLEMENT

    def decode(self, payload: bytes) -> SettlementRequest:
        return decode_settlement_request(payload)

    async def validate(self, request: SettlementRequest, task: Task, context: OperatorContext) -> Verdict:
        reserve_rate = await context.variable_pool.get_reserve_rate_ray()
        results = await _settleable(request.swap_ids, context)

        bt.logging.info({
            "settlement": {
                "swap_ids": request.swap_ids,
                "settler": request.settler,
                "current_rate": format_bps(ray_to_bps(reserve_rate)),
                "results": results,
            }
        })

        response = SettlementResponse(
            swap_ids=request.swap_ids,
            current_rate=reserve_rate,
            results=results,
            settler=request.settler,
        )
        return Verdict(
            approved=True,
            response_payload=encode_settlement_response(response),
            evidence={"settleable": sum(results)},
        )


class RateSettlementHandler:
    """Rate-and-settlement task of the two-type protocol."""

    name = "rate_and_settlement"
    task_type = RateTaskType.RATE_AND_SETTLEMENT

    def decode(self, payload: bytes) -> RateSettlementRequest:
        return decode_rate_settlement_request(payload)

    async def validate(self, request: RateSettlementRequest, task: Task, context: OperatorContext) -> Verdict:
        current_rate = await context.variable_pool.get_current_rate()
        if not check_rate_deviation(request.proposed_rate, current_rate, context.max_rate_deviation_bps):
            return Verdict.reject(
                "proposed rate outside deviation bound",
                proposed_rate=request.proposed_rate,
                current_rate=current_rate,
                max_deviation=context.max_rate_deviation_bps,
            )

        results = await _settleable(request.swap_ids, context)
        bt.logging.info({
            "rate_and_settlement": {
                "swap_ids": request.swap_ids,
                "proposed_rate": format_bps(request.proposed_rate),
                "current_rate": format_bps(current_rate),
                "results": results,
            }
        })

        response = RateSettlementResponse(
            swap_ids=request.swap_ids,
            proposed_rate=request.proposed_rate,
            results=results,
        )
        return Verdict(
            approved=True,
            response_payload=encode_rate_settlement_response(response),
            evidence={"settleable": sum(results)},
        )


__all__ = ["RateSettlementHandler", "SettlementHandler"]
