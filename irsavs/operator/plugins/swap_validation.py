"""Swap validation - checks a user's swap request before the ledger records it.

The requester must hold a loan that the swap hedges: paying fixed means
hedging a variable-rate loan, so the variable pool is checked, and vice
versa. In the rate protocol the response also names the first compatible
counter-swap found on the ledger.
"""

from __future__ import annotations

import bittensor as bt

from irsavs.operator.codec import decode_swap_request, encode_swap_response
from irsavs.operator.handlers import OperatorContext, Verdict
from irsavs.operator.models import NO_MATCH, RateTaskType, SwapRequest, Task, TaskType
from irsavs.operator.rates import format_bps, format_duration, format_ether
from irsavs.operator.rules import check_loan_health, find_matching_swap


class SwapValidationHandler:
    """Validates swap requests against the requester's lending position."""

    name = "swap_validation"

    def __init__(self, include_match: bool = False):
        self.include_match = include_match
        self.task_type = (
            RateTaskType.SWAP_VALIDATION if include_match else TaskType.SWAP_VALIDATION
        )

    def decode(self, payload: bytes) -> SwapRequest:
        return decode_swap_request(payload)

    async def validate(self, request: SwapRequest, task: Task, context: OperatorContext) -> Verdict:
        bt.logging.info({
            "swap_validation": {
                "user": request.user,
                "notional": format_ether(request.notional_amount),
                "fixed_rate": format_bps(request.fixed_rate),
                "is_paying_fixed": request.is_paying_fixed,
                "duration": format_duration(request.duration),
                "margin": format_ether(request.margin) if request.margin is not None else None,
            }
        })

        if context.verify_loans:
            pool = context.pool_for(request.is_paying_fixed)
            healthy = await check_loan_health(
                request.user, pool, request.notional_amount, context.min_health_factor,
            )
            if not healthy:
                return Verdict.reject("invalid loan position", user=request.user, pool=pool.address)

        if not self.include_match:
            return Verdict(approved=True, response_payload=task.payload)

        match = find_matching_swap(request, await context.ledger.list_swaps())
        matched_id = match.id if match is not None else NO_MATCH
        bt.logging.info({
            "swap_validation": {"matched_swap_id": match.id if match is not None else None}
        })
        return Verdict(
            approved=True,
            response_payload=encode_swap_response(request, matched_id),
            evidence={"matched_swap_id": matched_id},
        )


__all__ = ["SwapValidationHandler"]
