"""Match validation - confirms two ledger swaps can be paired."""

from __future__ import annotations

import bittensor as bt

from irsavs.operator.codec import decode_match_request, encode_match_response
from irsavs.operator.handlers import OperatorContext, Verdict
from irsavs.operator.models import MatchRequest, MatchResponse, Task, TaskType
from irsavs.operator.rules import check_match_compatibility


class MatchValidationHandler:
    """Checks both swaps are active, unmatched and mirror each other."""

    name = "match_validation"
    task_type = TaskType.MATCH_VALIDATION

    def decode(self, payload: bytes) -> MatchRequest:
        return decode_match_request(payload)

    async def validate(self, request: MatchRequest, task: Task, context: OperatorContext) -> Verdict:
        swap1 = await context.ledger.get_swap(request.swap1_id)
        swap2 = await context.ledger.get_swap(request.swap2_id)

        bt.logging.info({
            "match_validation": {
                "swap1_id": request.swap1_id,
                "swap2_id": request.swap2_id,
                "matcher": request.matcher,
            }
        })

        if not check_match_compatibility(swap1, swap2):
            return Verdict.reject(
                "swaps are not compatible",
                swap1_id=request.swap1_id,
                swap2_id=request.swap2_id,
            )

        response = MatchResponse(
            swap1_id=request.swap1_id,
            swap2_id=request.swap2_id,
            is_valid=True,
            matcher=request.matcher,
        )
        return Verdict(approved=True, response_payload=encode_match_response(response))


__all__ = ["MatchValidationHandler"]
