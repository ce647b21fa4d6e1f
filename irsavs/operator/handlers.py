"""Handler registry for task types.

The dispatcher looks up one TaskHandler per task-type integer. Each
protocol variant registers its own set of handlers; adding a task type
is a new handler class plus a ``register`` call.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

import bittensor as bt

from irsavs.chain.interface import LedgerGateway, LendingPool, VariableRatePool
from irsavs.operator.models import ProtocolVariant, Task
from irsavs.operator.rules import (
    MAX_RATE_DEVIATION_BPS,
    MIN_HEALTH_FACTOR,
    LedgerSettlementPolicy,
    SettlementPolicy,
)


@dataclass
class Verdict:
    """Result of validating one task."""

    approved: bool
    response_payload: bytes | None = None
    reason: str = ""
    evidence: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def reject(cls, reason: str, **evidence: Any) -> "Verdict":
        return cls(approved=False, reason=reason, evidence=evidence)


@dataclass
class OperatorContext:
    """Everything a handler needs, built once at startup and injected.

    Holds chain gateways and rule parameters; no per-task state.
    """

    ledger: LedgerGateway
    variable_pool: VariableRatePool
    fixed_pool: LendingPool
    variant: ProtocolVariant = ProtocolVariant.MATCH
    settlement_policy: SettlementPolicy = field(default_factory=LedgerSettlementPolicy)
    min_health_factor: int = MIN_HEALTH_FACTOR
    max_rate_deviation_bps: int = MAX_RATE_DEVIATION_BPS
    verify_loans: bool = True

    def pool_for(self, is_paying_fixed: bool) -> LendingPool:
        """Fixed payers hedge a variable loan; variable payers a fixed one."""
        return self.variable_pool if is_paying_fixed else self.fixed_pool


@runtime_checkable
class TaskHandler(Protocol):
    """Interface for task-type handlers."""

    name: str
    task_type: int

    def decode(self, payload: bytes) -> Any:
        """Decode the task payload. Raises MalformedPayloadError."""
        ...

    async def validate(self, request: Any, task: Task, context: OperatorContext) -> Verdict:
        """Apply the validation rules and build the response payload."""
        ...


class HandlerRegistry:
    """Maps task-type integers to handlers."""

    def __init__(self) -> None:
        self._handlers: dict[int, TaskHandler] = {}

    def register(self, handler: TaskHandler) -> None:
        """Register a handler for its task type."""
        task_type = int(handler.task_type)
        if task_type in self._handlers:
            raise ValueError(
                f"Task type already registered: {task_type} ({self._handlers[task_type].name})"
            )
        self._handlers[task_type] = handler
        bt.logging.info({"handler_registered": handler.name, "task_type": task_type})

    def get(self, task_type: int) -> TaskHandler | None:
        return self._handlers.get(int(task_type))

    @property
    def handlers(self) -> list[str]:
        """Registered handler names in task-type order."""
        return [self._handlers[t].name for t in sorted(self._handlers)]


def build_registry(variant: ProtocolVariant) -> HandlerRegistry:
    """Register the handler set of a protocol variant."""
    from irsavs.operator.plugins.match_validation import MatchValidationHandler
    from irsavs.operator.plugins.settlement import RateSettlementHandler, SettlementHandler
    from irsavs.operator.plugins.swap_validation import SwapValidationHandler

    registry = HandlerRegistry()
    if variant is ProtocolVariant.MATCH:
        registry.register(SwapValidationHandler())
        registry.register(MatchValidationHandler())
        registry.register(SettlementHandler())
    else:
        registry.register(SwapValidationHandler(include_match=True))
        registry.register(RateSettlementHandler())
    return registry


__all__ = [
    "HandlerRegistry",
    "OperatorContext",
    "TaskHandler",
    "Verdict",
    "build_registry",
]
