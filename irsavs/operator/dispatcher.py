"""Task dispatcher: one decode -> validate -> sign -> submit cycle per task.

Every per-task failure ends the cycle with an outcome instead of an
exception, so a bad task never takes down the consumer loop. Nothing is
retried: a task that is not answered here stays unanswered.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Union

import bittensor as bt

from irsavs.base.errors import MalformedPayloadError
from irsavs.operator.handlers import HandlerRegistry, OperatorContext
from irsavs.operator.models import TaskNotification
from irsavs.operator.signer import sign_task_response


class DispatchState(str, Enum):
    IDLE = "idle"
    DECODING = "decoding"
    VALIDATING = "validating"
    SIGNING = "signing"
    SUBMITTING = "submitting"


@dataclass(frozen=True)
class Answered:
    """Response signed and accepted on chain."""

    task_index: int
    signature: bytes
    tx_hash: str
    payload: bytes


@dataclass(frozen=True)
class Rejected:
    """Validation said no (or could not complete). No response was sent."""

    task_index: int
    reason: str


@dataclass(frozen=True)
class DecodeFailed:
    """Payload or task type could not be decoded. No response was sent."""

    task_index: int
    error: str


@dataclass(frozen=True)
class SubmitFailed:
    """Signed response could not be submitted or reverted. Not retried."""

    task_index: int
    error: str


TaskOutcome = Union[Answered, Rejected, DecodeFailed, SubmitFailed]


class TaskDispatcher:
    """Runs the response protocol for individual task notifications.

    Holds only read-only collaborators; concurrent ``process`` calls do not
    share state.
    """

    def __init__(self, registry: HandlerRegistry, context: OperatorContext, account: Any):
        self.registry = registry
        self.context = context
        self.account = account

    def _log_state(self, notification: TaskNotification, state: DispatchState, **extra: Any) -> None:
        bt.logging.debug({
            "task_dispatch": {
                "task_index": notification.task_index,
                "state": state.value,
                **extra,
            }
        })

    async def process(self, notification: TaskNotification) -> TaskOutcome:
        """Process one task. Never raises for per-task failures."""
        task = notification.task
        index = notification.task_index
        type_name = self.context.variant.task_type_name(task.task_type)

        bt.logging.info({
            "task_received": {
                "task_index": index,
                "type": type_name,
                "task_created_block": task.task_created_block,
                "payload": "0x" + task.payload.hex(),
            }
        })

        # -- Decoding --
        self._log_state(notification, DispatchState.DECODING)
        handler = self.registry.get(task.task_type)
        if handler is None:
            error = f"unknown task type {task.task_type}"
            bt.logging.error({"task_decode_failed": {"task_index": index, "error": error}})
            return DecodeFailed(task_index=index, error=error)
        try:
            request = handler.decode(task.payload)
        except MalformedPayloadError as e:
            bt.logging.error({"task_decode_failed": {"task_index": index, "error": str(e)}})
            return DecodeFailed(task_index=index, error=str(e))

        # -- Validating --
        self._log_state(notification, DispatchState.VALIDATING, handler=handler.name)
        try:
            verdict = await handler.validate(request, task, self.context)
        except Exception as e:
            bt.logging.error({
                "task_validation_error": {"task_index": index, "handler": handler.name, "error": str(e)}
            })
            return Rejected(task_index=index, reason=f"validation error: {e}")

        if not verdict.approved:
            bt.logging.warning({
                "task_rejected": {"task_index": index, "reason": verdict.reason, **verdict.evidence}
            })
            return Rejected(task_index=index, reason=verdict.reason)

        # -- Signing --
        self._log_state(notification, DispatchState.SIGNING)
        try:
            signed = sign_task_response(task, index, self.account, payload=verdict.response_payload)
        except Exception as e:
            bt.logging.error({"task_signing_error": {"task_index": index, "error": str(e)}})
            return Rejected(task_index=index, reason=f"signing error: {e}")

        # -- Submitting --
        self._log_state(notification, DispatchState.SUBMITTING)
        response_task = task.model_copy(update={"payload": signed.payload})
        try:
            tx_hash = await self.context.ledger.respond_to_task(response_task, index, signed.signature)
        except Exception as e:
            bt.logging.error({"task_submit_failed": {"task_index": index, "error": str(e)}})
            return SubmitFailed(task_index=index, error=str(e))

        bt.logging.success({
            "task_answered": {"task_index": index, "type": type_name, "tx_hash": tx_hash}
        })
        self._log_state(notification, DispatchState.IDLE)
        return Answered(
            task_index=index,
            signature=signed.signature,
            tx_hash=tx_hash,
            payload=signed.payload,
        )


__all__ = [
    "Answered",
    "DecodeFailed",
    "DispatchState",
    "Rejected",
    "SubmitFailed",
    "TaskDispatcher",
    "TaskOutcome",
]
