"""Pydantic models for swap records, tasks and task payloads.

Swap records are read-only snapshots of ledger state. Task payloads are
fixed ABI tuples; each payload model declares its tuple layout so the
codec can encode and strictly decode it.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from enum import Enum, IntEnum
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field, field_validator
from web3 import Web3


# ---------------------------------------------------------------------------
# Task types and protocol variants
# ---------------------------------------------------------------------------


class TaskType(IntEnum):
    """Task types of the three-type (swap / match / settlement) protocol."""

    SWAP_VALIDATION = 0
    MATCH_VALIDATION = 1
    SETTLEMENT = 2


class RateTaskType(IntEnum):
    """Task types of the later two-type protocol with rate attestation."""

    SWAP_VALIDATION = 0
    RATE_AND_SETTLEMENT = 1


class ProtocolVariant(str, Enum):
    """Which task protocol the deployed service manager speaks."""

    MATCH = "match"
    RATE = "rate"

    @property
    def task_types(self) -> type[IntEnum]:
        return TaskType if self is ProtocolVariant.MATCH else RateTaskType

    def task_type_name(self, value: int) -> str:
        try:
            return self.task_types(int(value)).name
        except ValueError:
            return f"UNKNOWN({value})"


NO_MATCH = 2**256 - 1
"""Matched swap id reported when no counter-swap exists."""


def _checksum(value: Any) -> str:
    if isinstance(value, (bytes, bytearray)):
        value = "0x" + bytes(value).hex()
    return Web3.to_checksum_address(value)


def _as_bytes(value: Any) -> bytes:
    if isinstance(value, str):
        text = value[2:] if value.startswith("0x") else value
        return bytes.fromhex(text)
    return bytes(value)


# ---------------------------------------------------------------------------
# Ledger records
# ---------------------------------------------------------------------------


_SWAP_CHAIN_FIELDS = (
    ("id", "id"),
    ("owner", "owner"),
    ("notional_amount", "notionalAmount"),
    ("fixed_rate", "fixedRate"),
    ("is_paying_fixed", "isPayingFixed"),
    ("duration", "duration"),
    ("margin", "margin"),
    ("matched", "matched"),
    ("matched_with", "matchedWith"),
    ("is_active", "isActive"),
    ("last_settlement", "lastSettlement"),
    ("start_time", "startTime"),
)


class Swap(BaseModel):
    """Snapshot of a ledger swap record. Fixed rate is in basis points."""

    model_config = ConfigDict(frozen=True)

    id: int
    owner: str
    notional_amount: int
    fixed_rate: int
    is_paying_fixed: bool
    duration: int
    margin: int = 0
    matched: bool = False
    matched_with: int = 0
    is_active: bool = True
    last_settlement: int = 0
    start_time: int = 0

    @field_validator("owner", mode="before")
    @classmethod
    def normalize_owner(cls, value: Any) -> str:
        return _checksum(value)

    @classmethod
    def from_chain(cls, raw: Any, swap_id: int | None = None) -> "Swap":
        """Build from a decoded struct (named mapping or positional tuple).

        Some deployments return the record without its leading id;
        ``swap_id`` fills it in.
        """
        if isinstance(raw, Mapping):
            data = {py: raw[chain] for py, chain in _SWAP_CHAIN_FIELDS if chain in raw}
            if "id" not in data and swap_id is not None:
                data["id"] = swap_id
            return cls(**data)

        values = list(raw)
        if len(values) == len(_SWAP_CHAIN_FIELDS) - 1:
            if swap_id is None:
                raise ValueError("swap record without id requires swap_id")
            values.insert(0, swap_id)
        if len(values) != len(_SWAP_CHAIN_FIELDS):
            raise ValueError(f"unexpected swap record arity: {len(values)}")
        return cls(**{py: v for (py, _), v in zip(_SWAP_CHAIN_FIELDS, values)})


class AccountData(BaseModel):
    """Lending-pool position summary. Health factor is a percentage."""

    total_collateral: int = 0
    total_debt: int
    health_factor: int


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


class Task(BaseModel):
    """Ledger task as emitted by ``NewTaskCreated``. Immutable."""

    model_config = ConfigDict(frozen=True)

    task_created_block: int = Field(ge=0, lt=2**32)
    task_type: int = Field(ge=0, lt=2**8)
    payload: bytes

    @field_validator("payload", mode="before")
    @classmethod
    def coerce_payload(cls, value: Any) -> bytes:
        return _as_bytes(value)

    @classmethod
    def from_event(cls, raw: Any) -> "Task":
        if isinstance(raw, Mapping):
            return cls(
                task_created_block=raw["taskCreatedBlock"],
                task_type=raw["taskType"],
                payload=raw["payload"],
            )
        block, task_type, payload = raw
        return cls(task_created_block=block, task_type=task_type, payload=payload)

    def as_contract_arg(self, payload: bytes | None = None) -> dict[str, Any]:
        """Struct argument for ``respondToTask``."""
        return {
            "taskCreatedBlock": self.task_created_block,
            "taskType": self.task_type,
            "payload": self.payload if payload is None else payload,
        }


class TaskNotification(BaseModel):
    """One received ``NewTaskCreated`` event."""

    model_config = ConfigDict(frozen=True)

    task_index: int
    task: Task
    block_number: int | None = None
    tx_hash: str | None = None

    @classmethod
    def from_log(cls, log: Mapping[str, Any]) -> "TaskNotification":
        args = log["args"]
        tx_hash = log.get("transactionHash")
        if isinstance(tx_hash, (bytes, bytearray)):
            tx_hash = "0x" + bytes(tx_hash).hex()
        return cls(
            task_index=int(args["taskIndex"]),
            task=Task.from_event(args["task"]),
            block_number=log.get("blockNumber"),
            tx_hash=tx_hash,
        )


class SignedResponse(BaseModel):
    """A signed task response, ready for ``respondToTask``."""

    model_config = ConfigDict(frozen=True)

    task: Task
    task_index: int
    payload: bytes
    message_hash: bytes
    signature: bytes

    @property
    def signature_hex(self) -> str:
        return "0x" + self.signature.hex()


# ---------------------------------------------------------------------------
# Payload models
# ---------------------------------------------------------------------------


class AbiPayload(BaseModel):
    """Base for payloads encoded as a flat ABI tuple in field order."""

    model_config = ConfigDict(frozen=True)

    abi_types: ClassVar[tuple[str, ...]] = ()

    @classmethod
    def candidate_abi_types(cls) -> list[tuple[str, ...]]:
        """Tuple layouts accepted when decoding, most specific first."""
        return [cls.abi_types]

    def abi_type_list(self) -> tuple[str, ...]:
        return type(self).abi_types

    def to_abi(self) -> tuple[Any, ...]:
        return tuple(getattr(self, name) for name in type(self).model_fields)

    @classmethod
    def from_abi(cls, values: Sequence[Any]) -> "AbiPayload":
        return cls(**dict(zip(cls.model_fields, values)))


class SwapRequest(AbiPayload):
    """User swap request. ``margin`` is absent in the five-field layout."""

    abi_types: ClassVar[tuple[str, ...]] = (
        "address", "uint256", "uint256", "bool", "uint256", "uint256",
    )
    legacy_abi_types: ClassVar[tuple[str, ...]] = (
        "address", "uint256", "uint256", "bool", "uint256",
    )

    user: str
    notional_amount: int = Field(ge=0)
    fixed_rate: int = Field(ge=0)
    is_paying_fixed: bool
    duration: int = Field(ge=0)
    margin: int | None = Field(default=None, ge=0)

    @field_validator("user", mode="before")
    @classmethod
    def normalize_user(cls, value: Any) -> str:
        return _checksum(value)

    @classmethod
    def candidate_abi_types(cls) -> list[tuple[str, ...]]:
        return [cls.abi_types, cls.legacy_abi_types]

    def abi_type_list(self) -> tuple[str, ...]:
        return self.legacy_abi_types if self.margin is None else self.abi_types

    def to_abi(self) -> tuple[Any, ...]:
        values = super().to_abi()
        return values[:-1] if self.margin is None else values


class SwapResponse(AbiPayload):
    """Swap request echoed back with the matching counter-swap id."""

    request: SwapRequest
    matched_swap_id: int = NO_MATCH

    @classmethod
    def candidate_abi_types(cls) -> list[tuple[str, ...]]:
        return [types + ("uint256",) for types in SwapRequest.candidate_abi_types()]

    def abi_type_list(self) -> tuple[str, ...]:
        return self.request.abi_type_list() + ("uint256",)

    def to_abi(self) -> tuple[Any, ...]:
        return self.request.to_abi() + (self.matched_swap_id,)

    @classmethod
    def from_abi(cls, values: Sequence[Any]) -> "SwapResponse":
        values = list(values)
        return cls(request=SwapRequest.from_abi(values[:-1]), matched_swap_id=values[-1])

    @property
    def has_match(self) -> bool:
        return self.matched_swap_id != NO_MATCH


class MatchRequest(AbiPayload):
    abi_types: ClassVar[tuple[str, ...]] = ("uint256", "uint256", "address")

    swap1_id: int
    swap2_id: int
    matcher: str

    @field_validator("matcher", mode="before")
    @classmethod
    def normalize_matcher(cls, value: Any) -> str:
        return _checksum(value)


class MatchResponse(AbiPayload):
    abi_types: ClassVar[tuple[str, ...]] = ("uint256", "uint256", "bool", "address")

    swap1_id: int
    swap2_id: int
    is_valid: bool
    matcher: str

    @field_validator("matcher", mode="before")
    @classmethod
    def normalize_matcher(cls, value: Any) -> str:
        return _checksum(value)


class SettlementRequest(AbiPayload):
    abi_types: ClassVar[tuple[str, ...]] = ("uint256[]", "address")

    swap_ids: list[int]
    settler: str

    @field_validator("settler", mode="before")
    @classmethod
    def normalize_settler(cls, value: Any) -> str:
        return _checksum(value)


class SettlementResponse(AbiPayload):
    """Per-swap settleability with the reserve rate (ray) it was checked at."""

    abi_types: ClassVar[tuple[str, ...]] = ("uint256[]", "uint256", "bool[]", "address")

    swap_ids: list[int]
    current_rate: int
    results: list[bool]
    settler: str

    @field_validator("settler", mode="before")
    @classmethod
    def normalize_settler(cls, value: Any) -> str:
        return _checksum(value)


class RateSettlementRequest(AbiPayload):
    abi_types: ClassVar[tuple[str, ...]] = ("uint256[]", "uint256")

    swap_ids: list[int]
    proposed_rate: int


class RateSettlementResponse(AbiPayload):
    abi_types: ClassVar[tuple[str, ...]] = ("uint256[]", "uint256", "bool[]")

    swap_ids: list[int]
    proposed_rate: int
    results: list[bool]


__all__ = [
    "NO_MATCH",
    "AbiPayload",
    "AccountData",
    "MatchRequest",
    "MatchResponse",
    "ProtocolVariant",
    "RateSettlementRequest",
    "RateSettlementResponse",
    "RateTaskType",
    "SettlementRequest",
    "SettlementResponse",
    "SignedResponse",
    "Swap",
    "SwapRequest",
    "SwapResponse",
    "Task",
    "TaskNotification",
    "TaskType",
]
