"""ABI payload codec for task requests and responses.

Payloads are flat ABI tuples (``abi.encode`` on the ledger side). Decoding
is strict: the decoded values must re-encode to exactly the input bytes,
so short data, trailing data and non-canonical layouts are all rejected.
"""

from __future__ import annotations

from typing import Any, TypeVar

from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError, EncodingError
from pydantic import ValidationError

from irsavs.base.errors import MalformedPayloadError
from irsavs.operator.models import (
    AbiPayload,
    MatchRequest,
    MatchResponse,
    RateSettlementRequest,
    RateSettlementResponse,
    SettlementRequest,
    SettlementResponse,
    SwapRequest,
    SwapResponse,
)

P = TypeVar("P", bound=AbiPayload)


def encode_payload(model: AbiPayload) -> bytes:
    """ABI-encode a payload model in its declared tuple layout."""
    return encode(list(model.abi_type_list()), list(model.to_abi()))


def _decode_strict(types: tuple[str, ...], data: bytes) -> tuple[Any, ...]:
    values = decode(list(types), data)
    if encode(list(types), list(values)) != data:
        raise MalformedPayloadError(
            f"payload is not a canonical ({','.join(types)}) tuple"
        )
    return values


def decode_payload(cls: type[P], data: bytes) -> P:
    """Decode ``data`` into ``cls``, trying each accepted tuple layout.

    Raises:
        MalformedPayloadError: if no layout matches the bytes exactly.
    """
    data = bytes(data)
    errors: list[str] = []
    for types in cls.candidate_abi_types():
        try:
            values = _decode_strict(types, data)
        except (DecodingError, EncodingError, MalformedPayloadError, ValueError, TypeError, OverflowError) as e:
            errors.append(f"({','.join(types)}): {e}")
            continue
        try:
            return cls.from_abi(values)
        except ValidationError as e:
            errors.append(f"({','.join(types)}): {e}")
    raise MalformedPayloadError(
        f"cannot decode {len(data)} bytes as {cls.__name__}: " + "; ".join(errors)
    )


# -- Requests --

def decode_swap_request(data: bytes) -> SwapRequest:
    return decode_payload(SwapRequest, data)


def decode_match_request(data: bytes) -> MatchRequest:
    return decode_payload(MatchRequest, data)


def decode_settlement_request(data: bytes) -> SettlementRequest:
    return decode_payload(SettlementRequest, data)


def decode_rate_settlement_request(data: bytes) -> RateSettlementRequest:
    return decode_payload(RateSettlementRequest, data)


# -- Responses --

def encode_swap_response(request: SwapRequest, matched_swap_id: int) -> bytes:
    return encode_payload(SwapResponse(request=request, matched_swap_id=matched_swap_id))


def encode_match_response(response: MatchResponse) -> bytes:
    return encode_payload(response)


def encode_settlement_response(response: SettlementResponse) -> bytes:
    return encode_payload(response)


def encode_rate_settlement_response(response: RateSettlementResponse) -> bytes:
    return encode_payload(response)


__all__ = [
    "decode_match_request",
    "decode_payload",
    "decode_rate_settlement_request",
    "decode_settlement_request",
    "decode_swap_request",
    "encode_match_response",
    "encode_payload",
    "encode_rate_settlement_response",
    "encode_settlement_response",
    "encode_swap_response",
]
