"""Task response signing and verification with the operator's ECDSA key.

The ledger recomputes ``keccak256(abi.encodePacked(taskCreatedBlock,
taskType, payload))`` and recovers the signer from an EIP-191 personal
signature over that 32-byte hash.
"""

from __future__ import annotations

from typing import Any

from eth_account import Account
from eth_account.messages import encode_defunct
from web3 import Web3

from irsavs.operator.models import SignedResponse, Task


def task_message_hash(task_created_block: int, task_type: int, payload: bytes) -> bytes:
    """Canonical response hash over (uint32 block, uint8 type, bytes payload)."""
    return bytes(Web3.solidity_keccak(
        ["uint32", "uint8", "bytes"],
        [task_created_block, task_type, bytes(payload)],
    ))


def sign_task_response(
    task: Task,
    task_index: int,
    account: Any,
    payload: bytes | None = None,
) -> SignedResponse:
    """Sign a task response.

    Args:
        task: The task being answered.
        task_index: Ledger index of the task.
        account: eth_account LocalAccount of the operator.
        payload: Response payload; defaults to the task's own payload.

    Returns:
        SignedResponse carrying the hash and the 65-byte signature.
    """
    body = task.payload if payload is None else bytes(payload)
    message_hash = task_message_hash(task.task_created_block, task.task_type, body)
    signed = account.sign_message(encode_defunct(primitive=message_hash))
    return SignedResponse(
        task=task,
        task_index=task_index,
        payload=body,
        message_hash=message_hash,
        signature=bytes(signed.signature),
    )


def recover_signer(response: SignedResponse) -> str:
    """Recover the checksummed signer address of a response."""
    message_hash = task_message_hash(
        response.task.task_created_block, response.task.task_type, response.payload,
    )
    return Account.recover_message(
        encode_defunct(primitive=message_hash), signature=response.signature,
    )


def verify_task_response(response: SignedResponse, operator: str) -> bool:
    """True if ``response`` was signed by ``operator`` over its own payload."""
    try:
        return recover_signer(response) == Web3.to_checksum_address(operator)
    except Exception:
        return False


def sign_registration_digest(digest: bytes, account: Any) -> bytes:
    """Sign an AVS registration digest as-is (no EIP-191 prefix)."""
    signed = account.unsafe_sign_hash(bytes(digest))
    return bytes(signed.signature)


__all__ = [
    "recover_signer",
    "sign_registration_digest",
    "sign_task_response",
    "task_message_hash",
    "verify_task_response",
]
