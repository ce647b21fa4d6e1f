"""Exception hierarchy shared by the operator and the task tooling."""

from __future__ import annotations


class IrsOperatorError(Exception):
    """Base class for operator errors."""


class ConfigurationError(IrsOperatorError):
    """Missing or invalid environment, deployment file, or ABI. Fatal at startup."""


class MalformedPayloadError(IrsOperatorError):
    """Task payload bytes do not match the expected ABI tuple shape."""


class TransactionFailedError(IrsOperatorError):
    """A submitted transaction was mined but reverted."""

    def __init__(self, tx_hash: str, message: str = "transaction reverted"):
        super().__init__(f"{message}: {tx_hash}")
        self.tx_hash = tx_hash


__all__ = [
    "ConfigurationError",
    "IrsOperatorError",
    "MalformedPayloadError",
    "TransactionFailedError",
]
