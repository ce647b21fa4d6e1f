"""One-shot operator registration with the restaking core and the AVS.

Runs once at startup: register with the delegation manager if needed,
then sign the AVS registration digest and register with the stake
registry. Failures are reported, not raised; the caller decides whether
an unregistered operator may keep running.
"""

from __future__ import annotations

import os
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import bittensor as bt

from irsavs.chain.interface import RegistryGateway
from irsavs.operator.signer import sign_registration_digest

REGISTRATION_EXPIRY_SECONDS = 3600


@dataclass
class RegistrationResult:
    """Outcome of the registration sequence."""

    status: str  # "registered", "already_registered", "failed"
    detail: str = ""

    def __bool__(self) -> bool:
        return self.status != "failed"


class OperatorRegistrar:
    """Registers the operator account with the core registry and the AVS."""

    def __init__(
        self,
        registry: RegistryGateway,
        account: Any,
        clock: Callable[[], float] = time.time,
        salt_factory: Callable[[], bytes] = lambda: os.urandom(32),
    ):
        self.registry = registry
        self.account = account
        self._clock = clock
        self._salt_factory = salt_factory

    async def register(self) -> RegistrationResult:
        operator = self.account.address
        try:
            if await self.registry.is_operator(operator):
                bt.logging.info({"operator_registration": {"status": "already_registered", "operator": operator}})
                return RegistrationResult(status="already_registered")

            tx_hash = await self.registry.register_as_operator(operator)
            bt.logging.info({"operator_registration": {"step": "core", "tx_hash": tx_hash}})

            salt = self._salt_factory()
            expiry = int(self._clock()) + REGISTRATION_EXPIRY_SECONDS
            digest = await self.registry.calculate_registration_digest(
                operator, self.registry.service_manager_address, salt, expiry,
            )
            signature = sign_registration_digest(digest, self.account)

            tx_hash = await self.registry.register_operator_with_signature(
                signature, salt, expiry, operator,
            )
            bt.logging.success({"operator_registration": {"step": "avs", "tx_hash": tx_hash}})
            return RegistrationResult(status="registered", detail=tx_hash)
        except Exception as e:
            bt.logging.error({"operator_registration": {"status": "failed", "error": str(e)}})
            return RegistrationResult(status="failed", detail=str(e))


__all__ = ["OperatorRegistrar", "RegistrationResult"]
