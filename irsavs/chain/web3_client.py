"""web3.py-backed gateways for the ledger, lending pools and registries.

Each gateway wraps one or more contracts on an ``AsyncWeb3`` instance
whose signing middleware holds the sender's key. Writes wait for the
receipt; a reverted receipt raises TransactionFailedError. Nothing is
retried here.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping, Sequence
from typing import Any

import bittensor as bt
from web3 import AsyncHTTPProvider, AsyncWeb3, Web3
from web3.middleware import SignAndSendRawMiddlewareBuilder

from irsavs.base.config import (
    AVS_DIRECTORY_ABI,
    DELEGATION_MANAGER_ABI,
    FIXED_POOL_ABI,
    SERVICE_MANAGER_ABI,
    STAKE_REGISTRY_ABI,
    VARIABLE_POOL_ABI,
    Deployment,
    OperatorSettings,
    load_abi,
)
from irsavs.base.errors import TransactionFailedError
from irsavs.operator.models import AccountData, Swap, Task, TaskNotification
from irsavs.operator.rates import ray_to_bps

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


def build_web3(rpc_url: str, account: Any | None = None) -> AsyncWeb3:
    """AsyncWeb3 on ``rpc_url``; with ``account``, transactions are signed locally."""
    w3 = AsyncWeb3(AsyncHTTPProvider(rpc_url))
    if account is not None:
        w3.middleware_onion.inject(SignAndSendRawMiddlewareBuilder.build(account), layer=0)
        w3.eth.default_account = account.address
    return w3


def _field(raw: Any, index: int, name: str) -> Any:
    """Read a struct/tuple output by component name or position."""
    if isinstance(raw, Mapping):
        return raw[name]
    if isinstance(raw, Sequence) and not isinstance(raw, (str, bytes)):
        return raw[index]
    return getattr(raw, name)


def _hex(tx_hash: Any) -> str:
    text = tx_hash.hex() if isinstance(tx_hash, (bytes, bytearray)) else str(tx_hash)
    return text if text.startswith("0x") else "0x" + text


class _ContractClient:
    """Shared transaction plumbing.

    Clients signing with the same account must share ``tx_lock``: the
    signing middleware reads the nonce from the pending count at send time.
    """

    def __init__(
        self, w3: AsyncWeb3, receipt_timeout: float = 120.0, tx_lock: asyncio.Lock | None = None,
    ):
        self.w3 = w3
        self.receipt_timeout = receipt_timeout
        self.tx_lock = tx_lock if tx_lock is not None else asyncio.Lock()

    async def _transact(self, call: Any, value: int = 0) -> str:
        params: dict[str, Any] = {}
        if self.w3.eth.default_account:
            params["from"] = self.w3.eth.default_account
        if value:
            params["value"] = value
        async with self.tx_lock:
            tx_hash = await call.transact(params)
        receipt = await self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.receipt_timeout)
        hex_hash = _hex(tx_hash)
        if receipt["status"] != 1:
            raise TransactionFailedError(hex_hash)
        bt.logging.debug({"chain_tx": {"tx_hash": hex_hash, "block": receipt["blockNumber"]}})
        return hex_hash


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------


class Web3LedgerGateway(_ContractClient):
    """IRS service manager contract."""

    def __init__(
        self,
        w3: AsyncWeb3,
        address: str,
        abi: list[dict[str, Any]],
        receipt_timeout: float = 120.0,
        tx_lock: asyncio.Lock | None = None,
    ):
        super().__init__(w3, receipt_timeout, tx_lock)
        self.address = Web3.to_checksum_address(address)
        self.contract = w3.eth.contract(address=self.address, abi=abi)

    async def next_swap_id(self) -> int:
        return int(await self.contract.functions.nextSwapId().call())

    async def get_swap(self, swap_id: int) -> Swap:
        raw = await self.contract.functions.getSwap(swap_id).call()
        return Swap.from_chain(raw, swap_id=swap_id)

    async def swaps(self, swap_id: int) -> Swap:
        raw = await self.contract.functions.swaps(swap_id).call()
        return Swap.from_chain(raw, swap_id=swap_id)

    async def list_swaps(self) -> list[Swap]:
        count = await self.next_swap_id()
        return [await self.get_swap(swap_id) for swap_id in range(count)]

    async def can_be_settled(self, swap_id: int) -> bool:
        return bool(await self.contract.functions.canBeSettled(swap_id).call())

    async def create_new_task(self, task_type: int, payload: bytes, value: int = 0) -> str:
        call = self.contract.functions.createNewTask(int(task_type), bytes(payload))
        return await self._transact(call, value=value)

    async def respond_to_task(self, task: Task, task_index: int, signature: bytes) -> str:
        call = self.contract.functions.respondToTask(task.as_contract_arg(), task_index, bytes(signature))
        return await self._transact(call)

    async def block_number(self) -> int:
        return int(await self.w3.eth.block_number)

    async def get_new_task_events(self, from_block: int, to_block: int) -> list[TaskNotification]:
        logs = await self.contract.events.NewTaskCreated().get_logs(
            from_block=from_block, to_block=to_block,
        )
        return [TaskNotification.from_log(log) for log in logs]


# ---------------------------------------------------------------------------
# Lending pools
# ---------------------------------------------------------------------------


class Web3VariableLendingPool(_ContractClient):
    """Variable-rate pool; reports its rate in ray."""

    def __init__(
        self,
        w3: AsyncWeb3,
        address: str,
        abi: list[dict[str, Any]],
        receipt_timeout: float = 120.0,
        tx_lock: asyncio.Lock | None = None,
    ):
        super().__init__(w3, receipt_timeout, tx_lock)
        self.address = Web3.to_checksum_address(address)
        self.contract = w3.eth.contract(address=self.address, abi=abi)

    async def get_user_account_data(self, user: str) -> AccountData:
        raw = await self.contract.functions.getUserAccountData(Web3.to_checksum_address(user)).call()
        return AccountData(
            total_collateral=_field(raw, 0, "totalCollateral"),
            total_debt=_field(raw, 1, "totalDebt"),
            health_factor=_field(raw, 2, "healthFactor"),
        )

    async def get_reserve_rate_ray(self) -> int:
        raw = await self.contract.functions.getReserveData().call()
        return int(_field(raw, 1, "variableBorrowRate"))

    async def get_current_rate(self) -> int:
        return ray_to_bps(await self.get_reserve_rate_ray())

    async def deposit(self, amount: int) -> str:
        return await self._transact(self.contract.functions.deposit(), value=amount)

    async def borrow(self, amount: int) -> str:
        return await self._transact(self.contract.functions.borrow(amount))


class Web3FixedLendingPool(_ContractClient):
    """Fixed-rate pool; positions carry their own health factor."""

    def __init__(
        self,
        w3: AsyncWeb3,
        address: str,
        abi: list[dict[str, Any]],
        receipt_timeout: float = 120.0,
        tx_lock: asyncio.Lock | None = None,
    ):
        super().__init__(w3, receipt_timeout, tx_lock)
        self.address = Web3.to_checksum_address(address)
        self.contract = w3.eth.contract(address=self.address, abi=abi)

    async def get_user_fixed_rate_position(self, user: str) -> dict[str, int]:
        raw = await self.contract.functions.getUserFixedRatePosition(Web3.to_checksum_address(user)).call()
        return {
            "principal": _field(raw, 0, "principal"),
            "fixed_rate": _field(raw, 1, "fixedRate"),
            "maturity": _field(raw, 2, "maturity"),
            "health_factor": _field(raw, 3, "healthFactor"),
        }

    async def get_user_account_data(self, user: str) -> AccountData:
        position = await self.get_user_fixed_rate_position(user)
        return AccountData(total_debt=position["principal"], health_factor=position["health_factor"])

    async def deposit_collateral(self, amount: int) -> str:
        return await self._transact(self.contract.functions.depositCollateral(), value=amount)

    async def open_fixed_position(self, amount: int, duration: int) -> str:
        return await self._transact(self.contract.functions.openFixedPosition(amount, duration))


# ---------------------------------------------------------------------------
# Registries
# ---------------------------------------------------------------------------


class Web3RegistryGateway(_ContractClient):
    """Delegation manager, AVS directory and ECDSA stake registry."""

    def __init__(
        self,
        w3: AsyncWeb3,
        deployment: Deployment,
        abis: Mapping[str, list[dict[str, Any]]],
        receipt_timeout: float = 120.0,
        tx_lock: asyncio.Lock | None = None,
    ):
        super().__init__(w3, receipt_timeout, tx_lock)
        self.service_manager_address = deployment.service_manager
        self.delegation = w3.eth.contract(
            address=deployment.delegation_manager, abi=abis[DELEGATION_MANAGER_ABI],
        )
        self.avs_directory = w3.eth.contract(
            address=deployment.avs_directory, abi=abis[AVS_DIRECTORY_ABI],
        )
        self.stake_registry = w3.eth.contract(
            address=deployment.stake_registry, abi=abis[STAKE_REGISTRY_ABI],
        )

    async def is_operator(self, operator: str) -> bool:
        return bool(await self.delegation.functions.isOperator(operator).call())

    async def register_as_operator(self, operator: str) -> str:
        details = {
            "__deprecated_earningsReceiver": operator,
            "delegationApprover": ZERO_ADDRESS,
            "stakerOptOutWindowBlocks": 0,
        }
        return await self._transact(self.delegation.functions.registerAsOperator(details, ""))

    async def calculate_registration_digest(
        self, operator: str, service_manager: str, salt: bytes, expiry: int,
    ) -> bytes:
        digest = await self.avs_directory.functions.calculateOperatorAVSRegistrationDigestHash(
            operator, service_manager, bytes(salt), expiry,
        ).call()
        return bytes(digest)

    async def register_operator_with_signature(
        self, signature: bytes, salt: bytes, expiry: int, operator: str,
    ) -> str:
        operator_signature = {"signature": bytes(signature), "salt": bytes(salt), "expiry": expiry}
        call = self.stake_registry.functions.registerOperatorWithSignature(operator_signature, operator)
        return await self._transact(call)


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


class ChainClients:
    """All gateways for one signing account."""

    def __init__(self, settings: OperatorSettings, deployment: Deployment, account: Any):
        self.account = account
        self.w3 = build_web3(settings.rpc_url, account)
        timeout = settings.receipt_timeout
        # one nonce sequence per account
        self.tx_lock = asyncio.Lock()
        self.ledger = Web3LedgerGateway(
            self.w3, deployment.service_manager, load_abi(settings, SERVICE_MANAGER_ABI), timeout, self.tx_lock,
        )
        self.variable_pool = Web3VariableLendingPool(
            self.w3, deployment.variable_pool, load_abi(settings, VARIABLE_POOL_ABI), timeout, self.tx_lock,
        )
        self.fixed_pool = Web3FixedLendingPool(
            self.w3, deployment.fixed_pool, load_abi(settings, FIXED_POOL_ABI), timeout, self.tx_lock,
        )
        self._settings = settings
        self._deployment = deployment
        self._registry: Web3RegistryGateway | None = None

    @property
    def registry(self) -> Web3RegistryGateway:
        """Registry gateway, built on first use (startup only)."""
        if self._registry is None:
            abis = {
                name: load_abi(self._settings, name)
                for name in (DELEGATION_MANAGER_ABI, AVS_DIRECTORY_ABI, STAKE_REGISTRY_ABI)
            }
            self._registry = Web3RegistryGateway(
                self.w3, self._deployment, abis, self._settings.receipt_timeout, self.tx_lock,
            )
        return self._registry

    async def balance_of(self, address: str) -> int:
        return int(await self.w3.eth.get_balance(Web3.to_checksum_address(address)))


__all__ = [
    "ChainClients",
    "Web3FixedLendingPool",
    "Web3LedgerGateway",
    "Web3RegistryGateway",
    "Web3VariableLendingPool",
    "build_web3",
]
