"""Gateway protocols - pluggable chain access for the operator.

Implementations: the web3-backed gateways in ``web3_client`` and the
in-memory doubles used by the tests.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from irsavs.operator.models import AccountData, Swap, Task, TaskNotification


@runtime_checkable
class LedgerGateway(Protocol):
    """Read/write access to the IRS service manager."""

    address: str

    async def next_swap_id(self) -> int:
        """Id the next created swap will receive (swap count)."""
        ...

    async def get_swap(self, swap_id: int) -> Swap:
        """Fetch a swap through ``getSwap``."""
        ...

    async def swaps(self, swap_id: int) -> Swap:
        """Fetch a swap through the public ``swaps`` mapping getter."""
        ...

    async def list_swaps(self) -> list[Swap]:
        """All swap records in id order."""
        ...

    async def can_be_settled(self, swap_id: int) -> bool:
        """The ledger's own settleability predicate."""
        ...

    async def create_new_task(self, task_type: int, payload: bytes, value: int = 0) -> str:
        """Submit a task. Returns the transaction hash."""
        ...

    async def respond_to_task(self, task: Task, task_index: int, signature: bytes) -> str:
        """Submit a signed response. ``task.payload`` is the signed payload."""
        ...

    async def block_number(self) -> int:
        ...

    async def get_new_task_events(self, from_block: int, to_block: int) -> list[TaskNotification]:
        """``NewTaskCreated`` events in the inclusive block range."""
        ...


@runtime_checkable
class LendingPool(Protocol):
    """Read access to a lending pool's borrower positions."""

    address: str

    async def get_user_account_data(self, user: str) -> AccountData:
        ...


@runtime_checkable
class VariableRatePool(LendingPool, Protocol):
    """A lending pool that also quotes a variable borrow rate."""

    async def get_reserve_rate_ray(self) -> int:
        """Variable borrow rate exactly as the pool reports it (ray)."""
        ...

    async def get_current_rate(self) -> int:
        """Variable borrow rate in basis points."""
        ...


@runtime_checkable
class RegistryGateway(Protocol):
    """Delegation manager, AVS directory and stake registry, startup only."""

    service_manager_address: str

    async def is_operator(self, operator: str) -> bool:
        ...

    async def register_as_operator(self, operator: str) -> str:
        ...

    async def calculate_registration_digest(
        self, operator: str, service_manager: str, salt: bytes, expiry: int,
    ) -> bytes:
        ...

    async def register_operator_with_signature(
        self, signature: bytes, salt: bytes, expiry: int, operator: str,
    ) -> str:
        ...


__all__ = ["LedgerGateway", "LendingPool", "RegistryGateway", "VariableRatePool"]
