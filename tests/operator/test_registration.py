"""Tests for operator registration."""

import pytest
from eth_account import Account

from irsavs.operator.registration import REGISTRATION_EXPIRY_SECONDS, OperatorRegistrar

from doubles import FakeRegistry

SALT = b"\x42" * 32


def _registrar(registry, account):
    return OperatorRegistrar(registry, account, clock=lambda: 1_700_000_000, salt_factory=lambda: SALT)


class TestOperatorRegistrar:

    @pytest.mark.asyncio
    async def test_already_registered_is_a_no_op(self, operator_account):
        registry = FakeRegistry(registered=True)
        result = await _registrar(registry, operator_account).register()

        assert result.status == "already_registered"
        assert result
        assert [c[0] for c in registry.calls] == ["is_operator"]

    @pytest.mark.asyncio
    async def test_full_sequence(self, operator_account):
        registry = FakeRegistry()
        result = await _registrar(registry, operator_account).register()

        assert result.status == "registered"
        assert [c[0] for c in registry.calls] == [
            "is_operator", "register_as_operator", "digest", "register_with_signature",
        ]
        _, operator, service_manager, salt, expiry = registry.calls[2]
        assert operator == operator_account.address
        assert service_manager == registry.service_manager_address
        assert salt == SALT
        assert expiry == 1_700_000_000 + REGISTRATION_EXPIRY_SECONDS

    @pytest.mark.asyncio
    async def test_digest_signed_without_prefix(self, operator_account):
        registry = FakeRegistry()
        await _registrar(registry, operator_account).register()

        digest = await registry.calculate_registration_digest(
            operator_account.address, registry.service_manager_address, SALT,
            1_700_000_000 + REGISTRATION_EXPIRY_SECONDS,
        )
        _, signature, salt, expiry, operator = registry.calls[3]
        assert Account._recover_hash(bytes(digest), signature=signature) == operator_account.address
        assert (salt, operator) == (SALT, operator_account.address)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("step", ["is_operator", "register_as_operator", "digest", "register_with_signature"])
    async def test_failure_is_reported_not_raised(self, operator_account, step):
        registry = FakeRegistry(fail_step=step)
        result = await _registrar(registry, operator_account).register()

        assert result.status == "failed"
        assert not result
        assert "reverted" in result.detail
