"""Operator configuration.

Settings come from the environment (optionally a ``.env`` file loaded by
the entrypoint) with CLI values as fallbacks. Contract addresses and ABIs
are read from deployment and ABI JSON files resolved against the working
directory.
"""

from __future__ import annotations

import json
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, SecretStr, ValidationError, field_validator
from web3 import Web3

from irsavs.base.errors import ConfigurationError
from irsavs.operator.models import ProtocolVariant

ENV_PREFIX = "IRS_OPERATOR__"

# ABI file names (without .json) under the ABI directory
DELEGATION_MANAGER_ABI = "IDelegationManager"
AVS_DIRECTORY_ABI = "IAVSDirectory"
STAKE_REGISTRY_ABI = "ECDSAStakeRegistry"
SERVICE_MANAGER_ABI = "IRSServiceManager"
VARIABLE_POOL_ABI = "MockVariableLendingPool"
FIXED_POOL_ABI = "MockFixedRateLendingPool"


class OperatorSettings(BaseModel):
    """Validated operator configuration."""

    rpc_url: str = Field(min_length=1)
    private_key: SecretStr
    private_key_2: SecretStr | None = None
    chain_id: int = 31337

    deployments_dir: Path = Path("contracts/deployments")
    abi_dir: Path = Path("abis")

    variant: ProtocolVariant = ProtocolVariant.MATCH
    min_health_factor: int = Field(default=150, ge=0)
    max_rate_deviation_bps: int = Field(default=200, ge=0)
    verify_loans: bool = True

    settlement_policy: str = Field(default="ledger", pattern=r"^(ledger|interval)$")
    settlement_interval: int = Field(default=86400, gt=0)
    settlement_poll_interval: float = Field(default=24.0, ge=0)
    task_poll_interval: float = Field(default=2.0, gt=0)
    queue_size: int = Field(default=100, ge=0)
    receipt_timeout: float = Field(default=120.0, gt=0)

    register_on_startup: bool = True
    require_registration: bool = False

    @field_validator("private_key", "private_key_2", mode="before")
    @classmethod
    def strip_key(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.strip()
            return value or None
        return value


# setting name -> environment variable
_ENV_NAMES: dict[str, str] = {
    "rpc_url": "RPC_URL",
    "private_key": "PRIVATE_KEY",
    "private_key_2": "PRIVATE_KEY_2",
    "chain_id": "IRS_CHAIN__ID",
    **{
        name: f"{ENV_PREFIX}{name.upper()}"
        for name in (
            "deployments_dir",
            "abi_dir",
            "variant",
            "min_health_factor",
            "max_rate_deviation_bps",
            "verify_loans",
            "settlement_policy",
            "settlement_interval",
            "settlement_poll_interval",
            "task_poll_interval",
            "queue_size",
            "receipt_timeout",
            "register_on_startup",
            "require_registration",
        )
    },
}


def load_settings(
    defaults: Mapping[str, Any] | None = None,
    environ: Mapping[str, str] | None = None,
) -> OperatorSettings:
    """Build settings from CLI defaults overridden by environment variables.

    Environment takes precedence over ``defaults`` (CLI values), matching the
    auditor entrypoint convention.

    Raises:
        ConfigurationError: if a required value is missing or invalid.
    """
    environ = os.environ if environ is None else environ
    values: dict[str, Any] = {k: v for k, v in (defaults or {}).items() if v is not None}
    for name, env_name in _ENV_NAMES.items():
        raw = environ.get(env_name)
        if raw is not None and raw != "":
            values[name] = raw

    missing = [
        _ENV_NAMES[name] for name in ("rpc_url", "private_key") if not values.get(name)
    ]
    if missing:
        raise ConfigurationError(f"missing required environment: {', '.join(missing)}")

    try:
        return OperatorSettings(**values)
    except ValidationError as e:
        raise ConfigurationError(f"invalid operator settings: {e}") from e


# ---------------------------------------------------------------------------
# Deployment and ABI files
# ---------------------------------------------------------------------------


class Deployment(BaseModel):
    """Contract addresses from the core and irs-avs deployment files."""

    core: dict[str, Any]
    avs: dict[str, Any]

    def _address(self, section: dict[str, Any], key: str, file_label: str) -> str:
        try:
            return Web3.to_checksum_address(section[key])
        except KeyError:
            raise ConfigurationError(f"{file_label} deployment has no address for '{key}'") from None
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"{file_label} deployment address '{key}' is invalid: {e}") from e

    @property
    def delegation_manager(self) -> str:
        return self._address(self.core, "delegation", "core")

    @property
    def avs_directory(self) -> str:
        return self._address(self.core, "avsDirectory", "core")

    @property
    def service_manager(self) -> str:
        return self._address(self.avs, "irsServiceManager", "irs-avs")

    @property
    def stake_registry(self) -> str:
        return self._address(self.avs, "stakeRegistry", "irs-avs")

    @property
    def variable_pool(self) -> str:
        return self._address(self.avs, "mockVariableLendingPool", "irs-avs")

    @property
    def fixed_pool(self) -> str:
        return self._address(self.avs, "mockFixedLendingPool", "irs-avs")


def _read_json(path: Path) -> Any:
    try:
        with open(path, encoding="utf-8") as f:
            return json.load(f)
    except FileNotFoundError:
        raise ConfigurationError(f"missing file: {path}") from None
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"unreadable file {path}: {e}") from e


def load_deployment(settings: OperatorSettings, base_dir: Path | None = None) -> Deployment:
    """Read ``core/<chain>.json`` and ``irs-avs/<chain>.json``."""
    root = (base_dir or Path.cwd()) / settings.deployments_dir
    sections = {}
    for key, sub in (("core", "core"), ("avs", "irs-avs")):
        data = _read_json(root / sub / f"{settings.chain_id}.json")
        addresses = data.get("addresses") if isinstance(data, dict) else None
        if not isinstance(addresses, dict):
            raise ConfigurationError(f"{sub} deployment file has no 'addresses' object")
        sections[key] = addresses
    return Deployment(**sections)


def load_abi(settings: OperatorSettings, name: str, base_dir: Path | None = None) -> list[dict[str, Any]]:
    """Read an ABI file. Accepts a bare ABI list or a build artifact with ``abi``."""
    path = (base_dir or Path.cwd()) / settings.abi_dir / f"{name}.json"
    data = _read_json(path)
    if isinstance(data, dict) and "abi" in data:
        data = data["abi"]
    if not isinstance(data, list):
        raise ConfigurationError(f"ABI file {path} does not contain an ABI list")
    return data


__all__ = [
    "AVS_DIRECTORY_ABI",
    "DELEGATION_MANAGER_ABI",
    "Deployment",
    "FIXED_POOL_ABI",
    "OperatorSettings",
    "SERVICE_MANAGER_ABI",
    "STAKE_REGISTRY_ABI",
    "VARIABLE_POOL_ABI",
    "load_abi",
    "load_deployment",
    "load_settings",
]
