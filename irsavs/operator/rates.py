"""Rate scale conversions.

Basis points are the operator's single rate unit: swap fixed rates,
proposed rates and deviation bounds are all bps. Lending pools report the
variable rate in ray (``RAY == 100%``); convert at the pool boundary.
"""

from __future__ import annotations

from web3 import Web3

RAY = 10**27
BPS_PER_UNIT = 10_000
SECONDS_PER_DAY = 24 * 60 * 60


def ray_to_bps(ray: int) -> int:
    """Convert a ray-scaled rate to basis points, rounding down."""
    return int(ray) * BPS_PER_UNIT // RAY


def bps_to_ray(bps: int) -> int:
    return int(bps) * RAY // BPS_PER_UNIT


def format_bps(bps: int) -> str:
    """600 -> '6.00%'."""
    whole, frac = divmod(int(bps), 100)
    return f"{whole}.{frac:02d}%"


def format_ether(wei: int) -> str:
    return f"{Web3.from_wei(int(wei), 'ether')} ETH"


def format_duration(seconds: int) -> str:
    days = int(seconds) / SECONDS_PER_DAY
    return f"{days:g} days"


__all__ = [
    "BPS_PER_UNIT",
    "RAY",
    "SECONDS_PER_DAY",
    "bps_to_ray",
    "format_bps",
    "format_duration",
    "format_ether",
    "ray_to_bps",
]
