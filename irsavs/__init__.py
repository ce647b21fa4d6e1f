"""Off-chain operator for the IRS (interest-rate swap) AVS."""

__version__ = "0.3.0"
