"""IRS AVS operator.

Off-chain process that watches the IRS service manager for new tasks,
validates swap requests, matches and settlements against ledger and
lending-pool state, and answers approved tasks with a signed response.

No aggregation, no persistence, no retries.
"""
