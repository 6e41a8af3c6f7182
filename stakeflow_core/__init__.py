"""
Stakeflow - reward-distribution accounting components.

Key features:
- Round-indexed reward accumulator with lazy per-account settlement
- Staking pool funded by balance difference, with optional emission
- Rolling-window lockup vault with early-exit penalties
- Capped fixed-price subscription auction with linear release
- Non-reentrant, all-or-nothing contract operations
"""

__version__ = "0.1.0"
__all__ = [
    "precision",
    "errors",
    "clock",
    "contract",
    "assets",
    "oracle",
    "accumulator",
    "stake_ledger",
    "lockup",
    "auction",
    "staking",
    "vesting",
    "subscription",
    "invariants",
    "config",
    "logging_config",
]
