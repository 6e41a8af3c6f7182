"""
Per-account staked weight bookkeeping on top of a RewardAccumulator.

The ledger is the only writer of ``weights`` and ``total_weight``.
Every mutation settles the account first so rounds already accrued are
paid at the old weight and rounds still to come see the new one.
"""

from __future__ import annotations

import logging
from typing import Optional

from stakeflow_core.accumulator import RewardAccumulator
from stakeflow_core.contract import assign, store
from stakeflow_core.errors import InsufficientBalance, InvalidAmount
from stakeflow_core.precision import checked_add, checked_sub, require_amount

log = logging.getLogger("stakeflow.stake_ledger")


class StakeLedger:
    """Authoritative staked weights for one accumulator."""

    def __init__(self, accumulator: Optional[RewardAccumulator] = None,
                 start_round: int = 1) -> None:
        self.accumulator = accumulator if accumulator is not None else RewardAccumulator(start_round)
        self.weights: dict[str, int] = {}
        self.total_weight = 0

    def weight_of(self, account: str) -> int:
        return self.weights.get(account, 0)

    def accrue(self, funding: int) -> int:
        return self.accumulator.accrue(funding, self.total_weight)

    def settle(self, account: str) -> int:
        return self.accumulator.settle(account, self.weight_of(account))

    def deposit(self, account: str, amount: int) -> None:
        require_amount(amount)
        if amount == 0:
            raise InvalidAmount("ZERO_AMOUNT", "deposit amount must be positive")
        self.settle(account)
        store(self.weights, account, checked_add(self.weight_of(account), amount))
        assign(self, "total_weight", checked_add(self.total_weight, amount))
        log.debug("deposit %s +%d -> %d", account, amount, self.weights[account],
                  extra={"account": account, "amount": amount})

    def withdraw(self, account: str, amount: int) -> None:
        require_amount(amount)
        if amount == 0:
            raise InvalidAmount("ZERO_AMOUNT", "withdraw amount must be positive")
        have = self.weight_of(account)
        if amount > have:
            raise InsufficientBalance(
                "INSUFFICIENT_STAKE", f"{account} has {have} staked, asked {amount}")
        self.settle(account)
        store(self.weights, account, have - amount)
        assign(self, "total_weight", checked_sub(self.total_weight, amount))
        log.debug("withdraw %s -%d -> %d", account, amount, self.weights[account],
                  extra={"account": account, "amount": amount})

    def claim(self, account: str) -> int:
        """Settle and hand back the account's whole pending reward."""
        self.settle(account)
        return self.accumulator.take_pending(account)

    def reward_of(self, account: str) -> int:
        return self.accumulator.pending(account, self.weight_of(account))

    def to_dict(self) -> dict:
        return {
            "total_weight": self.total_weight,
            "stakers": sum(1 for w in self.weights.values() if w > 0),
            **self.accumulator.to_dict(),
        }
