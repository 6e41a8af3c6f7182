"""
Reward-distributing staking pool for stakeflow.

Accounts stake one asset and earn another (or the same one).  Rewards
are not pushed to stakers; they accrue in a :class:`RewardAccumulator`
and each account pulls its share with ``claim``.

Funding by balance difference
─────────────────────────────
The pool never trusts a pushed amount.  ``sync()`` mints any due
emission into the pool, then reads the reward asset's balance and
treats whatever exceeds the already-accounted rewards as new funding:

    observed = reward_balance(pool) − staked_principal   (same asset only)
    inflow   = observed − accounted_rewards
    accrue(inflow, total_weight);  accounted_rewards += inflow

Direct transfers, ``fund()`` calls and penalty inflows all reach
stakers this way.  While nothing is staked the inflow is left
unaccounted and is picked up by the first ``sync()`` after someone
stakes.

Every operation runs in the same order: sync, settle the caller,
mutate balances, then move tokens.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from stakeflow_core.config import StakeflowConfig
from stakeflow_core.contract import Contract, assign, external
from stakeflow_core.precision import checked_add, checked_mul, checked_sub, require_amount
from stakeflow_core.stake_ledger import StakeLedger

log = logging.getLogger("stakeflow.staking")


class StakingPool(Contract):
    """Stake ``stake_asset``, earn ``reward_asset``."""

    def __init__(
        self,
        address: str,
        stake_asset,
        reward_asset,
        clock: Optional[Callable[[], int]] = None,
        *,
        vesting_sink=None,
        emission_per_second: int = 0,
        start_round: int = 1,
        check_invariants: bool = False,
    ) -> None:
        super().__init__(address, clock, check_invariants)
        self.stake_asset = stake_asset
        self.reward_asset = reward_asset
        self.vesting_sink = vesting_sink
        self.emission_per_second = require_amount(emission_per_second, "emission_per_second")
        self.ledger = StakeLedger(start_round=start_round)
        self.accounted_rewards = 0
        self.last_emission = self.now()
        self.total_emitted = 0

    @classmethod
    def from_config(cls, cfg: StakeflowConfig, address: str, stake_asset, reward_asset,
                    clock: Optional[Callable[[], int]] = None,
                    vesting_sink=None) -> "StakingPool":
        start_round = cfg.staking.start_round
        if start_round is None:
            start_round = cfg.accumulator.start_round
        return cls(
            address, stake_asset, reward_asset, clock,
            vesting_sink=vesting_sink,
            emission_per_second=cfg.staking.emission_per_second,
            start_round=start_round,
            check_invariants=cfg.guard.check_invariants,
        )

    # ── funding ─────────────────────────────────────────────────────

    def _emit(self, now: int) -> int:
        elapsed = max(0, now - self.last_emission)
        if now > self.last_emission:
            assign(self, "last_emission", now)
        if self.emission_per_second == 0 or elapsed == 0:
            return 0
        amount = min(checked_mul(self.emission_per_second, elapsed),
                     self.reward_asset.mint_headroom())
        if amount:
            self.reward_asset.mint(self.address, self.address, amount)
            assign(self, "total_emitted", checked_add(self.total_emitted, amount))
        return amount

    def observed_rewards(self) -> int:
        balance = self.reward_asset.balance_of(self.address)
        if self.reward_asset is self.stake_asset:
            balance = checked_sub(balance, self.ledger.total_weight)
        return balance

    def _sync(self, now: int) -> int:
        self._emit(now)
        inflow = checked_sub(self.observed_rewards(), self.accounted_rewards)
        if inflow == 0:
            return 0
        if self.ledger.total_weight == 0:
            log.warning("%s: %d reward postponed, nothing staked", self.address, inflow,
                        extra={"amount": inflow})
            return 0
        self.ledger.accrue(inflow)
        assign(self, "accounted_rewards", checked_add(self.accounted_rewards, inflow))
        return inflow

    @external
    def sync(self) -> int:
        """Reconcile the reward balance; returns the amount accrued."""
        return self._sync(self.now())

    @external
    def fund(self, funder: str, amount: int) -> int:
        """Pull *amount* of reward asset from *funder* and distribute it."""
        require_amount(amount)
        self.reward_asset.transfer_from(self.address, funder, self.address, amount)
        return self._sync(self.now())

    # ── staking ─────────────────────────────────────────────────────

    @external
    def deposit(self, account: str, amount: int) -> None:
        self._sync(self.now())
        self.ledger.deposit(account, amount)
        self.stake_asset.transfer_from(self.address, account, self.address, amount)
        log.info("%s staked %d", account, amount, extra={"account": account, "amount": amount})

    @external
    def withdraw(self, account: str, amount: int) -> None:
        self._sync(self.now())
        self.ledger.withdraw(account, amount)
        self.stake_asset.transfer(self.address, account, amount)
        log.info("%s unstaked %d", account, amount, extra={"account": account, "amount": amount})

    @external
    def claim(self, account: str) -> int:
        """Pay out the account's settled reward; returns the amount sent."""
        self._sync(self.now())
        amount = self.ledger.claim(account)
        if amount == 0:
            return 0
        assign(self, "accounted_rewards", checked_sub(self.accounted_rewards, amount))
        if self.vesting_sink is not None:
            self.reward_asset.approve(self.address, self.vesting_sink.address, amount)
            self.vesting_sink.vest(self.address, account, amount)
        else:
            self.reward_asset.transfer(self.address, account, amount)
        log.info("%s claimed %d", account, amount, extra={"account": account, "amount": amount})
        return amount

    # ── queries ─────────────────────────────────────────────────────

    def staked_of(self, account: str) -> int:
        return self.ledger.weight_of(account)

    @property
    def total_staked(self) -> int:
        return self.ledger.total_weight

    def pending_reward(self, account: str) -> int:
        """Reward claimable now, excluding inflows not yet synced."""
        return self.ledger.reward_of(account)

    def summary(self) -> dict:
        return {
            "address": self.address,
            "stake_asset": self.stake_asset.symbol,
            "reward_asset": self.reward_asset.symbol,
            "accounted_rewards": self.accounted_rewards,
            "unaccounted_rewards": self.observed_rewards() - self.accounted_rewards,
            "total_emitted": self.total_emitted,
            **self.ledger.to_dict(),
        }
