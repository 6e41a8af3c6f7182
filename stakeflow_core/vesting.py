"""
Vesting vault: a rolling-window lockup that other contracts vest into.

Value enters through ``vest`` (a staking pool paying out a reward) or
``deposit`` (the holder locking their own tokens).  Each entry is
recorded in a :class:`LockupWindow` bucket and stays locked until its
bucket falls out of the trailing window.

  * ``withdraw`` draws only from the unlocked portion.
  * ``withdraw_early`` may also draw locked value; ``early_exit_penalty_bps``
    of the locked part stays in the vault.

Kept penalties are not booked anywhere explicitly.  They raise the
vault's token balance above principal plus accounted rewards, and the
next ``sync()`` distributes that surplus to every remaining holder in
proportion to their balance (locked and unlocked alike).
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from stakeflow_core.config import StakeflowConfig
from stakeflow_core.contract import Contract, assign, external
from stakeflow_core.errors import InsufficientBalance
from stakeflow_core.lockup import DEFAULT_BUCKET_PERIOD, DEFAULT_WINDOW_LENGTH, LockupWindow
from stakeflow_core.precision import (
    BPS_DENOMINATOR,
    apply_bps,
    checked_add,
    checked_sub,
    require_amount,
)
from stakeflow_core.stake_ledger import StakeLedger

log = logging.getLogger("stakeflow.vesting")


class VestingVault(Contract):
    """Rolling-window lockup of one asset with penalty redistribution."""

    def __init__(
        self,
        address: str,
        asset,
        clock: Optional[Callable[[], int]] = None,
        *,
        bucket_period: int = DEFAULT_BUCKET_PERIOD,
        window_length: int = DEFAULT_WINDOW_LENGTH,
        start_index: int = 0,
        early_exit_penalty_bps: int = 0,
        start_round: int = 1,
        check_invariants: bool = False,
    ) -> None:
        super().__init__(address, clock, check_invariants)
        if not 0 <= early_exit_penalty_bps <= BPS_DENOMINATOR:
            raise ValueError("early_exit_penalty_bps must be within 0..10000")
        self.asset = asset
        self.early_exit_penalty_bps = early_exit_penalty_bps
        self.window = LockupWindow(bucket_period, window_length, start_index)
        self.ledger = StakeLedger(start_round=start_round)
        self.accounted_rewards = 0
        self.penalties_collected = 0

    @classmethod
    def from_config(cls, cfg: StakeflowConfig, address: str, asset,
                    clock: Optional[Callable[[], int]] = None) -> "VestingVault":
        return cls(
            address, asset, clock,
            bucket_period=cfg.lockup.bucket_period,
            window_length=cfg.lockup.window_length,
            start_index=cfg.lockup.start_index,
            early_exit_penalty_bps=cfg.lockup.early_exit_penalty_bps,
            start_round=cfg.accumulator.start_round,
            check_invariants=cfg.guard.check_invariants,
        )

    # ── reconciliation ──────────────────────────────────────────────

    def observed_rewards(self) -> int:
        return checked_sub(self.asset.balance_of(self.address), self.ledger.total_weight)

    def _sync(self) -> int:
        inflow = checked_sub(self.observed_rewards(), self.accounted_rewards)
        if inflow == 0:
            return 0
        if self.ledger.total_weight == 0:
            log.warning("%s: %d surplus postponed, nothing locked", self.address, inflow,
                        extra={"amount": inflow})
            return 0
        self.ledger.accrue(inflow)
        assign(self, "accounted_rewards", checked_add(self.accounted_rewards, inflow))
        return inflow

    @external
    def sync(self) -> int:
        return self._sync()

    # ── entry ───────────────────────────────────────────────────────

    def _lock(self, funder: str, account: str, amount: int) -> None:
        require_amount(amount)
        self._sync()
        self.ledger.deposit(account, amount)
        self.window.record_deposit(account, amount, self.now())
        self.asset.transfer_from(self.address, funder, self.address, amount)

    @external
    def vest(self, funder: str, account: str, amount: int) -> None:
        """Lock *amount* pulled from *funder* on behalf of *account*."""
        self._lock(funder, account, amount)
        log.info("vested %d for %s from %s", amount, account, funder,
                 extra={"account": account, "amount": amount})

    @external
    def deposit(self, account: str, amount: int) -> None:
        self._lock(account, account, amount)
        log.info("%s locked %d", account, amount, extra={"account": account, "amount": amount})

    # ── exit ────────────────────────────────────────────────────────

    @external
    def withdraw(self, account: str, amount: int) -> None:
        """Withdraw from the unlocked portion only."""
        require_amount(amount)
        now = self.now()
        self._sync()
        unlocked = self.window.check_unlocked(account, now)
        if amount > unlocked:
            raise InsufficientBalance(
                "LOCKED", f"{account} has {unlocked} unlocked, asked {amount}")
        self.ledger.withdraw(account, amount)
        self.window.release(account, amount, now)
        self.asset.transfer(self.address, account, amount)

    @external
    def withdraw_early(self, account: str, amount: int) -> tuple[int, int]:
        """
        Withdraw *amount*, drawing locked value if needed.

        Returns ``(paid, penalty)``; the penalty stays in the vault.
        """
        require_amount(amount)
        now = self.now()
        self._sync()
        self.ledger.withdraw(account, amount)
        locked_drawn = self.window.release(account, amount, now)
        penalty = apply_bps(locked_drawn, self.early_exit_penalty_bps)
        paid = amount - penalty
        if paid:
            self.asset.transfer(self.address, account, paid)
        if penalty:
            assign(self, "penalties_collected", checked_add(self.penalties_collected, penalty))
        log.info("%s exited early: amount=%d locked=%d penalty=%d",
                 account, amount, locked_drawn, penalty,
                 extra={"account": account, "amount": amount})
        return paid, penalty

    @external
    def claim(self, account: str) -> int:
        """Pay out the account's share of redistributed penalties and inflows."""
        self._sync()
        amount = self.ledger.claim(account)
        if amount == 0:
            return 0
        assign(self, "accounted_rewards", checked_sub(self.accounted_rewards, amount))
        self.asset.transfer(self.address, account, amount)
        return amount

    # ── queries ─────────────────────────────────────────────────────

    def balance_of(self, account: str) -> int:
        return self.window.balance_of(account)

    def locked_balance(self, account: str, now: Optional[int] = None) -> int:
        return self.window.check_locked(account, self.now() if now is None else now)

    def unlocked_balance(self, account: str, now: Optional[int] = None) -> int:
        return self.window.check_unlocked(account, self.now() if now is None else now)

    def pending_reward(self, account: str) -> int:
        return self.ledger.reward_of(account)

    def summary(self) -> dict:
        return {
            "address": self.address,
            "asset": self.asset.symbol,
            "accounted_rewards": self.accounted_rewards,
            "penalties_collected": self.penalties_collected,
            **self.window.to_dict(),
            **self.ledger.to_dict(),
        }
