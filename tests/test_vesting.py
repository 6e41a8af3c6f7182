"""
Tests for the rolling-window vesting vault.

Covers:
  - deposit / vest lock value in the current bucket
  - Inclusive unlock boundary at T + window
  - withdraw() limited to unlocked value
  - withdraw_early() penalty and redistribution to remaining holders
  - Rollback of vault state on failure
"""

import logging

import pytest

from stakeflow_core.config import StakeflowConfig
from stakeflow_core.errors import ArithmeticFault, InsufficientBalance, InvalidAmount
from stakeflow_core.lockup import SECONDS_PER_WEEK
from stakeflow_core.precision import U256_MAX
from stakeflow_core.vesting import VestingVault

WINDOW = 4 * SECONDS_PER_WEEK


class TestLocking:
    def test_deposit_locks(self, vault, rwd):
        vault.deposit("alice", 100)
        assert vault.balance_of("alice") == 100
        assert vault.locked_balance("alice") == 100
        assert vault.unlocked_balance("alice") == 0
        assert rwd.balance_of("vault") == 100

    def test_vest_on_behalf(self, vault, rwd):
        rwd.mint("minter", "treasury", 40)
        rwd.approve("treasury", "vault", 40)
        vault.vest("treasury", "alice", 40)
        assert vault.balance_of("alice") == 40
        assert rwd.balance_of("treasury") == 0

    def test_zero_deposit(self, vault):
        with pytest.raises(InvalidAmount):
            vault.deposit("alice", 0)

    def test_unlock_boundary(self, vault, clock):
        t = clock()
        vault.deposit("alice", 100)
        clock.set(t + WINDOW - 1)
        assert vault.locked_balance("alice") == 100
        clock.set(t + WINDOW)
        assert vault.locked_balance("alice") == 100
        clock.set(t + WINDOW + 1)
        assert vault.locked_balance("alice") == 0
        assert vault.unlocked_balance("alice") == 100

    def test_explicit_time_views(self, vault, clock):
        t = clock()
        vault.deposit("alice", 100)
        assert vault.locked_balance("alice", t + WINDOW + 1) == 0
        assert vault.unlocked_balance("alice", t) == 0


class TestWithdraw:
    def test_locked_value_refused(self, vault, rwd):
        vault.deposit("alice", 100)
        with pytest.raises(InsufficientBalance) as exc:
            vault.withdraw("alice", 1)
        assert exc.value.code == "LOCKED"
        assert vault.balance_of("alice") == 100
        assert rwd.balance_of("alice") == 900

    def test_withdraw_after_window(self, vault, rwd, clock):
        vault.deposit("alice", 100)
        clock.advance(WINDOW + 1)
        vault.withdraw("alice", 100)
        assert vault.balance_of("alice") == 0
        assert rwd.balance_of("alice") == 1_000

    def test_mixed_buckets(self, vault, clock):
        vault.deposit("alice", 100)
        clock.advance(2 * SECONDS_PER_WEEK)
        vault.deposit("alice", 50)
        clock.advance(2 * SECONDS_PER_WEEK + 1)
        assert vault.unlocked_balance("alice") == 100
        vault.withdraw("alice", 100)
        with pytest.raises(InsufficientBalance):
            vault.withdraw("alice", 1)
        assert vault.locked_balance("alice") == 50


class TestEarlyExit:
    def test_penalty_on_locked_part(self, vault, rwd):
        vault.deposit("alice", 100)
        paid, penalty = vault.withdraw_early("alice", 100)
        assert (paid, penalty) == (50, 50)
        assert rwd.balance_of("alice") == 950
        assert vault.penalties_collected == 50

    def test_no_penalty_on_unlocked_part(self, vault, clock):
        vault.deposit("alice", 100)
        clock.advance(WINDOW + 1)
        vault.deposit("alice", 20)
        paid, penalty = vault.withdraw_early("alice", 110)
        assert penalty == 5
        assert paid == 105
        assert vault.balance_of("alice") == 10

    def test_penalty_redistributed(self, vault, rwd):
        vault.deposit("alice", 100)
        vault.deposit("bob", 100)
        vault.withdraw_early("alice", 100)
        assert vault.sync() == 50
        assert vault.pending_reward("bob") == 50
        assert vault.pending_reward("alice") == 0
        assert vault.claim("bob") == 50
        assert rwd.balance_of("bob") == 950
        assert vault.claim("bob") == 0

    def test_penalty_kept_when_nobody_left(self, vault, rwd):
        vault.deposit("alice", 100)
        vault.withdraw_early("alice", 100)
        assert vault.sync() == 0
        assert rwd.balance_of("vault") == 50
        vault.deposit("bob", 10)
        assert vault.sync() == 50
        assert vault.pending_reward("bob") == 50

    def test_full_penalty(self, rwd, clock):
        v = VestingVault("vault", rwd, clock, bucket_period=SECONDS_PER_WEEK,
                         window_length=WINDOW, early_exit_penalty_bps=10_000)
        rwd.mint("minter", "alice", 10)
        rwd.approve("alice", "vault", 10)
        v.deposit("alice", 10)
        assert v.withdraw_early("alice", 10) == (0, 10)

    def test_more_than_balance(self, vault):
        vault.deposit("alice", 10)
        with pytest.raises(InsufficientBalance):
            vault.withdraw_early("alice", 11)
        assert vault.balance_of("alice") == 10

    def test_postponed_surplus_logged(self, vault, caplog):
        vault.deposit("alice", 100)
        vault.withdraw_early("alice", 100)
        with caplog.at_level(logging.WARNING, logger="stakeflow.vesting"):
            assert vault.sync() == 0
        assert "postponed" in caplog.text

    def test_penalty_total_overflow_rolls_back(self, vault, rwd):
        vault.deposit("alice", 100)
        vault.penalties_collected = U256_MAX
        with pytest.raises(ArithmeticFault):
            vault.withdraw_early("alice", 100)
        assert vault.balance_of("alice") == 100
        assert vault.ledger.total_weight == 100
        assert rwd.balance_of("alice") == 900


class TestConfiguration:
    def test_penalty_bounds(self, rwd):
        with pytest.raises(ValueError):
            VestingVault("vault", rwd, early_exit_penalty_bps=10_001)

    def test_from_config(self, rwd, clock):
        cfg = StakeflowConfig()
        cfg.lockup.window_length = 3 * SECONDS_PER_WEEK
        cfg.lockup.early_exit_penalty_bps = 2_500
        v = VestingVault.from_config(cfg, "vault", rwd, clock)
        assert v.window.window_length == 3 * SECONDS_PER_WEEK
        assert v.early_exit_penalty_bps == 2_500

    def test_summary(self, vault):
        vault.deposit("alice", 100)
        s = vault.summary()
        assert s["total_balance"] == 100
        assert s["total_weight"] == 100
        assert s["asset"] == "RWD"
