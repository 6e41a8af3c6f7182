"""
Tests for the rolling lockup window.

Covers:
  - Lazy bucket opening at the deposit timestamp
  - Inclusive window boundary
  - Bounded backward walk
  - release(): unlocked value first, then oldest locked buckets
"""

import pytest

from stakeflow_core.contract import atomic
from stakeflow_core.errors import InsufficientBalance, InvalidAmount
from stakeflow_core.lockup import (
    DEFAULT_BUCKET_PERIOD,
    DEFAULT_WINDOW_LENGTH,
    SECONDS_PER_WEEK,
    LockupWindow,
)

T = 1_000_000
PERIOD = SECONDS_PER_WEEK
WINDOW = 4 * SECONDS_PER_WEEK


@pytest.fixture
def window():
    return LockupWindow(PERIOD, WINDOW)


class TestConstruction:
    def test_defaults(self):
        w = LockupWindow()
        assert w.bucket_period == DEFAULT_BUCKET_PERIOD
        assert w.window_length == DEFAULT_WINDOW_LENGTH
        assert w.current_bucket is None

    def test_invalid_period(self):
        with pytest.raises(ValueError):
            LockupWindow(0, WINDOW)

    def test_invalid_window(self):
        with pytest.raises(ValueError):
            LockupWindow(PERIOD, -1)

    def test_iteration_bound(self, window):
        assert window.iteration_bound() == 5
        assert window.iteration_bound(WINDOW + 1) == 6


class TestBuckets:
    def test_first_deposit_opens_bucket_at_its_time(self, window):
        idx = window.record_deposit("alice", 10, T)
        assert idx == 0
        assert window.current_bucket.start_timestamp == T

    def test_same_period_reuses_bucket(self, window):
        window.record_deposit("alice", 10, T)
        assert window.record_deposit("alice", 5, T + PERIOD - 1) == 0
        assert window.buckets[0].deposits["alice"] == 15

    def test_next_period_opens_new_bucket(self, window):
        window.record_deposit("alice", 10, T)
        assert window.record_deposit("alice", 5, T + PERIOD) == 1
        assert window.current_bucket.start_timestamp == T + PERIOD

    def test_idle_gap_opens_one_bucket(self, window):
        window.record_deposit("alice", 10, T)
        assert window.record_deposit("alice", 5, T + 10 * PERIOD + 3) == 1
        assert window.buckets[1].start_timestamp == T + 10 * PERIOD + 3

    def test_custom_start_index(self):
        w = LockupWindow(PERIOD, WINDOW, start_index=7)
        assert w.record_deposit("alice", 1, T) == 7

    def test_zero_deposit_rejected(self, window):
        with pytest.raises(InvalidAmount):
            window.record_deposit("alice", 0, T)


class TestLockedBalance:
    def test_boundary(self, window):
        window.record_deposit("alice", 100, T)
        assert window.check_locked("alice", T + WINDOW - 1) == 100
        assert window.check_locked("alice", T + WINDOW) == 100
        assert window.check_locked("alice", T + WINDOW + 1) == 0
        assert window.check_unlocked("alice", T + WINDOW + 1) == 100

    def test_partial_window(self, window):
        window.record_deposit("alice", 100, T)
        window.record_deposit("alice", 50, T + 2 * PERIOD)
        now = T + WINDOW + 1
        assert window.check_locked("alice", now) == 50
        assert window.check_unlocked("alice", now) == 100

    def test_window_override(self, window):
        window.record_deposit("alice", 100, T)
        assert window.check_locked("alice", T + PERIOD, window_length=PERIOD - 1) == 0
        assert window.check_locked("alice", T + PERIOD, window_length=PERIOD) == 100

    def test_other_accounts_isolated(self, window):
        window.record_deposit("alice", 100, T)
        window.record_deposit("bob", 7, T)
        assert window.check_locked("bob", T) == 7
        assert window.balance_of("alice") == 100


class TestRelease:
    def test_unlocked_first(self, window):
        window.record_deposit("alice", 100, T)
        later = T + WINDOW + 1
        window.record_deposit("alice", 50, later)
        drawn = window.release("alice", 120, later)
        assert drawn == 20
        assert window.balance_of("alice") == 30
        assert window.check_locked("alice", later) == 30

    def test_unlocked_only(self, window):
        window.record_deposit("alice", 100, T)
        assert window.release("alice", 60, T + WINDOW + 1) == 0
        assert window.balance_of("alice") == 40

    def test_oldest_locked_first(self, window):
        window.record_deposit("alice", 10, T)
        window.record_deposit("alice", 20, T + PERIOD)
        assert window.release("alice", 15, T + PERIOD) == 15
        assert window.buckets[0].deposits["alice"] == 0
        assert window.buckets[1].deposits["alice"] == 15
        assert window.check_locked("alice", T + WINDOW + 1) == 15

    def test_release_too_much(self, window):
        window.record_deposit("alice", 10, T)
        with pytest.raises(InsufficientBalance):
            window.release("alice", 11, T)

    def test_totals(self, window):
        window.record_deposit("alice", 10, T)
        window.record_deposit("bob", 5, T)
        window.release("alice", 4, T)
        assert window.total_balance == 11

    def test_rollback(self, window):
        window.record_deposit("alice", 10, T)
        with pytest.raises(InsufficientBalance):
            with atomic():
                window.record_deposit("alice", 5, T + PERIOD)
                window.release("alice", 12, T + PERIOD)
                window.release("alice", 99, T + PERIOD)
        assert len(window.buckets) == 1
        assert window.balance_of("alice") == 10
        assert window.current_index == 0
        assert window.check_locked("alice", T) == 10
