"""
Rolling lockup window for stakeflow.

Deposits are bucketed by period (one week by default).  A bucket opens
lazily: the first deposit at or after ``start + bucket_period`` of the
current bucket starts a new one at that deposit's timestamp.

How much of an account's balance is locked is a pure view computed on
demand: walk buckets backwards from the newest and sum the account's
deposits while the bucket started inside the trailing window:

    bucket.start_timestamp >= now − window_length     (inclusive bound)

The walk stops at the first older bucket, so it visits at most
``ceil(window_length / bucket_period) + 1`` buckets no matter how many
exist.  Buckets are never deleted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

from stakeflow_core.contract import assign, store
from stakeflow_core.errors import InsufficientBalance, InvalidAmount
from stakeflow_core.precision import checked_add, checked_sub, require_amount

log = logging.getLogger("stakeflow.lockup")

SECONDS_PER_DAY: int = 86_400
SECONDS_PER_WEEK: int = 7 * SECONDS_PER_DAY

DEFAULT_BUCKET_PERIOD: int = SECONDS_PER_WEEK
DEFAULT_WINDOW_LENGTH: int = 52 * SECONDS_PER_WEEK


@dataclass
class LockupBucket:
    """Deposits made while this bucket was current."""
    index: int
    start_timestamp: int
    deposits: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "index": self.index,
            "start_timestamp": self.start_timestamp,
            "accounts": len(self.deposits),
            "total": sum(self.deposits.values()),
        }


class LockupWindow:
    """Periodic deposit buckets answering locked/unlocked balance queries."""

    def __init__(
        self,
        bucket_period: int = DEFAULT_BUCKET_PERIOD,
        window_length: int = DEFAULT_WINDOW_LENGTH,
        start_index: int = 0,
    ) -> None:
        if bucket_period <= 0:
            raise ValueError("bucket_period must be positive")
        if window_length < 0:
            raise ValueError("window_length must be non-negative")
        self.bucket_period = bucket_period
        self.window_length = window_length
        self.start_index = start_index
        self.buckets: dict[int, LockupBucket] = {}
        self.current_index: Optional[int] = None
        self.balances: dict[str, int] = {}
        self.total_balance = 0

    def iteration_bound(self, window_length: Optional[int] = None) -> int:
        window = self.window_length if window_length is None else window_length
        return -(-window // self.bucket_period) + 1

    # ── buckets ─────────────────────────────────────────────────────

    @property
    def current_bucket(self) -> Optional[LockupBucket]:
        if self.current_index is None:
            return None
        return self.buckets[self.current_index]

    def _bucket_for(self, now: int) -> LockupBucket:
        bucket = self.current_bucket
        if bucket is not None and now < bucket.start_timestamp + self.bucket_period:
            return bucket
        index = self.start_index if bucket is None else bucket.index + 1
        bucket = LockupBucket(index=index, start_timestamp=now)
        store(self.buckets, index, bucket)
        assign(self, "current_index", index)
        log.debug("lockup bucket %d opened at %d", index, now, extra={"round": index})
        return bucket

    def _window_buckets(self, now: int, window_length: Optional[int]) -> list[LockupBucket]:
        """Buckets still inside the window, newest first."""
        window = self.window_length if window_length is None else window_length
        cutoff = now - window
        found: list[LockupBucket] = []
        index = self.current_index
        while index is not None and index >= self.start_index:
            bucket = self.buckets[index]
            if bucket.start_timestamp < cutoff:
                break
            found.append(bucket)
            index -= 1
        return found

    # ── mutations ───────────────────────────────────────────────────

    def record_deposit(self, account: str, amount: int, now: int) -> int:
        """Add *amount* to the current bucket; returns the bucket index."""
        require_amount(amount)
        if amount == 0:
            raise InvalidAmount("ZERO_AMOUNT", "deposit amount must be positive")
        bucket = self._bucket_for(now)
        store(bucket.deposits, account, checked_add(bucket.deposits.get(account, 0), amount))
        store(self.balances, account, checked_add(self.balances.get(account, 0), amount))
        assign(self, "total_balance", checked_add(self.total_balance, amount))
        return bucket.index

    def release(self, account: str, amount: int, now: int,
                window_length: Optional[int] = None) -> int:
        """
        Remove *amount* from the account's balance.

        Unlocked value goes first; any remainder is drawn from locked
        buckets oldest-first.  Returns the locked portion drawn.
        """
        require_amount(amount)
        balance = self.balances.get(account, 0)
        if amount > balance:
            raise InsufficientBalance(
                "INSUFFICIENT_BALANCE", f"{account} holds {balance}, asked {amount}")

        in_window = self._window_buckets(now, window_length)
        locked = sum(b.deposits.get(account, 0) for b in in_window)
        locked_drawn = max(0, amount - (balance - locked))

        remaining = locked_drawn
        for bucket in reversed(in_window):
            if remaining == 0:
                break
            held = bucket.deposits.get(account, 0)
            take = min(held, remaining)
            if take:
                store(bucket.deposits, account, held - take)
                remaining -= take

        store(self.balances, account, balance - amount)
        assign(self, "total_balance", checked_sub(self.total_balance, amount))
        return locked_drawn

    # ── views ───────────────────────────────────────────────────────

    def balance_of(self, account: str) -> int:
        return self.balances.get(account, 0)

    def check_locked(self, account: str, now: int,
                     window_length: Optional[int] = None) -> int:
        return sum(b.deposits.get(account, 0)
                   for b in self._window_buckets(now, window_length))

    def check_unlocked(self, account: str, now: int,
                       window_length: Optional[int] = None) -> int:
        return self.balance_of(account) - self.check_locked(account, now, window_length)

    def to_dict(self) -> dict:
        return {
            "bucket_period": self.bucket_period,
            "window_length": self.window_length,
            "current_index": self.current_index,
            "buckets": len(self.buckets),
            "total_balance": self.total_balance,
        }
