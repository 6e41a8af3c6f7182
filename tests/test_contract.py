"""Tests for the @external execution guard and the undo log."""

import pytest

from stakeflow_core import contract as guard
from stakeflow_core.assets import FungibleAsset
from stakeflow_core.clock import ManualClock
from stakeflow_core.contract import (
    Contract,
    UndoLog,
    assign,
    atomic,
    current_log,
    external,
    include,
    remove,
    store,
)
from stakeflow_core.errors import ExternalCallFailure, ReentrancyError
from stakeflow_core.staking import StakingPool


class Counter(Contract):
    def __init__(self, asset=None, other=None):
        super().__init__("counter", ManualClock(42))
        self.value = 0
        self.history = {}
        self.tags = set()
        self.asset = asset
        self.other = other

    @external
    def bump(self, n, fail=False):
        """Add n."""
        assign(self, "value", self.value + n)
        store(self.history, len(self.history), n)
        include(self.tags, f"n{n}")
        if fail:
            raise RuntimeError("boom")
        return self.value

    @external
    def nested(self):
        assign(self, "value", self.value + 100)
        return self.bump(1)

    @external
    def pay(self, amount):
        assign(self, "value", self.value + amount)
        self.asset.mint("minter", "counter", amount)
        self.asset.transfer("counter", "alice", amount * 2)

    @external
    def bump_other(self, fail_inner, fail_outer=False):
        assign(self, "value", self.value + 1)
        try:
            self.other.bump(10, fail=fail_inner)
        except RuntimeError:
            pass
        if fail_outer:
            raise RuntimeError("outer")


class TestExternal:
    def test_runs_and_returns(self):
        c = Counter()
        assert c.bump(3) == 3
        assert c.history == {0: 3}

    def test_rollback_on_error(self):
        c = Counter()
        c.bump(3)
        with pytest.raises(RuntimeError):
            c.bump(4, fail=True)
        assert c.value == 3
        assert c.history == {0: 3}
        assert c.tags == {"n3"}
        assert not c.busy

    def test_reentry_refused(self):
        c = Counter()
        with pytest.raises(ReentrancyError) as exc:
            c.nested()
        assert exc.value.code == "REENTRANT_CALL"
        assert c.value == 0
        assert not c.busy
        assert c.bump(1) == 1

    def test_collaborators_restored(self):
        token = FungibleAsset("TKN", minters={"minter"})
        c = Counter(asset=token)
        with pytest.raises(ExternalCallFailure):
            c.pay(5)
        assert token.total_supply() == 0
        assert token.balance_of("counter") == 0
        assert c.value == 0

    def test_caught_inner_failure_undoes_inner_only(self):
        inner = Counter()
        outer = Counter(other=inner)
        outer.bump_other(fail_inner=True)
        assert outer.value == 1
        assert inner.value == 0
        assert inner.history == {}

    def test_outer_failure_undoes_inner_success(self):
        inner = Counter()
        outer = Counter(other=inner)
        with pytest.raises(RuntimeError):
            outer.bump_other(fail_inner=False, fail_outer=True)
        assert outer.value == 0
        assert inner.value == 0
        assert inner.tags == set()

    def test_log_released_after_call(self):
        c = Counter()
        c.bump(1)
        assert current_log() is None

    def test_wraps_metadata(self):
        assert Counter.bump.__name__ == "bump"
        assert Counter.bump.__doc__ == "Add n."

    def test_now_reads_clock(self):
        assert Counter().now() == 42

    def test_default_clock_is_system_clock(self):
        c = Contract("x")
        assert isinstance(c.now(), int)

    def test_verify_invariants_without_state(self):
        assert Contract("x").verify_invariants() == (True, "")


class TestUndoLog:
    def test_writes_outside_a_block_are_plain(self):
        table = {}
        store(table, "a", 1)
        assert table == {"a": 1}
        assert current_log() is None

    def test_first_write_only(self):
        table = {"a": 1}
        with atomic() as undo:
            store(table, "a", 2)
            store(table, "a", 3)
            store(table, "b", 4)
            assert len(undo) == 2

    def test_rollback_restores_and_deletes(self):
        table = {"a": 1, "b": 2}
        members = {"x"}

        class Box:
            value = 5

        box = Box()
        with pytest.raises(KeyError):
            with atomic():
                store(table, "a", 10)
                store(table, "c", 30)
                assert remove(table, "b") == 2
                include(members, "y")
                assign(box, "value", 6)
                raise KeyError("stop")
        assert table == {"a": 1, "b": 2}
        assert members == {"x"}
        assert box.value == 5

    def test_remove_missing_key(self):
        table = {}
        with atomic() as undo:
            assert remove(table, "nope", 0) == 0
            assert len(undo) == 0

    def test_nested_segment_rollback(self):
        undo = UndoLog()
        table = {"a": 1}
        token = guard._active.set(undo)
        try:
            undo.begin()
            store(table, "a", 2)
            mark = undo.begin()
            store(table, "a", 3)
            undo.rollback(mark)
            assert table == {"a": 2}
            undo.rollback(0)
            assert table == {"a": 1}
        finally:
            guard._active.reset(token)

    def test_claim_cost_independent_of_stakers(self):
        def claim_writes(stakers):
            clock = ManualClock(1_000)
            stk = FungibleAsset("STK", minters={"minter"})
            rwd = FungibleAsset("RWD", minters={"minter"})
            pool = StakingPool("pool", stk, rwd, clock)
            for i in range(stakers):
                name = f"a{i}"
                stk.mint("minter", name, 10)
                stk.approve(name, "pool", 10)
                pool.deposit(name, 10)
            rwd.mint("minter", "pool", 10 * stakers)

            seen = []
            original = pool.ledger.claim

            def spy(account):
                seen.append(len(current_log()))
                return original(account)

            pool.ledger.claim = spy
            pool.claim("a0")
            return seen[0], len(pool.ledger.accumulator.settlements)

        small, small_accounts = claim_writes(3)
        large, large_accounts = claim_writes(2_000)
        assert large_accounts == 2_000 > small_accounts
        assert small == large
