"""
Post-operation invariant checks for stakeflow contracts.

  - Cumulative reward shares never decrease and written rounds never change
  - No account is settled past the last written round
  - Rewards settled or claimed never exceed funding accrued
  - Total staked weight equals the sum of account weights
  - Lockup balances match staked weights and never go negative
  - Auction rounds are contiguous, ``ended`` never flips back
  - Confirmed funds cover withdrawals; minted totals add up
  - Each account tracks at most two subscription rounds

``capture()`` records what must not change; ``verify()`` runs every
check.  Contracts with invariant checking enabled roll the operation
back when a check fails.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional


@dataclass
class ContractSnapshot:
    """Fields captured before an operation."""
    cumulative: dict[int, int] = field(default_factory=dict)
    ended_rounds: set[int] = field(default_factory=set)
    current_round: Optional[int] = None
    withdrawn_funds: int = 0


class InvariantChecker:
    """
    Captures a pre-operation snapshot of a contract and validates
    invariants after the operation is applied.
    """

    def __init__(self):
        self._snapshot: ContractSnapshot | None = None

    def capture(self, contract) -> None:
        snap = ContractSnapshot()
        ledger = getattr(contract, "ledger", None)
        if ledger is not None:
            snap.cumulative = dict(ledger.accumulator.cumulative)
        auction = getattr(contract, "auction", None)
        if auction is not None:
            snap.ended_rounds = {i for i, r in auction.rounds.items() if r.ended}
            snap.current_round = auction.current_round
            snap.withdrawn_funds = auction.withdrawn_funds
        self._snapshot = snap

    def verify(self, contract) -> tuple[bool, str]:
        """Run every check.  Returns (passed, error_message)."""
        errors: list[str] = []
        for check in (
            self._check_accumulator,
            self._check_conservation,
            self._check_weights,
            self._check_lockup,
            self._check_auction_rounds,
            self._check_auction_funds,
            self._check_account_rounds,
        ):
            ok, msg = check(contract)
            if not ok:
                errors.append(msg)

        self._snapshot = None
        if errors:
            return False, "; ".join(errors)
        return True, ""

    # ── reward accounting ───────────────────────────────────────────

    def _check_accumulator(self, contract) -> tuple[bool, str]:
        """Cumulative shares are monotonic, append-only and settlements in range."""
        ledger = getattr(contract, "ledger", None)
        if ledger is None:
            return True, ""
        acc = ledger.accumulator
        prev = None
        for index in range(acc.start_round - 1, acc.current_round):
            if index not in acc.cumulative:
                return False, f"Missing cumulative share for round {index}"
            value = acc.cumulative[index]
            if prev is not None and value < prev:
                return False, f"Cumulative share decreased at round {index}: {prev} -> {value}"
            prev = value
        if self._snapshot is not None:
            for index, value in self._snapshot.cumulative.items():
                if acc.cumulative.get(index) != value:
                    return False, f"Round {index} cumulative share was rewritten"
        for account, entry in acc.settlements.items():
            if entry.settled_round > acc.last_round:
                return (False,
                        f"{account} settled through round {entry.settled_round} "
                        f"beyond last round {acc.last_round}")
            if entry.pending_reward < 0:
                return False, f"Negative pending reward for {account}"
        return True, ""

    def _check_conservation(self, contract) -> tuple[bool, str]:
        """Settled plus claimed rewards never exceed funding accrued."""
        ledger = getattr(contract, "ledger", None)
        if ledger is None:
            return True, ""
        acc = ledger.accumulator
        paid = acc.outstanding() + acc.total_claimed
        if paid > acc.total_accrued:
            return (False,
                    f"Reward creation detected: settled+claimed {paid} "
                    f"exceeds accrued {acc.total_accrued}")
        accounted = getattr(contract, "accounted_rewards", None)
        if accounted is not None and accounted != acc.total_accrued - acc.total_claimed:
            return (False,
                    f"Accounted rewards {accounted} != accrued {acc.total_accrued} "
                    f"- claimed {acc.total_claimed}")
        return True, ""

    def _check_weights(self, contract) -> tuple[bool, str]:
        ledger = getattr(contract, "ledger", None)
        if ledger is None:
            return True, ""
        for account, weight in ledger.weights.items():
            if weight < 0:
                return False, f"Negative weight for {account}: {weight}"
        total = sum(ledger.weights.values())
        if total != ledger.total_weight:
            return False, f"Weight mismatch: total_weight={ledger.total_weight} but sum={total}"
        return True, ""

    def _check_lockup(self, contract) -> tuple[bool, str]:
        """Lockup balances are non-negative and mirror staked weights."""
        window = getattr(contract, "window", None)
        if window is None:
            return True, ""
        for account, balance in window.balances.items():
            if balance < 0:
                return False, f"Negative lockup balance for {account}: {balance}"
        if sum(window.balances.values()) != window.total_balance:
            return False, "Lockup total_balance does not match account balances"
        ledger = getattr(contract, "ledger", None)
        if ledger is not None:
            for account in set(window.balances) | set(ledger.weights):
                if window.balances.get(account, 0) != ledger.weights.get(account, 0):
                    return (False,
                            f"Lockup balance and weight disagree for {account}: "
                            f"{window.balances.get(account, 0)} vs {ledger.weights.get(account, 0)}")
        return True, ""

    # ── subscription auction ────────────────────────────────────────

    def _check_auction_rounds(self, contract) -> tuple[bool, str]:
        auction = getattr(contract, "auction", None)
        if auction is None or auction.current_round is None:
            return True, ""
        expected = list(range(auction.start_round, auction.current_round + 1))
        if sorted(auction.rounds) != expected:
            return False, f"Auction rounds not contiguous: {sorted(auction.rounds)}"
        for index, rnd in auction.rounds.items():
            if index < auction.current_round and not rnd.ended:
                return False, f"Round {index} superseded before it ended"
            if rnd.total_contribution != sum(rnd.contributions.values()):
                return False, f"Round {index} total contribution mismatch"
        if self._snapshot is not None:
            for index in self._snapshot.ended_rounds:
                if not auction.rounds[index].ended:
                    return False, f"Round {index} ended flag reverted"
            if (self._snapshot.current_round is not None
                    and auction.current_round < self._snapshot.current_round):
                return False, "Auction current round moved backwards"
        return True, ""

    def _check_auction_funds(self, contract) -> tuple[bool, str]:
        auction = getattr(contract, "auction", None)
        if auction is None:
            return True, ""
        if auction.withdrawn_funds > auction.confirmed_funds:
            return (False,
                    f"Withdrawn {auction.withdrawn_funds} exceeds confirmed "
                    f"{auction.confirmed_funds}")
        minted = sum(r.minted for r in auction.rounds.values())
        if minted != auction.total_minted:
            return False, f"Minted total mismatch: {auction.total_minted} vs {minted}"
        if self._snapshot is not None and auction.withdrawn_funds < self._snapshot.withdrawn_funds:
            return False, "Withdrawn funds decreased"
        return True, ""

    def _check_account_rounds(self, contract) -> tuple[bool, str]:
        auction = getattr(contract, "auction", None)
        if auction is None:
            return True, ""
        for account, index in auction.account_rounds.items():
            if index.latest is None:
                return False, f"{account} has a round index without a latest round"
            if index.previous is not None and index.previous >= index.latest:
                return (False,
                        f"{account} round index out of order: "
                        f"{index.previous} >= {index.latest}")
        return True, ""
