"""
Round-indexed reward accumulator for stakeflow.

Turns funding events into per-account entitlements without visiting
every account.  Each funding event closes one round and appends the
reward-per-unit-weight it carried to a cumulative table:

    round_share            = funding × SCALE / total_weight
    cumulative[round]      = cumulative[round − 1] + round_share
    current_round         += 1

An account remembers the last round it was settled through.  Settling
folds everything since then into its pending reward:

    owed = (cumulative[current_round − 1] − cumulative[settled_round])
           × weight / SCALE

Rules the callers must follow
─────────────────────────────
* Settle an account before reading its pending reward and before its
  weight (or the total weight) changes.
* Funding with ``total_weight == 0`` is postponed: nothing is written
  and the caller keeps the amount unaccounted until someone stakes.

Round numbering is configurable.  The table is seeded with a settled
bootstrap entry ``cumulative[start_round − 1] = 0`` and the first
funding event writes ``start_round``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from stakeflow_core.contract import assign, store
from stakeflow_core.precision import (
    SCALE,
    checked_add,
    checked_sub,
    mul_div,
    require_amount,
)

log = logging.getLogger("stakeflow.accumulator")


@dataclass
class Settlement:
    """Reward bookkeeping for one account."""
    settled_round: int
    pending_reward: int = 0

    def to_dict(self) -> dict:
        return {
            "settled_round": self.settled_round,
            "pending_reward": self.pending_reward,
        }


class RewardAccumulator:
    """Append-only cumulative share ledger with lazy per-account settlement."""

    def __init__(self, start_round: int = 1) -> None:
        self.start_round = start_round
        self.current_round = start_round
        self.cumulative: dict[int, int] = {start_round - 1: 0}
        self.settlements: dict[str, Settlement] = {}
        self.total_accrued = 0
        self.total_claimed = 0

    # ── rounds ──────────────────────────────────────────────────────

    @property
    def last_round(self) -> int:
        """Most recent round with a written cumulative share."""
        return self.current_round - 1

    def cumulative_share(self, round_index: int) -> int:
        try:
            return self.cumulative[round_index]
        except KeyError:
            raise KeyError(f"round {round_index} has not been written") from None

    def round_share(self, round_index: int) -> int:
        return self.cumulative_share(round_index) - self.cumulative_share(round_index - 1)

    def accrue(self, funding: int, total_weight: int) -> int:
        """
        Close a round distributing *funding* over *total_weight*.

        Returns the round share written, or 0 when the call was a no-op
        (zero funding, or no weight to distribute to).
        """
        require_amount(funding, "funding")
        require_amount(total_weight, "total_weight")
        if funding == 0:
            return 0
        if total_weight == 0:
            log.warning("funding of %d postponed: no weight staked", funding)
            return 0

        share = mul_div(funding, SCALE, total_weight)
        index = self.current_round
        store(self.cumulative, index, checked_add(self.cumulative[index - 1], share))
        assign(self, "current_round", index + 1)
        assign(self, "total_accrued", checked_add(self.total_accrued, funding))
        log.info("round %d closed: funding=%d weight=%d share=%d",
                 index, funding, total_weight, share,
                 extra={"round": index, "amount": funding})
        return share

    # ── accounts ────────────────────────────────────────────────────

    def settlement(self, account: str) -> Settlement:
        entry = self.settlements.get(account)
        if entry is None:
            entry = Settlement(settled_round=self.start_round - 1)
            store(self.settlements, account, entry)
        return entry

    def _owed(self, entry: Settlement, weight: int) -> int:
        if weight == 0:
            return 0
        delta = checked_sub(self.cumulative[self.last_round],
                            self.cumulative[entry.settled_round])
        return mul_div(delta, weight, SCALE)

    def settle(self, account: str, weight: int) -> int:
        """Fold rounds since the account's last settlement into its pending reward."""
        require_amount(weight, "weight")
        entry = self.settlement(account)
        owed = self._owed(entry, weight)
        if owed:
            assign(entry, "pending_reward", checked_add(entry.pending_reward, owed))
        if entry.settled_round != self.last_round:
            assign(entry, "settled_round", self.last_round)
        return owed

    def pending(self, account: str, weight: int) -> int:
        """Pending reward as if settled now, without mutating anything."""
        entry = self.settlements.get(account)
        if entry is None:
            entry = Settlement(settled_round=self.start_round - 1)
        return entry.pending_reward + self._owed(entry, weight)

    def take_pending(self, account: str) -> int:
        """Zero the account's (already settled) pending reward and return it."""
        entry = self.settlement(account)
        amount = entry.pending_reward
        if amount:
            assign(entry, "pending_reward", 0)
            assign(self, "total_claimed", checked_add(self.total_claimed, amount))
        return amount

    def outstanding(self) -> int:
        """Settled but unclaimed rewards across all accounts."""
        return sum(e.pending_reward for e in self.settlements.values())

    def to_dict(self) -> dict:
        return {
            "start_round": self.start_round,
            "current_round": self.current_round,
            "cumulative_share": self.cumulative[self.last_round],
            "total_accrued": self.total_accrued,
            "total_claimed": self.total_claimed,
            "accounts": len(self.settlements),
        }
