"""
Capped fixed-price subscription auction for stakeflow.

Rounds run back to back.  Each one is priced once, when it opens, from
the oracle and capped at a fraction of the minted asset's current
supply:

    OPEN ──(deadline passes)──▶ SETTLING ──(same update)──▶ RELEASING ──▶ CLOSED

  * **OPEN** — contributions in the quote asset are recorded.
  * **SETTLING** — the subscription window has elapsed but no call has
    run ``update()`` yet.  The first update settles the round:

        cap_in_quote = mint_cap × price / SCALE
        oversubscribed (total > cap_in_quote):
            refund_ratio = (total − cap_in_quote) × SCALE / total
            minted       = mint_cap
            confirmed    = cap_in_quote
        otherwise:
            refund_ratio = 0
            minted       = total × SCALE / price
            confirmed    = total
        release_rate = minted × SCALE / total / release_duration

  * **RELEASING** — minted value unlocks linearly per contributed unit
    until ``release_end``; the pro-rata refund is claimable once.
  * **CLOSED** — nothing left to claim; there is no stored flag.

Once a round's release is over the next ``update()`` opens the next
round.  ``update()`` advances at most one step per call; a long-idle
auction catches up over several calls.

Each account tracks only the two most recent rounds it contributed to
(:class:`AccountRoundIndex`).  Before a third round displaces the
oldest one, that round is folded into the account's claimable balances,
so no entitlement is ever dropped.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from stakeflow_core.contract import assign, include, remove, store
from stakeflow_core.errors import InvalidAmount, InvalidRound
from stakeflow_core.precision import (
    SCALE,
    apply_bps,
    checked_add,
    checked_mul,
    mul_div,
    require_amount,
)

log = logging.getLogger("stakeflow.auction")


class RoundPhase(str, Enum):
    OPEN = "open"
    SETTLING = "settling"
    RELEASING = "releasing"
    CLOSED = "closed"


@dataclass
class SubscriptionRound:
    """One priced, capped subscription round and its settlement."""
    index: int
    price: int                  # quote per minted unit, fixed-point
    mint_cap: int
    start_time: int
    subscription_window: int
    release_duration: int
    contributions: dict[str, int] = field(default_factory=dict)
    total_contribution: int = 0
    ended: bool = False
    minted: int = 0
    confirmed: int = 0
    refund_ratio: int = 0
    release_rate: int = 0       # minted per contributed unit per second, fixed-point
    last_claim: dict[str, int] = field(default_factory=dict)
    refund_claimed: set[str] = field(default_factory=set)

    @property
    def subscription_end(self) -> int:
        return self.start_time + self.subscription_window

    @property
    def release_end(self) -> int:
        return self.subscription_end + self.release_duration

    @property
    def cap_in_quote(self) -> int:
        return mul_div(self.mint_cap, self.price, SCALE)

    @property
    def oversubscribed(self) -> bool:
        return self.refund_ratio > 0

    def drained(self, account: str) -> bool:
        if self.contributions.get(account, 0) == 0:
            return True
        released = self.last_claim.get(account, self.subscription_end) >= self.release_end
        refunded = self.refund_ratio == 0 or account in self.refund_claimed
        return released and refunded

    def phase(self, now: int) -> RoundPhase:
        if not self.ended:
            return RoundPhase.OPEN if now <= self.subscription_end else RoundPhase.SETTLING
        if now >= self.release_end and all(self.drained(a) for a in self.contributions):
            return RoundPhase.CLOSED
        return RoundPhase.RELEASING

    def to_dict(self, now: Optional[int] = None) -> dict:
        d = {
            "index": self.index,
            "price": self.price,
            "mint_cap": self.mint_cap,
            "start_time": self.start_time,
            "subscription_end": self.subscription_end,
            "release_end": self.release_end,
            "total_contribution": self.total_contribution,
            "contributors": len(self.contributions),
            "ended": self.ended,
            "minted": self.minted,
            "confirmed": self.confirmed,
            "refund_ratio": self.refund_ratio,
            "release_rate": self.release_rate,
        }
        if now is not None:
            d["phase"] = self.phase(now).value
        return d


@dataclass
class AccountRoundIndex:
    """The two most recent rounds an account contributed to."""
    previous: Optional[int] = None
    latest: Optional[int] = None

    def rounds(self) -> list[int]:
        return [r for r in (self.previous, self.latest) if r is not None]

    def shift(self, round_index: int) -> Optional[int]:
        """Make *round_index* the latest round; returns the evicted one."""
        evicted = self.previous
        assign(self, "previous", self.latest)
        assign(self, "latest", round_index)
        return evicted


class SubscriptionAuction:
    """
    Round table, per-account round index and claimable balances.

    Collaborators:
      ``oracle``        — ``get_price()``, read once per round open
      ``minted_asset``  — ``total_supply()``, ``max_supply()``,
                          ``mint(minter, to, amount)``
      ``holder``        — address receiving minted value at settlement
    """

    def __init__(
        self,
        oracle,
        minted_asset,
        holder: str,
        *,
        subscription_window: int,
        release_duration: int,
        mint_cap_bps: int,
        min_mint_cap: int = 0,
        start_round: int = 1,
    ) -> None:
        if subscription_window <= 0 or release_duration <= 0:
            raise ValueError("subscription_window and release_duration must be positive")
        self.oracle = oracle
        self.minted_asset = minted_asset
        self.holder = holder
        self.subscription_window = subscription_window
        self.release_duration = release_duration
        self.mint_cap_bps = mint_cap_bps
        self.min_mint_cap = min_mint_cap
        self.start_round = start_round

        self.rounds: dict[int, SubscriptionRound] = {}
        self.current_round: Optional[int] = None
        self.account_rounds: dict[str, AccountRoundIndex] = {}
        self.claimable_minted: dict[str, int] = {}
        self.claimable_refund: dict[str, int] = {}
        self.confirmed_funds = 0
        self.withdrawn_funds = 0
        self.total_minted = 0

    # ── round lifecycle ─────────────────────────────────────────────

    @property
    def round(self) -> Optional[SubscriptionRound]:
        if self.current_round is None:
            return None
        return self.rounds[self.current_round]

    def _mint_headroom(self) -> int:
        return self.minted_asset.max_supply() - self.minted_asset.total_supply()

    def _next_mint_cap(self) -> int:
        supply = self.minted_asset.total_supply()
        cap = max(apply_bps(supply, self.mint_cap_bps), self.min_mint_cap)
        return min(cap, self._mint_headroom())

    def _open(self, index: int, now: int) -> SubscriptionRound:
        price = self.oracle.get_price()
        require_amount(price, "price")
        rnd = SubscriptionRound(
            index=index,
            price=price,
            mint_cap=self._next_mint_cap(),
            start_time=now,
            subscription_window=self.subscription_window,
            release_duration=self.release_duration,
        )
        store(self.rounds, index, rnd)
        assign(self, "current_round", index)
        log.info("subscription round %d opened: price=%d mint_cap=%d",
                 index, rnd.price, rnd.mint_cap, extra={"round": index})
        return rnd

    def _settle(self, rnd: SubscriptionRound) -> None:
        total = rnd.total_contribution
        if total == 0:
            minted, confirmed, ratio = 0, 0, 0
        elif rnd.price == 0:
            # No valid price: nothing mints and every contribution is refundable.
            minted, confirmed, ratio = 0, 0, SCALE
        else:
            cap_in_quote = rnd.cap_in_quote
            if total > cap_in_quote:
                ratio = mul_div(total - cap_in_quote, SCALE, total)
                minted = rnd.mint_cap
                confirmed = cap_in_quote
            else:
                ratio = 0
                minted = mul_div(total, SCALE, rnd.price)
                confirmed = total

            # Headroom can shrink between open and settle; unminted value is refunded.
            headroom = self._mint_headroom()
            if minted > headroom:
                log.warning("subscription round %d: mint clipped from %d to headroom %d",
                            rnd.index, minted, headroom, extra={"round": rnd.index})
                minted = headroom
                confirmed = mul_div(minted, rnd.price, SCALE)
                ratio = mul_div(total - confirmed, SCALE, total)

        assign(rnd, "minted", minted)
        assign(rnd, "confirmed", confirmed)
        assign(rnd, "refund_ratio", ratio)
        if minted > 0:
            assign(rnd, "release_rate", mul_div(minted, SCALE, total) // rnd.release_duration)
            self.minted_asset.mint(self.holder, self.holder, minted)
            assign(self, "total_minted", checked_add(self.total_minted, minted))
        assign(rnd, "ended", True)
        assign(self, "confirmed_funds", checked_add(self.confirmed_funds, confirmed))
        log.info("subscription round %d settled: total=%d minted=%d refund_ratio=%d",
                 rnd.index, total, minted, ratio, extra={"round": rnd.index})

    def update(self, now: int) -> Optional[RoundPhase]:
        """
        Advance the current round by at most one transition.

        Returns the phase entered (OPEN for a newly opened round,
        RELEASING for a settlement) or None when nothing was due.
        """
        rnd = self.round
        if rnd is None:
            self._open(self.start_round, now)
            return RoundPhase.OPEN
        if not rnd.ended:
            if now > rnd.subscription_end:
                self._settle(rnd)
                return RoundPhase.RELEASING
        elif now > rnd.release_end:
            self._open(rnd.index + 1, now)
            return RoundPhase.OPEN
        return None

    # ── contributions ───────────────────────────────────────────────

    def subscribe(self, account: str, round_index: int, amount: int, now: int) -> None:
        require_amount(amount)
        if amount == 0:
            raise InvalidAmount("ZERO_AMOUNT", "contribution must be positive")
        self.update(now)
        rnd = self.round
        if rnd is None or round_index != rnd.index or rnd.ended:
            current = None if rnd is None else rnd.index
            raise InvalidRound(
                "ROUND_CLOSED", f"round {round_index} is not open (current round {current})")

        index = self.account_rounds.get(account)
        if index is None:
            index = AccountRoundIndex()
            store(self.account_rounds, account, index)
        if index.latest != rnd.index:
            if index.previous is not None:
                self._settle_account_round(account, index.previous, now)
            index.shift(rnd.index)

        store(rnd.contributions, account, checked_add(rnd.contributions.get(account, 0), amount))
        assign(rnd, "total_contribution", checked_add(rnd.total_contribution, amount))
        log.debug("subscribe %s round %d +%d", account, rnd.index, amount,
                  extra={"account": account, "round": rnd.index, "amount": amount})

    # ── entitlements ────────────────────────────────────────────────

    def check_round_entitlement(self, account: str, round_index: int,
                                now: int) -> tuple[int, int]:
        """Unclaimed ``(minted, refund)`` for one account in one round."""
        rnd = self.rounds.get(round_index)
        if rnd is None or not rnd.ended:
            return 0, 0
        contribution = rnd.contributions.get(account, 0)
        if contribution == 0:
            return 0, 0
        begin = rnd.last_claim.get(account, rnd.subscription_end)
        elapsed = max(0, min(now, rnd.release_end) - begin)
        minted = mul_div(checked_mul(elapsed, rnd.release_rate), contribution, SCALE)
        refund = 0
        if account not in rnd.refund_claimed:
            refund = mul_div(rnd.refund_ratio, contribution, SCALE)
        return minted, refund

    def _settle_account_round(self, account: str, round_index: int, now: int) -> None:
        rnd = self.rounds.get(round_index)
        if rnd is None or not rnd.ended:
            return
        minted, refund = self.check_round_entitlement(account, round_index, now)
        begin = rnd.last_claim.get(account, rnd.subscription_end)
        store(rnd.last_claim, account, max(begin, min(now, rnd.release_end)))
        include(rnd.refund_claimed, account)
        if minted:
            store(self.claimable_minted, account,
                  checked_add(self.claimable_minted.get(account, 0), minted))
        if refund:
            store(self.claimable_refund, account,
                  checked_add(self.claimable_refund.get(account, 0), refund))

    def _settle_tracked(self, account: str, now: int) -> None:
        index = self.account_rounds.get(account)
        if index is None:
            return
        for round_index in index.rounds():
            self._settle_account_round(account, round_index, now)

    def claim_minted(self, account: str, now: int) -> int:
        """Settle tracked rounds and hand back the claimable minted amount."""
        self.update(now)
        self._settle_tracked(account, now)
        return remove(self.claimable_minted, account, 0)

    def claim_refund(self, account: str, now: int) -> int:
        """Settle tracked rounds and hand back the claimable refund."""
        self.update(now)
        self._settle_tracked(account, now)
        return remove(self.claimable_refund, account, 0)

    def pending_entitlement(self, account: str, now: int) -> tuple[int, int]:
        """``(minted, refund)`` the account could claim at *now*, without mutating."""
        minted = self.claimable_minted.get(account, 0)
        refund = self.claimable_refund.get(account, 0)
        index = self.account_rounds.get(account)
        for round_index in index.rounds() if index else []:
            m, r = self.check_round_entitlement(account, round_index, now)
            minted += m
            refund += r
        return minted, refund

    # ── admin ───────────────────────────────────────────────────────

    def withdrawable_funds(self, observed_balance: int) -> int:
        return min(self.confirmed_funds - self.withdrawn_funds, observed_balance)

    def withdraw_confirmed_funds(self, observed_balance: int) -> int:
        """Release confirmed quote funds, never more than *observed_balance*."""
        amount = self.withdrawable_funds(observed_balance)
        if amount:
            assign(self, "withdrawn_funds", checked_add(self.withdrawn_funds, amount))
        return amount

    def to_dict(self, now: Optional[int] = None) -> dict:
        return {
            "current_round": self.current_round,
            "rounds": len(self.rounds),
            "confirmed_funds": self.confirmed_funds,
            "withdrawn_funds": self.withdrawn_funds,
            "total_minted": self.total_minted,
            "round": self.round.to_dict(now) if self.round else None,
        }
