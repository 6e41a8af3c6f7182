"""
Subscription sale contract: a :class:`SubscriptionAuction` wired to its
quote asset, minted asset and price oracle.

  * ``subscribe`` pulls the contribution in the quote asset.
  * Settlement mints the round's allocation into this contract.
  * ``claim_minted`` / ``claim_refund`` pay out from this contract.
  * ``withdraw_confirmed_funds`` lets the owner take the quote funds that
    cleared the cap; refundable value is never touched.

The first round opens when the contract is created.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from stakeflow_core.auction import RoundPhase, SubscriptionAuction, SubscriptionRound
from stakeflow_core.config import StakeflowConfig
from stakeflow_core.contract import Contract, external
from stakeflow_core.errors import Unauthorized

log = logging.getLogger("stakeflow.subscription")


class SubscriptionSale(Contract):
    """Fixed-price capped rounds minting ``minted_asset`` against ``quote_asset``."""

    def __init__(
        self,
        address: str,
        quote_asset,
        minted_asset,
        oracle,
        clock: Optional[Callable[[], int]] = None,
        *,
        owner: str,
        subscription_window: int = 86_400,
        release_duration: int = 30 * 86_400,
        mint_cap_bps: int = 100,
        min_mint_cap: int = 0,
        start_round: int = 1,
        check_invariants: bool = False,
    ) -> None:
        super().__init__(address, clock, check_invariants)
        self.owner = owner
        self.quote_asset = quote_asset
        self.minted_asset = minted_asset
        self.oracle = oracle
        self.auction = SubscriptionAuction(
            oracle, minted_asset, address,
            subscription_window=subscription_window,
            release_duration=release_duration,
            mint_cap_bps=mint_cap_bps,
            min_mint_cap=min_mint_cap,
            start_round=start_round,
        )
        self.auction.update(self.now())

    @classmethod
    def from_config(cls, cfg: StakeflowConfig, address: str, quote_asset, minted_asset,
                    oracle, clock: Optional[Callable[[], int]] = None,
                    *, owner: str) -> "SubscriptionSale":
        return cls(
            address, quote_asset, minted_asset, oracle, clock,
            owner=owner,
            subscription_window=cfg.auction.subscription_window,
            release_duration=cfg.auction.release_duration,
            mint_cap_bps=cfg.auction.mint_cap_bps,
            min_mint_cap=cfg.auction.min_mint_cap,
            start_round=cfg.auction.start_round,
            check_invariants=cfg.guard.check_invariants,
        )

    # ── operations ──────────────────────────────────────────────────

    @external
    def update(self) -> Optional[RoundPhase]:
        return self.auction.update(self.now())

    @external
    def subscribe(self, account: str, round_index: int, amount: int) -> None:
        self.auction.subscribe(account, round_index, amount, self.now())
        self.quote_asset.transfer_from(self.address, account, self.address, amount)

    @external
    def claim_minted(self, account: str) -> int:
        amount = self.auction.claim_minted(account, self.now())
        if amount:
            self.minted_asset.transfer(self.address, account, amount)
            log.info("%s claimed %d %s", account, amount, self.minted_asset.symbol,
                     extra={"account": account, "amount": amount})
        return amount

    @external
    def claim_refund(self, account: str) -> int:
        amount = self.auction.claim_refund(account, self.now())
        if amount:
            self.quote_asset.transfer(self.address, account, amount)
            log.info("%s refunded %d %s", account, amount, self.quote_asset.symbol,
                     extra={"account": account, "amount": amount})
        return amount

    @external
    def withdraw_confirmed_funds(self, caller: str, to: Optional[str] = None) -> int:
        if caller != self.owner:
            raise Unauthorized("NOT_OWNER", f"{caller} is not the owner of {self.address}")
        self.auction.update(self.now())
        amount = self.auction.withdraw_confirmed_funds(self.quote_asset.balance_of(self.address))
        if amount:
            self.quote_asset.transfer(self.address, to or caller, amount)
            log.info("withdrew %d confirmed %s", amount, self.quote_asset.symbol,
                     extra={"amount": amount})
        return amount

    # ── queries ─────────────────────────────────────────────────────

    @property
    def current_round(self) -> Optional[int]:
        return self.auction.current_round

    def round_info(self, round_index: Optional[int] = None) -> Optional[SubscriptionRound]:
        if round_index is None:
            return self.auction.round
        return self.auction.rounds.get(round_index)

    def pending_entitlement(self, account: str) -> tuple[int, int]:
        return self.auction.pending_entitlement(account, self.now())

    def summary(self) -> dict:
        return {
            "address": self.address,
            "owner": self.owner,
            "quote_asset": self.quote_asset.symbol,
            "minted_asset": self.minted_asset.symbol,
            "quote_balance": self.quote_asset.balance_of(self.address),
            **self.auction.to_dict(self.now()),
        }
