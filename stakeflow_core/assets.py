"""
In-process fungible asset ledger.

Stands in for the token contracts the accounting components talk to:
balances, allowances, a minter allow-list and an optional hard
``max_supply``.  Every rejection raises ``ExternalCallFailure`` so the
calling contract aborts and rolls back.

Addresses are opaque strings.  The caller of a state-changing method is
always passed explicitly (``sender``, ``spender``, ``minter``).
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from stakeflow_core.contract import assign, store
from stakeflow_core.errors import ExternalCallFailure, InvalidAmount
from stakeflow_core.precision import SCALE_DECIMALS, U256_MAX, require_amount

log = logging.getLogger("stakeflow.assets")

# (asset, sender, to, amount) -> None; runs after balances move.
TransferHook = Callable[["FungibleAsset", str, str, int], None]


class FungibleAsset:
    """A fungible token ledger with mint cap enforcement."""

    def __init__(
        self,
        symbol: str,
        decimals: int = SCALE_DECIMALS,
        max_supply: int = U256_MAX,
        minters: Optional[set[str]] = None,
    ) -> None:
        self.symbol = symbol
        self.decimals = decimals
        self._max_supply = max_supply
        self.minters: set[str] = set(minters or ())
        self.balances: dict[str, int] = {}
        self.allowances: dict[tuple[str, str], int] = {}
        self.supply = 0
        self.on_transfer: Optional[TransferHook] = None

    # ── views ───────────────────────────────────────────────────────

    def balance_of(self, holder: str) -> int:
        return self.balances.get(holder, 0)

    def allowance(self, owner: str, spender: str) -> int:
        return self.allowances.get((owner, spender), 0)

    def total_supply(self) -> int:
        return self.supply

    def max_supply(self) -> int:
        return self._max_supply

    def mint_headroom(self) -> int:
        return self._max_supply - self.supply

    # ── transfers ───────────────────────────────────────────────────

    def _amount(self, amount: int) -> int:
        try:
            return require_amount(amount)
        except InvalidAmount as exc:
            raise ExternalCallFailure("TOKEN:BAD_AMOUNT", f"{self.symbol}: {exc.reason}") from exc

    def _move(self, sender: str, to: str, amount: int) -> None:
        have = self.balances.get(sender, 0)
        if amount > have:
            raise ExternalCallFailure(
                "TOKEN:INSUFFICIENT_BALANCE",
                f"{self.symbol}: {sender} holds {have}, needs {amount}",
            )
        store(self.balances, sender, have - amount)
        store(self.balances, to, self.balances.get(to, 0) + amount)

    def transfer(self, sender: str, to: str, amount: int) -> bool:
        amount = self._amount(amount)
        if not to:
            raise ExternalCallFailure("TOKEN:BAD_ADDR", f"{self.symbol}: empty recipient")
        self._move(sender, to, amount)
        if self.on_transfer is not None:
            self.on_transfer(self, sender, to, amount)
        return True

    def approve(self, owner: str, spender: str, amount: int) -> bool:
        store(self.allowances, (owner, spender), self._amount(amount))
        return True

    def transfer_from(self, spender: str, owner: str, to: str, amount: int) -> bool:
        amount = self._amount(amount)
        allowed = self.allowances.get((owner, spender), 0)
        if amount > allowed:
            raise ExternalCallFailure(
                "TOKEN:ALLOWANCE",
                f"{self.symbol}: {spender} may move {allowed} of {owner}, asked {amount}",
            )
        self._move(owner, to, amount)
        store(self.allowances, (owner, spender), allowed - amount)
        if self.on_transfer is not None:
            self.on_transfer(self, owner, to, amount)
        return True

    # ── supply ──────────────────────────────────────────────────────

    def mint(self, minter: str, to: str, amount: int) -> bool:
        amount = self._amount(amount)
        if minter not in self.minters:
            raise ExternalCallFailure("TOKEN:NOT_MINTER", f"{self.symbol}: {minter} cannot mint")
        if amount > self.mint_headroom():
            raise ExternalCallFailure(
                "TOKEN:MAX_SUPPLY",
                f"{self.symbol}: minting {amount} exceeds max supply {self._max_supply}",
            )
        assign(self, "supply", self.supply + amount)
        store(self.balances, to, self.balances.get(to, 0) + amount)
        log.debug("%s minted %d to %s", self.symbol, amount, to)
        return True

    def burn(self, holder: str, amount: int) -> bool:
        amount = self._amount(amount)
        have = self.balances.get(holder, 0)
        if amount > have:
            raise ExternalCallFailure("TOKEN:INSUFFICIENT_BALANCE", f"{self.symbol}: cannot burn {amount}")
        store(self.balances, holder, have - amount)
        assign(self, "supply", self.supply - amount)
        return True

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "decimals": self.decimals,
            "total_supply": self.supply,
            "max_supply": self._max_supply,
            "holders": sum(1 for v in self.balances.values() if v > 0),
        }
