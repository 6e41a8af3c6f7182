"""
Price feeds for stakeflow.

Publishers own oracle documents, each identified by ``(owner,
document_id)`` and holding up to 10 price entries per update. An entry
with ``price=p`` and ``scale=s`` stands for ``p * 10**(18 - s)`` in SCALE
units, so ``price=25, scale=1`` reads as 2.5 quote units per base unit.

The subscription auction only needs ``get_price()``; two providers exist:

  - :class:`PriceSource`: median of every fresh entry for one pair
  - :class:`StaticPrice`: a constant, for single-price deployments
"""

from __future__ import annotations

import logging
import statistics
from dataclasses import dataclass, field
from typing import Callable, Iterator, Optional

from stakeflow_core.clock import SystemClock
from stakeflow_core.errors import ExternalCallFailure
from stakeflow_core.precision import SCALE, SCALE_DECIMALS

log = logging.getLogger("stakeflow.oracle")

MAX_PRICE_ENTRIES = 10
MAX_ORACLES_PER_ACCOUNT = 100


@dataclass
class PriceEntry:
    """One quoted price for a base/quote pair."""
    base_asset: str
    quote_asset: str
    price: int
    scale: int = 0           # decimals carried by ``price``
    timestamp: int = 0

    @property
    def fixed_price(self) -> int:
        shift = SCALE_DECIMALS - self.scale
        if shift >= 0:
            return self.price * 10 ** shift
        return self.price // 10 ** -shift

    def quotes(self, base_asset: str, quote_asset: str) -> bool:
        return self.base_asset == base_asset and self.quote_asset == quote_asset

    def to_dict(self) -> dict:
        return {
            "pair": f"{self.base_asset}/{self.quote_asset}",
            "price": self.price,
            "scale": self.scale,
            "fixed_price": self.fixed_price,
            "timestamp": self.timestamp,
        }


@dataclass
class Oracle:
    """A publisher's document of price entries."""
    owner: str
    document_id: int
    provider: str = ""
    prices: list[PriceEntry] = field(default_factory=list)
    last_update: int = 0

    @property
    def oracle_id(self) -> str:
        return f"{self.owner}:{self.document_id}"

    def to_dict(self) -> dict:
        return {
            "oracle_id": self.oracle_id,
            "provider": self.provider,
            "last_update": self.last_update,
            "prices": [entry.to_dict() for entry in self.prices],
        }


def _parse_entries(raw: list[dict], now: int) -> list[PriceEntry]:
    return [
        PriceEntry(
            base_asset=item.get("base_asset", ""),
            quote_asset=item.get("quote_asset", ""),
            price=int(item.get("price", 0)),
            scale=int(item.get("scale", 0)),
            timestamp=now,
        )
        for item in raw
    ]


class OracleManager:
    """Registry of published oracle documents.

    Mutators return ``(ok, message, ...)`` tuples rather than raising;
    only the :class:`PriceSource` adapter turns a missing price into an
    :class:`ExternalCallFailure`.
    """

    def __init__(self, clock: Optional[Callable[[], int]] = None):
        self.clock = clock if clock is not None else SystemClock()
        self.oracles: dict[tuple[str, int], Oracle] = {}
        self._next_document: dict[str, int] = {}

    def _owned_count(self, owner: str) -> int:
        return sum(1 for key in self.oracles if key[0] == owner)

    @staticmethod
    def _reject_prices(prices: Optional[list[dict]]) -> Optional[str]:
        if not prices:
            return None
        if len(prices) > MAX_PRICE_ENTRIES:
            return f"Max {MAX_PRICE_ENTRIES} price entries per update"
        if any(int(item.get("price", 0)) < 0 for item in prices):
            return "Prices must be non-negative"
        return None

    def set_oracle(self, owner: str, document_id: int | None = None,
                   provider: str = "",
                   prices: list[dict] | None = None) -> tuple[bool, str, Oracle | None]:
        """Create the document, or replace its entries if it exists."""
        problem = self._reject_prices(prices)
        if problem:
            return False, problem, None

        if document_id is None:
            document_id = self._next_document.get(owner, 0)
        key = (owner, document_id)
        now = self.clock()

        oracle = self.oracles.get(key)
        if oracle is not None:
            if provider:
                oracle.provider = provider
            if prices:
                oracle.prices = _parse_entries(prices, now)
            oracle.last_update = now
            return True, "Oracle updated", oracle

        if self._owned_count(owner) >= MAX_ORACLES_PER_ACCOUNT:
            return False, f"Max {MAX_ORACLES_PER_ACCOUNT} oracles per account", None
        oracle = Oracle(owner, document_id, provider,
                        _parse_entries(prices or [], now), last_update=now)
        self.oracles[key] = oracle
        self._next_document[owner] = max(self._next_document.get(owner, 0), document_id + 1)
        log.info("oracle %s published with %d entries", oracle.oracle_id, len(oracle.prices))
        return True, "Oracle created", oracle

    def delete_oracle(self, owner: str, document_id: int) -> tuple[bool, str]:
        if self.oracles.pop((owner, document_id), None) is None:
            return False, "Oracle not found"
        return True, "Oracle deleted"

    def get_oracle(self, owner: str, document_id: int) -> Oracle | None:
        return self.oracles.get((owner, document_id))

    def get_oracles_by_owner(self, owner: str) -> list[Oracle]:
        return [o for (who, _), o in sorted(self.oracles.items()) if who == owner]

    def _entries_for(self, base_asset: str, quote_asset: str) -> Iterator[PriceEntry]:
        for oracle in self.oracles.values():
            for entry in oracle.prices:
                if entry.quotes(base_asset, quote_asset):
                    yield entry

    def fresh_prices(self, base_asset: str, quote_asset: str, max_age: int) -> list[int]:
        cutoff = self.clock() - max_age
        return sorted(entry.fixed_price
                      for entry in self._entries_for(base_asset, quote_asset)
                      if entry.timestamp >= cutoff)

    def get_aggregate_price(self, base_asset: str, quote_asset: str,
                            trim: int = 20,
                            max_age: int = 3600) -> dict | None:
        """
        Summarise the fresh entries for a pair, or ``None`` if there are none.

        ``mean`` drops ``trim`` percent from each end first (when enough
        entries remain); ``median`` is the lower median of all entries.
        Both are floored integers.
        """
        values = self.fresh_prices(base_asset, quote_asset, max_age)
        if not values:
            return None

        cut = len(values) * trim // 100
        kept = values[cut:len(values) - cut] if cut and len(values) > 2 * cut else values
        return {
            "base_asset": base_asset,
            "quote_asset": quote_asset,
            "mean": sum(kept) // len(kept),
            "median": statistics.median_low(values),
            "count": len(values),
            "trimmed_count": len(kept),
        }

    def get_all_oracles(self) -> list[dict]:
        return [oracle.to_dict() for oracle in self.oracles.values()]


class PriceSource:
    """``get_price()`` backed by an :class:`OracleManager` pair."""

    def __init__(self, manager: OracleManager, base_asset: str, quote_asset: str,
                 max_age: int = 3600) -> None:
        self.manager = manager
        self.base_asset = base_asset
        self.quote_asset = quote_asset
        self.max_age = max_age

    def get_price(self) -> int:
        summary = self.manager.get_aggregate_price(self.base_asset, self.quote_asset,
                                                   max_age=self.max_age)
        if summary is None:
            raise ExternalCallFailure(
                "ORACLE:NO_PRICE",
                f"no fresh {self.base_asset}/{self.quote_asset} price within {self.max_age}s",
            )
        log.debug("%s/%s price snapshot %d", self.base_asset, self.quote_asset, summary["median"])
        return summary["median"]


class StaticPrice:
    """A constant fixed-point price."""

    def __init__(self, price: int = SCALE) -> None:
        self.price = price

    def get_price(self) -> int:
        return self.price
