"""
pricing_source.py - Price oracles for crypto valuation

Classes:
- PriceOracle: Protocol defining the lookup the engine consumes
- StaticPriceOracle: Fixed prices, updatable by hand
- TimeSeriesPriceOracle: Time-varying prices read at the oracle clock

All prices are USD per unit. A missing quote is returned as None; the
engine turns it into PriceUnavailable before entering any critical section.
"""

from bisect import bisect_right
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Dict, Iterable, List, Optional, Protocol, Tuple, runtime_checkable


DEFAULT_PRICES: Dict[str, Decimal] = {
    'BTC': Decimal("50000"),
    'ETH': Decimal("3000"),
    'LTC': Decimal("200"),
    'DOGE': Decimal("0.1"),
    'XRP': Decimal("0.5"),
}


@runtime_checkable
class PriceOracle(Protocol):
    """Synchronous price lookup. May block; never called under an account lock."""

    def price(self, symbol: str) -> Optional[Decimal]:
        """Return the USD price of one unit, or None when no quote is available."""
        ...


class StaticPriceOracle:
    """
    Oracle with fixed prices.

    Prices only change through update_price()/update_prices().
    """

    def __init__(self, prices: Optional[Dict[str, Decimal]] = None):
        self.prices = dict(DEFAULT_PRICES if prices is None else prices)

    def price(self, symbol: str) -> Optional[Decimal]:
        return self.prices.get(symbol)

    def update_price(self, symbol: str, price: Decimal):
        self.prices[symbol] = price

    def update_prices(self, prices: Dict[str, Decimal]):
        self.prices.update(prices)

    def remove_price(self, symbol: str):
        self.prices.pop(symbol, None)

    def __repr__(self):
        return f"StaticPriceOracle({len(self.prices)} prices)"


class TimeSeriesPriceOracle:
    """
    Oracle backed by historical price paths.

    price() returns the most recent observation at or before clock().
    """

    def __init__(
        self,
        price_paths: Optional[Dict[str, Iterable[Tuple[datetime, Decimal]]]] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.price_history: Dict[str, List[Tuple[datetime, Decimal]]] = {}
        if price_paths:
            for symbol, path in price_paths.items():
                path = sorted(path, key=lambda x: x[0])
                if path:
                    self.price_history[symbol] = path

    def add_price(self, symbol: str, timestamp: datetime, price: Decimal):
        history = self.price_history.setdefault(symbol, [])
        history.append((timestamp, price))
        history.sort(key=lambda x: x[0])

    def price_at(self, symbol: str, timestamp: datetime) -> Optional[Decimal]:
        """Binary search for the last observation at or before timestamp."""
        history = self.price_history.get(symbol)
        if not history:
            return None
        idx = bisect_right([ts for ts, _ in history], timestamp)
        if idx == 0:
            return None
        return history[idx - 1][1]

    def price(self, symbol: str) -> Optional[Decimal]:
        return self.price_at(symbol, self.clock())

    def __repr__(self):
        total = sum(len(history) for history in self.price_history.values())
        return f"TimeSeriesPriceOracle({len(self.price_history)} assets, {total} observations)"
