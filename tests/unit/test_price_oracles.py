"""
test_price_oracles.py - Unit tests for price oracles
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

from slot_economy import PriceOracle, StaticPriceOracle, TimeSeriesPriceOracle

from tests.scripted import FixedClock


T0 = datetime(2025, 1, 1, tzinfo=timezone.utc)


class TestStaticPriceOracle:
    """Tests for StaticPriceOracle."""

    def test_defaults(self):
        oracle = StaticPriceOracle()
        assert oracle.price("BTC") == Decimal("50000")
        assert oracle.price("DOGE") == Decimal("0.1")
        assert oracle.price("SHIB") is None

    def test_update_and_remove(self):
        oracle = StaticPriceOracle({})
        oracle.update_price("BTC", Decimal("1"))
        oracle.update_prices({"ETH": Decimal("2")})
        assert oracle.price("BTC") == Decimal("1")
        oracle.remove_price("BTC")
        assert oracle.price("BTC") is None
        assert oracle.price("ETH") == Decimal("2")

    def test_satisfies_protocol(self):
        assert isinstance(StaticPriceOracle(), PriceOracle)


class TestTimeSeriesPriceOracle:
    """Tests for TimeSeriesPriceOracle."""

    def _oracle(self, clock):
        return TimeSeriesPriceOracle({
            "BTC": [
                (T0 + timedelta(days=2), Decimal("52000")),
                (T0, Decimal("50000")),
            ],
        }, clock=clock)

    def test_price_at_uses_last_observation(self):
        oracle = self._oracle(FixedClock(T0))
        assert oracle.price_at("BTC", T0 - timedelta(seconds=1)) is None
        assert oracle.price_at("BTC", T0) == Decimal("50000")
        assert oracle.price_at("BTC", T0 + timedelta(days=1)) == Decimal("50000")
        assert oracle.price_at("BTC", T0 + timedelta(days=3)) == Decimal("52000")

    def test_price_follows_clock(self):
        clock = FixedClock(T0)
        oracle = self._oracle(clock)
        assert oracle.price("BTC") == Decimal("50000")
        clock.advance(days=2)
        assert oracle.price("BTC") == Decimal("52000")

    def test_add_price_keeps_order(self):
        clock = FixedClock(T0 + timedelta(days=1))
        oracle = self._oracle(clock)
        oracle.add_price("BTC", T0 + timedelta(hours=12), Decimal("51000"))
        assert oracle.price("BTC") == Decimal("51000")

    def test_unknown_symbol(self):
        assert self._oracle(FixedClock(T0)).price("ETH") is None
