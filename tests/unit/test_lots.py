"""
test_lots.py - Unit tests for crypto portfolio accounting

Tests:
- Weighted-average cost basis on buy
- Realized P/L on sell, lot removal when emptied
- Purchase / sale / conversion / deposit / withdrawal event builders
- Portfolio valuation
"""

import pytest
from datetime import datetime, timezone
from decimal import Decimal

from slot_economy import COINS, EconomyConfig, InvalidInput, Lot, TransactionKind, Wallet
from slot_economy.portfolio import (
    apply_buy, apply_reduce, apply_sell, compute_conversion, compute_deposit,
    compute_purchase, compute_sale, compute_withdrawal, holdings_by_asset, portfolio_summary,
)


T0 = datetime(2025, 1, 1, tzinfo=timezone.utc)
NO_FEE = EconomyConfig(fee_rate=Decimal("0"))
ONE_PERCENT = EconomyConfig()


class TestLotArithmetic:
    """Tests for apply_buy / apply_sell / apply_reduce."""

    def test_first_buy_sets_average(self):
        lot = apply_buy(None, Decimal("1"), Decimal("50000"))
        assert lot == Lot(Decimal("1"), Decimal("50000"))

    def test_weighted_average(self):
        lot = apply_buy(Lot(Decimal("1"), Decimal("50000")), Decimal("1"), Decimal("60000"))
        assert lot.quantity == Decimal("2")
        assert lot.average_cost == Decimal("55000")

    def test_zero_cost_units_dilute_average(self):
        lot = apply_buy(Lot(Decimal("1"), Decimal("100")), Decimal("1"), Decimal("0"))
        assert lot.average_cost == Decimal("50")

    def test_sell_keeps_average_and_books_pnl(self):
        remaining, realized = apply_sell(Lot(Decimal("2"), Decimal("55000")), Decimal("1"), Decimal("70000"))
        assert remaining == Lot(Decimal("1"), Decimal("55000"))
        assert realized == Decimal("15000")

    def test_selling_everything_removes_lot(self):
        remaining, realized = apply_sell(Lot(Decimal("1"), Decimal("10")), Decimal("1"), Decimal("8"))
        assert remaining is None
        assert realized == Decimal("-2")

    def test_cannot_oversell(self):
        with pytest.raises(InvalidInput):
            apply_sell(Lot(Decimal("1"), Decimal("10")), Decimal("2"), Decimal("10"))
        with pytest.raises(InvalidInput):
            apply_sell(None, Decimal("1"), Decimal("10"))

    def test_reduce_books_nothing(self):
        assert apply_reduce(Lot(Decimal("3"), Decimal("7")), Decimal("1")) == Lot(Decimal("2"), Decimal("7"))
        assert apply_reduce(Lot(Decimal("1"), Decimal("7")), Decimal("1")) is None

    def test_rejects_bad_inputs(self):
        with pytest.raises(InvalidInput):
            apply_buy(None, Decimal("0"), Decimal("1"))
        with pytest.raises(InvalidInput):
            apply_buy(None, Decimal("1"), Decimal("-1"))


class TestPurchase:
    """Tests for compute_purchase."""

    def test_cost_in_coins_rounds_up(self):
        event = compute_purchase("alice", "BTC", Decimal("0.00000123"), Decimal("50000"), NO_FEE, T0)
        # 0.00000123 * 50000 * 100 = 6.15 coins
        assert event.details['cost_coins'] == 7
        assert event.kind == TransactionKind.CRYPTO_PURCHASE

    def test_fee_taken_in_crypto(self):
        event = compute_purchase("alice", "BTC", Decimal("0.01"), Decimal("50000"), ONE_PERCENT, T0)
        debit, credit = event.moves
        assert (debit.quantity, debit.currency) == (Decimal("50000"), COINS)
        assert (credit.quantity, credit.currency) == (Decimal("0.0099"), "BTC")
        assert event.fee == Decimal("0.0001")
        assert event.fee_currency == "BTC"

    def test_fee_included_in_lot_price(self):
        event = compute_purchase("alice", "BTC", Decimal("0.01"), Decimal("50000"), ONE_PERCENT, T0)
        params = event.effects[0].params
        assert params['invested'] == Decimal("500")
        assert params['price'] > Decimal("50000")
        assert (params['quantity'] * params['price']).quantize(Decimal("0.01")) == Decimal("500.00")

    def test_quantity_below_precision_rejected(self):
        with pytest.raises(InvalidInput):
            compute_purchase("alice", "BTC", Decimal("0.000000001"), Decimal("50000"), NO_FEE, T0)

    def test_worthless_purchase_rejected(self):
        with pytest.raises(InvalidInput):
            compute_purchase("alice", "DOGE", Decimal("0.00000001"), Decimal("0"), NO_FEE, T0)


class TestSale:
    """Tests for compute_sale."""

    def test_fee_in_coins_rounds_up(self):
        event = compute_sale("alice", "BTC", Decimal("0.001"), Decimal("50000"), ONE_PERCENT, T0)
        # gross 5000 coins, fee 50
        assert event.details['gross_coins'] == 5000
        assert event.fee == Decimal("50")
        assert event.details['net_coins'] == 4950

    def test_fee_of_fraction_is_one_coin(self):
        event = compute_sale("alice", "DOGE", Decimal("10"), Decimal("0.1"), ONE_PERCENT, T0)
        # gross 100 coins, 1% = 1
        assert event.fee == Decimal("1")
        event = compute_sale("alice", "DOGE", Decimal("10.1"), Decimal("0.1"), ONE_PERCENT, T0)
        # gross 101 coins, 1.01 -> 2
        assert event.fee == Decimal("2")


class TestConversion:
    """Tests for compute_conversion."""

    def test_converts_through_usd(self):
        event = compute_conversion("alice", "BTC", "ETH", Decimal("0.1"), Decimal("50000"),
                                   Decimal("3000"), NO_FEE, T0)
        debit, credit = event.moves
        assert (debit.quantity, debit.currency) == (Decimal("0.1"), "BTC")
        assert (credit.quantity, credit.currency) == (Decimal("1.66666666"), "ETH")
        assert event.fee_currency == "ETH"
        assert Decimal("0") < event.fee < Decimal("0.00000001")

    def test_same_asset_rejected(self):
        with pytest.raises(InvalidInput):
            compute_conversion("alice", "BTC", "BTC", Decimal("1"), Decimal("1"), Decimal("1"), NO_FEE, T0)


class TestTransfers:
    """Tests for compute_deposit / compute_withdrawal."""

    def test_deposit_without_quote_has_zero_basis(self):
        event = compute_deposit("alice", "LTC", Decimal("2"), None, T0)
        assert event.effects[0].params['price'] == Decimal("0")
        assert not event.moves[0].is_debit

    def test_withdrawal_records_address(self):
        event = compute_withdrawal("alice", "LTC", Decimal("1"), "Labcdefghijk", T0)
        assert event.moves[0].is_debit
        assert event.details['address'] == "Labcdefghijk"


class TestValuation:
    """Tests for portfolio_summary."""

    def _wallet(self):
        wallet = Wallet()
        wallet.lots['BTC'] = Lot(Decimal("1"), Decimal("50000"))
        wallet.lots['ETH'] = Lot(Decimal("2"), Decimal("3000"))
        wallet.stats.realized_pnl = Decimal("12")
        return wallet

    def test_values_at_current_prices(self):
        summary = portfolio_summary(self._wallet(), {'BTC': Decimal("60000"), 'ETH': Decimal("3000")})
        assert summary.total_invested == Decimal("56000")
        assert summary.current_value == Decimal("66000")
        assert summary.unrealized_pnl == Decimal("10000")
        assert summary.realized_pnl == Decimal("12")
        btc = holdings_by_asset(summary)['BTC']
        assert btc.pnl_percent == Decimal("20")

    def test_unpriced_assets_listed_separately(self):
        summary = portfolio_summary(self._wallet(), {'BTC': Decimal("50000")})
        assert summary.unpriced == ('ETH',)
        assert summary.total_invested == Decimal("50000")
        assert holdings_by_asset(summary)['ETH'].current_value is None

    def test_zero_basis_has_no_percent(self):
        wallet = Wallet()
        wallet.lots['BTC'] = Lot(Decimal("0.01"), Decimal("0"))
        summary = portfolio_summary(wallet, {'BTC': Decimal("50000")})
        assert summary.pnl_percent is None
        assert summary.unrealized_pnl == Decimal("500")
