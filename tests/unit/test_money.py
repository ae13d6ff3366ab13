"""
test_money.py - Unit tests for core types and amount handling

Tests:
- Per-currency rounding
- Input conversion to Decimal
- Move validation and direction helpers
- Content-addressed intent ids
- The economy decimal context across threads
"""

import pytest
from datetime import datetime, timezone
from decimal import Context, Decimal, getcontext, localcontext, setcontext
import threading

from slot_economy import (
    COINS, PLAYER_WALLET, SYSTEM_WALLET, Effect, InvalidInput, Move, PendingEvent, StaticPriceOracle,
    TransactionKind, credit, debit,
)
from slot_economy.core import (
    DECIMAL_ROUNDING, ECONOMY_DECIMAL_CONTEXT, _canonicalize, economy_context, round_amount, to_decimal,
)

from tests.scripted import make_economy


T0 = datetime(2025, 1, 1, tzinfo=timezone.utc)


class TestRounding:
    """Tests for round_amount."""

    def test_coins_round_down_to_whole(self):
        assert round_amount(Decimal("10.99"), COINS) == Decimal("10")

    def test_crypto_rounds_down_to_eight_places(self):
        assert round_amount(Decimal("0.123456789"), "BTC") == Decimal("0.12345678")

    def test_fee_rounding_goes_up(self):
        assert round_amount(Decimal("10.01"), COINS, DECIMAL_ROUNDING['FEES']) == Decimal("11")

    def test_usd_uses_bankers_rounding(self):
        assert round_amount(Decimal("0.125"), "USD") == Decimal("0.12")
        assert round_amount(Decimal("0.135"), "USD") == Decimal("0.14")


class TestToDecimal:
    """Tests for to_decimal."""

    def test_string_and_int(self):
        assert to_decimal("0.5") == Decimal("0.5")
        assert to_decimal(3) == Decimal(3)

    def test_float_uses_repr(self):
        assert to_decimal(0.1) == Decimal("0.1")

    @pytest.mark.parametrize("value", ["abc", None, True, "NaN", "Infinity", [1]])
    def test_rejects_non_numeric(self, value):
        with pytest.raises(InvalidInput):
            to_decimal(value)


class TestMove:
    """Tests for Move validation."""

    def test_debit_goes_player_to_house(self):
        move = debit(Decimal("5"), COINS)
        assert move.source == PLAYER_WALLET
        assert move.dest == SYSTEM_WALLET
        assert move.is_debit

    def test_credit_goes_house_to_player(self):
        move = credit(Decimal("5"), COINS)
        assert move.source == SYSTEM_WALLET
        assert not move.is_debit

    def test_rejects_float_quantity(self):
        with pytest.raises(ValueError):
            Move(5.0, COINS, PLAYER_WALLET, SYSTEM_WALLET)

    @pytest.mark.parametrize("quantity", [Decimal("0"), Decimal("-1"), Decimal("Infinity")])
    def test_rejects_non_positive_or_infinite(self, quantity):
        with pytest.raises(ValueError):
            Move(quantity, COINS, PLAYER_WALLET, SYSTEM_WALLET)

    def test_rejects_foreign_wallets(self):
        with pytest.raises(ValueError):
            Move(Decimal("1"), COINS, "bob", SYSTEM_WALLET)

    def test_rejects_empty_currency(self):
        with pytest.raises(ValueError):
            Move(Decimal("1"), " ", PLAYER_WALLET, SYSTEM_WALLET)


class TestIntentId:
    """Tests for PendingEvent intent ids."""

    def _event(self, quantity="10", memo="bet", effects=()):
        return PendingEvent(
            account_id="alice",
            kind=TransactionKind.GAME_LOSS,
            moves=(debit(Decimal(quantity), COINS, memo),),
            effects=effects,
            amount=Decimal(quantity),
            currency=COINS,
            timestamp=T0,
        )

    def test_same_content_same_id(self):
        assert self._event().intent_id == self._event().intent_id

    def test_trailing_zeros_do_not_change_id(self):
        assert self._event("10").intent_id == self._event("10.00").intent_id

    def test_memo_is_not_part_of_identity(self):
        assert self._event(memo="a").intent_id == self._event(memo="b").intent_id

    def test_different_amount_different_id(self):
        assert self._event("10").intent_id != self._event("11").intent_id

    def test_effect_params_are_order_independent(self):
        a = self._event(effects=(Effect("x", {'a': 1, 'b': Decimal("2.0")}),))
        b = self._event(effects=(Effect("x", {'b': Decimal("2"), 'a': 1}),))
        assert a.intent_id == b.intent_id

    def test_event_needs_moves_or_effects(self):
        with pytest.raises(ValueError):
            PendingEvent("alice", TransactionKind.GAME_LOSS, (), (), Decimal("0"), COINS, T0)

    def test_canonicalize_sets_and_enums(self):
        assert _canonicalize({'b', 'a'}) == "<S:a,S:b>"
        assert _canonicalize(TransactionKind.GAME_WIN) == "E:game_win"


class TestDecimalContext:
    """Money math runs at 50 digits in every thread."""

    PURCHASES = (("0.3", "50000"), ("0.7", "60001"), ("0.11", "70000"))

    def _average_cost(self, in_worker):
        oracle = StaticPriceOracle()
        economy = make_economy(oracle=oracle, starting_coins=20_000_000)
        alice = economy.open_account("alice", account_id="alice")

        def buy():
            for amount, price in self.PURCHASES:
                oracle.update_price("BTC", Decimal(price))
                economy.purchase_crypto(alice, "BTC", amount)

        if in_worker:
            def worker():
                # A thread whose context predates the economy's settings
                setcontext(Context(prec=28))
                buy()

            thread = threading.Thread(target=worker)
            thread.start()
            thread.join(timeout=30)
        else:
            buy()
        return economy.account(alice).wallet.lots["BTC"].average_cost

    def test_worker_thread_matches_main_thread(self):
        main = self._average_cost(in_worker=False)
        worker = self._average_cost(in_worker=True)
        assert worker == main
        assert len(main.as_tuple().digits) > 28

    def test_decorated_call_restores_caller_context(self):
        @economy_context
        def precision():
            return getcontext().prec

        with localcontext() as ctx:
            ctx.prec = 12
            assert precision() == ECONOMY_DECIMAL_CONTEXT.prec
            assert getcontext().prec == 12
