"""
test_daily_bonus.py - Unit tests for the daily bonus streak calendar
"""

import pytest
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

from slot_economy import AlreadyClaimed, EconomyConfig, TransactionKind
from slot_economy.bonus import (
    bonus_amount, calendar_day, compute_daily_bonus, next_available, next_streak, streak_multiplier,
)
from slot_economy.records import DailyBonus


CONFIG = EconomyConfig()
NOON = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)


class TestStreak:
    """Tests for next_streak."""

    def test_first_claim(self):
        assert next_streak(DailyBonus(), date(2025, 3, 10)) == 1

    def test_consecutive_day_extends(self):
        bonus = DailyBonus(last_claimed_day=date(2025, 3, 9), streak=4)
        assert next_streak(bonus, date(2025, 3, 10)) == 5

    def test_gap_resets(self):
        bonus = DailyBonus(last_claimed_day=date(2025, 3, 8), streak=4)
        assert next_streak(bonus, date(2025, 3, 10)) == 1


class TestAmount:
    """Tests for the streak multiplier and amount."""

    @pytest.mark.parametrize("streak,amount", [(1, 110), (2, 120), (5, 150), (10, 200), (30, 200)])
    def test_amounts(self, streak, amount):
        assert bonus_amount(streak, CONFIG) == amount

    def test_multiplier_is_capped(self):
        assert streak_multiplier(50, CONFIG) == Decimal("2")

    def test_amount_is_floored(self):
        config = EconomyConfig(daily_bonus_base=15)
        # 15 * 1.1 = 16.5
        assert bonus_amount(1, config) == 16


class TestCalendar:
    """Tests for calendar_day / next_available."""

    def test_naive_datetime_rejected(self):
        with pytest.raises(ValueError):
            calendar_day(datetime(2025, 3, 10, 12), timezone.utc)

    def test_day_in_offset_zone(self):
        zone = timezone(timedelta(hours=-5))
        assert calendar_day(datetime(2025, 3, 10, 3, 0, tzinfo=timezone.utc), zone) == date(2025, 3, 9)

    def test_next_available_is_next_midnight(self):
        assert next_available(date(2025, 3, 10), timezone.utc) == datetime(2025, 3, 11, tzinfo=timezone.utc)


class TestComputeDailyBonus:
    """Tests for compute_daily_bonus."""

    def test_event(self):
        event = compute_daily_bonus("alice", DailyBonus(), NOON, CONFIG)
        assert event.kind == TransactionKind.DAILY_BONUS
        assert event.amount == Decimal(110)
        assert event.effects[0].params == {'day': date(2025, 3, 10), 'streak': 1}
        assert event.details['multiplier'] == Decimal("1.1")

    def test_same_day_rejected_with_next_available(self):
        bonus = DailyBonus(last_claimed_day=date(2025, 3, 10), streak=1)
        with pytest.raises(AlreadyClaimed) as exc_info:
            compute_daily_bonus("alice", bonus, NOON, CONFIG)
        assert exc_info.value.next_available == datetime(2025, 3, 11, tzinfo=timezone.utc)
