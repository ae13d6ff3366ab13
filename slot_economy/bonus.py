"""
bonus.py - Daily bonus streak calendar

Calendar days are taken in the configured timezone. Claiming on the day
right after the previous claim extends the streak; any gap resets it to 1;
a second claim on the same day is rejected.

    amount = floor(base * min(max_multiplier, 1 + streak * step))
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, tzinfo
from decimal import Decimal, ROUND_FLOOR
from typing import Optional

from .config import EconomyConfig
from .core import (
    COINS, AlreadyClaimed, Effect, PendingEvent, Transaction, TransactionKind, credit,
)
from .records import DailyBonus


@dataclass(frozen=True, slots=True)
class BonusClaim:
    amount: int
    streak: int
    multiplier: Decimal
    next_available: datetime
    transaction: Optional[Transaction] = None


def calendar_day(moment: datetime, zone: tzinfo) -> date:
    if moment.tzinfo is None:
        raise ValueError("daily bonus clock must return timezone-aware datetimes")
    return moment.astimezone(zone).date()


def next_available(day: date, zone: tzinfo) -> datetime:
    """Midnight starting the calendar day after day."""
    return datetime.combine(day + timedelta(days=1), time.min, tzinfo=zone)


def next_streak(bonus: DailyBonus, today: date) -> int:
    if bonus.last_claimed_day is not None and bonus.last_claimed_day == today - timedelta(days=1):
        return bonus.streak + 1
    return 1


def streak_multiplier(streak: int, config: EconomyConfig) -> Decimal:
    return min(config.daily_bonus_max_multiplier, 1 + streak * config.daily_bonus_step)


def bonus_amount(streak: int, config: EconomyConfig) -> int:
    raw = config.daily_bonus_base * streak_multiplier(streak, config)
    return int(raw.to_integral_value(rounding=ROUND_FLOOR))


def compute_daily_bonus(
    account_id: str,
    bonus: DailyBonus,
    now: datetime,
    config: EconomyConfig,
) -> PendingEvent:
    """
    Build the daily_bonus event for a claim at now.

    Raises:
        AlreadyClaimed: a claim was already made on now's calendar day
    """
    zone = config.zone
    today = calendar_day(now, zone)
    if bonus.last_claimed_day == today:
        raise AlreadyClaimed(
            f"daily bonus already claimed today ({today})",
            next_available=next_available(today, zone),
        )
    streak = next_streak(bonus, today)
    amount = bonus_amount(streak, config)
    moves = (credit(Decimal(amount), COINS, "daily bonus"),) if amount > 0 else ()
    return PendingEvent(
        account_id=account_id,
        kind=TransactionKind.DAILY_BONUS,
        moves=moves,
        effects=(Effect("daily_bonus", {'day': today, 'streak': streak}),),
        amount=Decimal(amount),
        currency=COINS,
        timestamp=now,
        description=f"Daily bonus: {amount} coins (Day {streak})",
        details={'streak': streak, 'multiplier': streak_multiplier(streak, config)},
    )
