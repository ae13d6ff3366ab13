"""
config.py - Economic constants and tunable engine configuration

Static constants are module-level. The tunable subset is carried by the
frozen EconomyConfig, which can be loaded from SLOT_ECONOMY_* environment
variables.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import timezone, tzinfo
from decimal import Decimal
import os
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .core import InvalidInput, to_decimal


# ============================================================================
# GAME CONSTANTS
# ============================================================================

STARTING_COINS = 1000
MIN_BET_AMOUNT = 10
MAX_BET_AMOUNT = 1000

# Percentage charged on the receiving side of crypto trades.
TRANSACTION_FEE_PERCENTAGE = Decimal("1")

DAILY_BONUS_BASE_AMOUNT = 100
DAILY_BONUS_STREAK_STEP = Decimal("0.1")
DAILY_BONUS_MAX_MULTIPLIER = Decimal("2")

JACKPOT_MULTIPLIER = 10

# cryptoEarned = winAmount * cryptoEarningRate / CRYPTO_EARNING_SCALE
CRYPTO_EARNING_SCALE = Decimal("10000")

# 100 coins = $1 USD
COINS_PER_DOLLAR = 100

# Asset credited by winning spins.
EARNED_ASSET = "BTC"

MAX_CONFLICT_RETRIES = 3

UTC = timezone.utc


# ============================================================================
# TUNABLE CONFIGURATION
# ============================================================================

def _env(name: str) -> Optional[str]:
    value = os.getenv(f"SLOT_ECONOMY_{name}")
    if value is None or not value.strip():
        return None
    return value.strip()


def _env_int(name: str, default: int) -> int:
    raw = _env(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        raise InvalidInput(f"SLOT_ECONOMY_{name} must be an integer, got {raw!r}") from None


def _env_decimal(name: str, default: Decimal) -> Decimal:
    raw = _env(name)
    if raw is None:
        return default
    return to_decimal(raw, f"SLOT_ECONOMY_{name}")


def _env_bool(name: str, default: bool) -> bool:
    raw = _env(name)
    if raw is None:
        return default
    return raw.lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True, slots=True)
class EconomyConfig:
    """
    Tunable engine settings.

    Attributes:
        starting_coins: Coins issued when an account is opened
        fee_rate: Fraction of the receiving side taken as fee (0.01 = 1%)
        daily_bonus_base: Base daily bonus before the streak multiplier
        daily_bonus_step: Multiplier increment per streak day
        daily_bonus_max_multiplier: Cap on the streak multiplier
        jackpot_multiplier: Extra multiplier applied to jackpot wins
        crypto_earning_scale: Divisor turning win amounts into crypto
        coins_per_dollar: Coin/USD exchange rate for crypto trades
        earned_asset: Asset credited by winning spins
        max_conflict_retries: Attempts before a ConflictError is surfaced
        timezone: IANA zone defining daily bonus calendar days
        log_level: Level passed to setup_logging()
        verbose: Log every applied transaction at INFO instead of DEBUG
    """
    starting_coins: int = STARTING_COINS
    fee_rate: Decimal = TRANSACTION_FEE_PERCENTAGE / 100
    daily_bonus_base: int = DAILY_BONUS_BASE_AMOUNT
    daily_bonus_step: Decimal = DAILY_BONUS_STREAK_STEP
    daily_bonus_max_multiplier: Decimal = DAILY_BONUS_MAX_MULTIPLIER
    jackpot_multiplier: int = JACKPOT_MULTIPLIER
    crypto_earning_scale: Decimal = CRYPTO_EARNING_SCALE
    coins_per_dollar: int = COINS_PER_DOLLAR
    earned_asset: str = EARNED_ASSET
    max_conflict_retries: int = MAX_CONFLICT_RETRIES
    timezone: str = "UTC"
    log_level: str = "INFO"
    verbose: bool = False

    def __post_init__(self):
        if self.starting_coins < 0:
            raise InvalidInput(f"starting_coins must be >= 0, got {self.starting_coins}")
        if not Decimal("0") <= self.fee_rate < Decimal("1"):
            raise InvalidInput(f"fee_rate must be in [0, 1), got {self.fee_rate}")
        if self.daily_bonus_base < 0:
            raise InvalidInput(f"daily_bonus_base must be >= 0, got {self.daily_bonus_base}")
        if self.daily_bonus_max_multiplier < 1:
            raise InvalidInput("daily_bonus_max_multiplier must be >= 1")
        if self.jackpot_multiplier < 1:
            raise InvalidInput(f"jackpot_multiplier must be >= 1, got {self.jackpot_multiplier}")
        if self.crypto_earning_scale <= 0:
            raise InvalidInput("crypto_earning_scale must be positive")
        if self.coins_per_dollar <= 0:
            raise InvalidInput("coins_per_dollar must be positive")
        if self.max_conflict_retries < 1:
            raise InvalidInput("max_conflict_retries must be >= 1")
        if self.timezone != "UTC":
            try:
                ZoneInfo(self.timezone)
            except (ZoneInfoNotFoundError, ValueError):
                raise InvalidInput(f"unknown timezone {self.timezone!r}") from None

    @property
    def zone(self) -> tzinfo:
        if self.timezone == "UTC":
            return UTC
        return ZoneInfo(self.timezone)

    @classmethod
    def from_env(cls) -> EconomyConfig:
        """Load settings from SLOT_ECONOMY_* environment variables."""
        defaults = cls()
        fee_percentage = _env_decimal("FEE_PERCENTAGE", defaults.fee_rate * 100)
        return cls(
            starting_coins=_env_int("STARTING_COINS", defaults.starting_coins),
            fee_rate=fee_percentage / 100,
            daily_bonus_base=_env_int("DAILY_BONUS_BASE", defaults.daily_bonus_base),
            daily_bonus_step=_env_decimal("DAILY_BONUS_STEP", defaults.daily_bonus_step),
            daily_bonus_max_multiplier=_env_decimal(
                "DAILY_BONUS_MAX_MULTIPLIER", defaults.daily_bonus_max_multiplier
            ),
            jackpot_multiplier=_env_int("JACKPOT_MULTIPLIER", defaults.jackpot_multiplier),
            crypto_earning_scale=_env_decimal("CRYPTO_EARNING_SCALE", defaults.crypto_earning_scale),
            coins_per_dollar=_env_int("COINS_PER_DOLLAR", defaults.coins_per_dollar),
            earned_asset=(_env("EARNED_ASSET") or defaults.earned_asset).upper(),
            max_conflict_retries=_env_int("MAX_CONFLICT_RETRIES", defaults.max_conflict_retries),
            timezone=_env("TIMEZONE") or defaults.timezone,
            log_level=(_env("LOG_LEVEL") or defaults.log_level).upper(),
            verbose=_env_bool("VERBOSE", defaults.verbose),
        )
