"""
slot_economy - Virtual-currency slot machine economy

Resolves slot spins and propagates their monetary outcomes atomically across
account, machine, wallet, session, achievement and transaction records, with
a simulated crypto wallet priced by a pluggable oracle.

Usage:
    from slot_economy import SlotEconomy, StaticPriceOracle, StopPolicy

    economy = SlotEconomy(StaticPriceOracle())
    alice = economy.open_account("alice")
    machine_id = economy.machines(alice)[0]

    result = economy.resolve_spin(alice, machine_id, 10)
    run = economy.start_auto_spin(alice, machine_id, 10, 20, StopPolicy())
    economy.run_auto_spin(alice)

    economy.claim_daily_bonus(alice)
    economy.purchase_crypto(alice, "BTC", "0.0002")
    economy.verify_conservation(alice)
"""

from loguru import logger

# Core types
from .core import (
    SYSTEM_WALLET,
    PLAYER_WALLET,
    COINS,
    TOKENS,
    Move,
    Effect,
    PendingEvent,
    Transaction,
    TransactionKind,
    EconomyError,
    InsufficientFunds,
    InvalidInput,
    InvalidBet,
    UnsupportedAsset,
    NotFound,
    AccountNotFound,
    MachineNotFound,
    UpgradeNotFound,
    NoActiveSession,
    PriceUnavailable,
    ConflictError,
    AlreadyClaimed,
    AlreadyGranted,
    credit,
    debit,
)

# Configuration
from .config import EconomyConfig
from .logging_setup import setup_logging

# Records
from .records import (
    Account,
    AccountBook,
    GameSession,
    GameStats,
    Lot,
    Machine,
    MachineAttributes,
    StopPolicy,
    Wallet,
)

# Catalogs
from .catalog import (
    Achievement,
    AchievementCatalog,
    DEFAULT_ACHIEVEMENTS,
    MACHINE_TYPES,
    SUPPORTED_CRYPTOS,
    SYMBOL_SETS,
    UPGRADES,
    Symbol,
)

# Pricing
from .pricing_source import PriceOracle, StaticPriceOracle, TimeSeriesPriceOracle

# Spins, ledger and the engine
from .spin import SpinOutcome, resolve_spin
from .store import AccountStore
from .ledger import EconomyLedger, EFFECT_APPLIERS
from .portfolio import Holding, PortfolioSummary
from .bonus import BonusClaim
from .session import AutoSpinResult, SessionState, SpinResult
from .rtp import RTPEstimate, hit_frequency, simulate_rtp, theoretical_rtp
from .engine import SlotEconomy

logger.disable("slot_economy")

__version__ = "0.1.0"
