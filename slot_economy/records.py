"""
records.py - Mutable account records owned by the account store

An AccountBook groups everything one account owns (account, wallet,
machines, sessions and the house-side balances mirroring them). It is the
unit of mutual exclusion: the ledger stages a copy, applies an event to it
and swaps it in under the account lock.
"""

from __future__ import annotations
from dataclasses import dataclass, field, fields, replace
from datetime import date, datetime
from decimal import Decimal
import copy
from typing import Dict, List, Mapping, Optional, Set, Tuple

from .core import COINS, TOKENS, InvalidInput, round_amount


# ============================================================================
# STATISTICS
# ============================================================================

@dataclass(slots=True)
class GameStats:
    """Spin totals kept per account, per machine and per session."""
    total_spins: int = 0
    total_wins: int = 0
    total_losses: int = 0
    total_winnings: int = 0
    total_bets: int = 0
    biggest_win: int = 0
    jackpots_won: int = 0

    def record_spin(self, bet_amount: int, win_amount: int, is_jackpot: bool) -> None:
        self.total_spins += 1
        self.total_bets += bet_amount
        if win_amount > 0:
            self.total_wins += 1
            self.total_winnings += win_amount
            self.biggest_win = max(self.biggest_win, win_amount)
            if is_jackpot:
                self.jackpots_won += 1
        else:
            self.total_losses += 1

    @property
    def net_result(self) -> int:
        return self.total_winnings - self.total_bets

    def as_dict(self) -> Dict[str, int]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


@dataclass(slots=True)
class DailyBonus:
    last_claimed_day: Optional[date] = None
    last_claimed_at: Optional[datetime] = None
    streak: int = 0


# ============================================================================
# ACCOUNT
# ============================================================================

@dataclass(slots=True)
class OwnedUpgrade:
    """An upgrade bought from the catalog. Installed on at most one machine."""
    upgrade_id: str
    catalog_id: str
    purchase_price: int
    effects: Dict[str, Decimal]
    sell_value: Optional[int] = None
    machine_id: Optional[str] = None
    purchased_at: Optional[datetime] = None

    @property
    def applied(self) -> bool:
        return self.machine_id is not None


@dataclass(slots=True)
class Account:
    """
    Player account.

    coins and tokens are integral and never negative. Achievement progress
    is one-way: ids are only ever added.
    """
    account_id: str
    username: str
    coins: int = 0
    tokens: int = 0
    stats: GameStats = field(default_factory=GameStats)
    daily_bonus: DailyBonus = field(default_factory=DailyBonus)
    achievements: Set[str] = field(default_factory=set)
    upgrades: Dict[str, OwnedUpgrade] = field(default_factory=dict)
    upgrades_purchased: int = 0
    created_at: Optional[datetime] = None


# ============================================================================
# MACHINES
# ============================================================================

UPGRADE_ATTRIBUTES = (
    'payout_multiplier', 'win_rate', 'spin_speed', 'reels', 'paylines',
    'min_bet', 'max_bet', 'crypto_earning_rate',
)

_INTEGER_ATTRIBUTES = frozenset({'reels', 'paylines', 'min_bet', 'max_bet'})


@dataclass(frozen=True, slots=True)
class MachineAttributes:
    """Configured behaviour of a machine. Upgrades add deltas on top of a base."""
    payout_multiplier: Decimal = Decimal("1.0")
    win_rate: Decimal = Decimal("1.0")
    spin_speed: Decimal = Decimal("1.0")
    reels: int = 3
    paylines: int = 1
    min_bet: int = 10
    max_bet: int = 100
    crypto_earning_rate: Decimal = Decimal("0.01")
    symbol_set: str = "classic"

    def validate(self) -> MachineAttributes:
        """Raise InvalidInput for a configuration no spin can be resolved against."""
        if self.reels < 1:
            raise InvalidInput(f"reels must be >= 1, got {self.reels}")
        if self.paylines < 1:
            raise InvalidInput(f"paylines must be >= 1, got {self.paylines}")
        if self.min_bet <= 0:
            raise InvalidInput(f"min_bet must be positive, got {self.min_bet}")
        if self.min_bet > self.max_bet:
            raise InvalidInput(f"min_bet {self.min_bet} exceeds max_bet {self.max_bet}")
        if self.payout_multiplier <= 0:
            raise InvalidInput(f"payout_multiplier must be positive, got {self.payout_multiplier}")
        if self.crypto_earning_rate < 0:
            raise InvalidInput(f"crypto_earning_rate must be >= 0, got {self.crypto_earning_rate}")
        if self.spin_speed <= 0:
            raise InvalidInput(f"spin_speed must be positive, got {self.spin_speed}")
        return self

    def plus(self, deltas: Mapping[str, Decimal]) -> MachineAttributes:
        """Return attributes with additive deltas applied. The receiver is unchanged."""
        updates = {}
        for name, delta in deltas.items():
            if name not in UPGRADE_ATTRIBUTES:
                raise InvalidInput(f"unknown machine attribute {name!r}")
            current = getattr(self, name)
            if name in _INTEGER_ATTRIBUTES:
                updates[name] = current + int(delta)
            else:
                updates[name] = current + Decimal(delta)
        return replace(self, **updates)


@dataclass(slots=True)
class Machine:
    """A slot machine owned by exactly one account."""
    machine_id: str
    owner_id: str
    name: str
    machine_type: str
    base: MachineAttributes
    upgrades: List[str] = field(default_factory=list)
    deltas: Dict[str, Dict[str, Decimal]] = field(default_factory=dict)
    stats: GameStats = field(default_factory=GameStats)
    level: int = 1
    created_at: Optional[datetime] = None

    @property
    def attributes(self) -> MachineAttributes:
        """Effective attributes: base plus every installed upgrade's deltas."""
        effective = self.base
        for upgrade_id in self.upgrades:
            effective = effective.plus(self.deltas[upgrade_id])
        return effective


# ============================================================================
# WALLET
# ============================================================================

@dataclass(frozen=True, slots=True)
class Lot:
    """Held quantity of one asset and its weighted-average cost (USD per unit)."""
    quantity: Decimal
    average_cost: Decimal

    @property
    def cost_basis(self) -> Decimal:
        return self.quantity * self.average_cost


@dataclass(slots=True)
class WalletStats:
    total_invested: Decimal = Decimal("0")
    realized_pnl: Decimal = Decimal("0")
    total_earned: Dict[str, Decimal] = field(default_factory=dict)
    total_rewarded: Dict[str, Decimal] = field(default_factory=dict)
    total_deposited: Dict[str, Decimal] = field(default_factory=dict)
    total_withdrawn: Dict[str, Decimal] = field(default_factory=dict)

    def add(self, bucket: str, asset: str, quantity: Decimal) -> None:
        totals = getattr(self, bucket)
        totals[asset] = totals.get(asset, Decimal("0")) + quantity


@dataclass(slots=True)
class Wallet:
    """
    Crypto balances and cost-basis lots.

    Every held unit belongs to the asset's lot, so lots[a].quantity always
    equals balances[a]. Units acquired without a purchase carry zero cost.
    """
    balances: Dict[str, Decimal] = field(default_factory=dict)
    lots: Dict[str, Lot] = field(default_factory=dict)
    stats: WalletStats = field(default_factory=WalletStats)

    def balance(self, asset: str) -> Decimal:
        return self.balances.get(asset, Decimal("0"))


# ============================================================================
# SESSIONS
# ============================================================================

@dataclass(frozen=True, slots=True)
class StopPolicy:
    """Conditions that end an auto-spin run before its count is exhausted."""
    stop_on_jackpot: bool = True
    stop_on_big_win: bool = False
    big_win_threshold: int = 0

    def __post_init__(self):
        if self.big_win_threshold < 0:
            raise InvalidInput(f"big_win_threshold must be >= 0, got {self.big_win_threshold}")


@dataclass(slots=True)
class AutoSpin:
    remaining: int
    bet_amount: int
    policy: StopPolicy = field(default_factory=StopPolicy)
    requested: int = 0
    active: bool = True
    stop_reason: Optional[str] = None


@dataclass(frozen=True, slots=True)
class SpinRecord:
    """One spin as recorded in its session."""
    exec_id: str
    symbols: Tuple[str, ...]
    bet_amount: int
    win_amount: int
    is_win: bool
    is_jackpot: bool
    crypto_earned: Decimal
    timestamp: datetime


@dataclass(slots=True)
class GameSession:
    """
    Spins played on one machine. At most one active session per machine.

    Once active is False the session is terminal; a later spin opens a new one.
    """
    session_id: str
    account_id: str
    machine_id: str
    started_at: datetime
    starting_coins: int
    current_coins: int
    spins: List[SpinRecord] = field(default_factory=list)
    stats: GameStats = field(default_factory=GameStats)
    auto_spin: Optional[AutoSpin] = None
    active: bool = True
    ended_at: Optional[datetime] = None

    @property
    def auto_spin_running(self) -> bool:
        return self.active and self.auto_spin is not None and self.auto_spin.active

    def close(self, at: datetime, reason: Optional[str] = None) -> None:
        if self.auto_spin is not None and self.auto_spin.active:
            self.auto_spin.active = False
            self.auto_spin.stop_reason = reason
        self.active = False
        self.ended_at = at


# ============================================================================
# ACCOUNT BOOK
# ============================================================================

@dataclass(slots=True)
class AccountBook:
    """
    Everything one account owns, plus the house-side mirror of its balances.

    For every currency, player balance + house[currency] == 0.
    """
    account: Account
    wallet: Wallet = field(default_factory=Wallet)
    machines: Dict[str, Machine] = field(default_factory=dict)
    sessions: Dict[str, GameSession] = field(default_factory=dict)
    house: Dict[str, Decimal] = field(default_factory=dict)
    version: int = 0

    @property
    def account_id(self) -> str:
        return self.account.account_id

    def balance(self, currency: str) -> Decimal:
        if currency == COINS:
            return Decimal(self.account.coins)
        if currency == TOKENS:
            return Decimal(self.account.tokens)
        return self.wallet.balance(currency)

    def set_balance(self, currency: str, value: Decimal) -> None:
        value = round_amount(value, currency)
        if currency == COINS:
            self.account.coins = int(value)
        elif currency == TOKENS:
            self.account.tokens = int(value)
        elif value == 0:
            self.wallet.balances.pop(currency, None)
        else:
            self.wallet.balances[currency] = value

    def balances(self) -> Dict[str, Decimal]:
        """Snapshot of every player-side balance."""
        snapshot = {COINS: Decimal(self.account.coins), TOKENS: Decimal(self.account.tokens)}
        for asset in sorted(self.wallet.balances):
            snapshot[asset] = self.wallet.balances[asset]
        return snapshot

    def active_session(self, machine_id: Optional[str] = None) -> Optional[GameSession]:
        """Active session on machine_id, or the one running auto-spin when machine_id is None."""
        for session in self.sessions.values():
            if not session.active:
                continue
            if machine_id is None:
                if session.auto_spin_running:
                    return session
            elif session.machine_id == machine_id:
                return session
        return None

    def stage(self) -> AccountBook:
        """
        Copy for staging an update.

        Spin records are immutable, so session spin lists are copied
        shallowly; everything else is deep-copied.
        """
        sessions = {}
        for session_id, session in self.sessions.items():
            staged = copy.copy(session)
            staged.spins = list(session.spins)
            staged.stats = copy.copy(session.stats)
            staged.auto_spin = copy.copy(session.auto_spin)
            sessions[session_id] = staged
        return AccountBook(
            account=copy.deepcopy(self.account),
            wallet=copy.deepcopy(self.wallet),
            machines=copy.deepcopy(self.machines),
            sessions=sessions,
            house=dict(self.house),
            version=self.version,
        )
