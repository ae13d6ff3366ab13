"""
catalog.py - Read-only game catalogs

Symbol sets, supported crypto assets, machine types, upgrades and
achievements. Every catalog is validated when it is built, so the spin
resolver and achievement evaluator never see an empty symbol set or an
unknown rule type.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from decimal import Decimal
import re
from typing import Any, Dict, Iterable, Mapping, Optional, Sequence, Tuple

from .core import InvalidInput, UnsupportedAsset, NotFound, to_decimal
from .records import MachineAttributes, UPGRADE_ATTRIBUTES


# ============================================================================
# SYMBOL TABLE
# ============================================================================

@dataclass(frozen=True, slots=True)
class Symbol:
    name: str
    payout: Decimal
    is_jackpot: bool = False


SymbolSet = Tuple[Symbol, ...]


def build_symbol_sets(raw: Mapping[str, Sequence[Tuple[str, Any, bool]]]) -> Dict[str, SymbolSet]:
    """
    Build symbol sets from (symbol, payout, is_jackpot) tuples.

    Raises:
        InvalidInput: for an empty set, a duplicate symbol or a non-positive payout
    """
    sets: Dict[str, SymbolSet] = {}
    for set_name, entries in raw.items():
        if not entries:
            raise InvalidInput(f"symbol set {set_name!r} is empty")
        symbols = []
        seen = set()
        for name, payout, is_jackpot in entries:
            if name in seen:
                raise InvalidInput(f"duplicate symbol {name!r} in set {set_name!r}")
            seen.add(name)
            value = to_decimal(payout, f"payout of {name}")
            if value <= 0:
                raise InvalidInput(f"payout of {name!r} must be positive, got {value}")
            symbols.append(Symbol(name, value, bool(is_jackpot)))
        sets[set_name] = tuple(symbols)
    return sets


SYMBOL_SETS: Dict[str, SymbolSet] = build_symbol_sets({
    'classic': [
        ('7', 10, True),
        ('BAR', 5, False),
        ('Cherry', 3, False),
        ('Lemon', 2, False),
        ('Orange', 2, False),
    ],
    'fruits': [
        ('Strawberry', 10, True),
        ('Watermelon', 5, False),
        ('Grape', 3, False),
        ('Banana', 2, False),
        ('Pineapple', 2, False),
    ],
    'crypto': [
        ('Bitcoin', 10, True),
        ('Ethereum', 5, False),
        ('Litecoin', 3, False),
        ('Dogecoin', 2, False),
        ('Ripple', 2, False),
    ],
})


def get_symbol_set(name: str, sets: Optional[Mapping[str, SymbolSet]] = None) -> SymbolSet:
    sets = SYMBOL_SETS if sets is None else sets
    try:
        return sets[name]
    except KeyError:
        raise InvalidInput(f"unknown symbol set {name!r}") from None


# ============================================================================
# CRYPTO ASSETS
# ============================================================================

@dataclass(frozen=True, slots=True)
class CryptoAsset:
    symbol: str
    asset_id: str
    name: str


SUPPORTED_CRYPTOS: Tuple[CryptoAsset, ...] = (
    CryptoAsset('BTC', 'bitcoin', 'Bitcoin'),
    CryptoAsset('ETH', 'ethereum', 'Ethereum'),
    CryptoAsset('LTC', 'litecoin', 'Litecoin'),
    CryptoAsset('DOGE', 'dogecoin', 'Dogecoin'),
    CryptoAsset('XRP', 'ripple', 'Ripple'),
)

_ASSET_ALIASES: Dict[str, str] = {}
for _asset in SUPPORTED_CRYPTOS:
    _ASSET_ALIASES[_asset.symbol] = _asset.symbol
    _ASSET_ALIASES[_asset.asset_id.upper()] = _asset.symbol

_ASSET_PATTERN = re.compile(r"[A-Za-z]{2,16}")


def normalize_asset(value: Any) -> str:
    """
    Resolve a ticker ("btc") or asset id ("bitcoin") to its ticker.

    Raises:
        InvalidInput: value is not a plausible asset symbol
        UnsupportedAsset: value is well-formed but not traded
    """
    if not isinstance(value, str):
        raise InvalidInput(f"asset symbol must be a string, got {value!r}")
    key = value.strip()
    if not _ASSET_PATTERN.fullmatch(key):
        raise InvalidInput(f"malformed asset symbol {value!r}")
    try:
        return _ASSET_ALIASES[key.upper()]
    except KeyError:
        raise UnsupportedAsset(f"unsupported asset {key.upper()}") from None


def validate_withdrawal_address(asset: str, address: Any) -> str:
    """Format check for a simulated withdrawal address."""
    if not isinstance(address, str) or not address.strip():
        raise InvalidInput("withdrawal address is required")
    address = address.strip()
    if asset == 'BTC':
        valid = 26 <= len(address) <= 35
    elif asset == 'ETH':
        valid = address.startswith('0x') and len(address) == 42
    else:
        valid = len(address) > 10
    if not valid:
        raise InvalidInput(f"invalid {asset} address {address!r}")
    return address


# ============================================================================
# MACHINE TYPES
# ============================================================================

@dataclass(frozen=True, slots=True)
class MachineType:
    type_id: str
    name: str
    price: int
    attributes: MachineAttributes


MACHINE_TYPES: Dict[str, MachineType] = {
    t.type_id: t for t in (
        MachineType('basic', 'Basic Slot Machine', 0, MachineAttributes()),
        MachineType('premium', 'Premium Slot Machine', 5000, MachineAttributes(
            payout_multiplier=Decimal("1.1"), max_bet=250, symbol_set='fruits',
        )),
        MachineType('deluxe', 'Deluxe Slot Machine', 15000, MachineAttributes(
            payout_multiplier=Decimal("1.2"), paylines=3, min_bet=20, max_bet=500,
            symbol_set='fruits',
        )),
        MachineType('crypto', 'Crypto Slot Machine', 30000, MachineAttributes(
            payout_multiplier=Decimal("1.1"), max_bet=500,
            crypto_earning_rate=Decimal("0.05"), symbol_set='crypto',
        )),
        MachineType('jackpot', 'Jackpot Slot Machine', 50000, MachineAttributes(
            payout_multiplier=Decimal("1.5"), min_bet=50, max_bet=1000,
        )),
    )
}

for _type in MACHINE_TYPES.values():
    _type.attributes.validate()
    get_symbol_set(_type.attributes.symbol_set)


def get_machine_type(type_id: str) -> MachineType:
    try:
        return MACHINE_TYPES[type_id]
    except KeyError:
        raise NotFound(f"unknown machine type {type_id!r}") from None


# ============================================================================
# UPGRADES
# ============================================================================

@dataclass(frozen=True, slots=True)
class UpgradeSpec:
    """
    Catalog upgrade. effects are additive attribute deltas.

    Selling an unapplied upgrade returns sell_value, or half the price.
    """
    upgrade_id: str
    name: str
    category: str
    price: int
    effects: Mapping[str, Decimal] = field(default_factory=dict)
    sell_value: Optional[int] = None

    def __post_init__(self):
        if self.price < 0:
            raise InvalidInput(f"upgrade {self.upgrade_id!r} has negative price")
        for name in self.effects:
            if name not in UPGRADE_ATTRIBUTES:
                raise InvalidInput(f"upgrade {self.upgrade_id!r} targets unknown attribute {name!r}")


UPGRADES: Dict[str, UpgradeSpec] = {
    u.upgrade_id: u for u in (
        UpgradeSpec('payout_boost', 'Payout Boost', 'payout', 500,
                    {'payout_multiplier': Decimal("0.1")}),
        UpgradeSpec('golden_payout', 'Golden Payout', 'payout', 2500,
                    {'payout_multiplier': Decimal("0.25")}, sell_value=1500),
        UpgradeSpec('quick_spin', 'Quick Spin', 'speed', 300,
                    {'spin_speed': Decimal("0.5")}),
        UpgradeSpec('extra_reel', 'Extra Reel', 'reels', 1500,
                    {'reels': Decimal("1")}),
        UpgradeSpec('extra_payline', 'Extra Payline', 'paylines', 800,
                    {'paylines': Decimal("1")}),
        UpgradeSpec('crypto_miner', 'Crypto Miner', 'crypto', 1000,
                    {'crypto_earning_rate': Decimal("0.01")}),
        UpgradeSpec('high_roller', 'High Roller', 'special', 1200,
                    {'max_bet': Decimal("400")}),
    )
}


def get_upgrade_spec(upgrade_id: str) -> UpgradeSpec:
    try:
        return UPGRADES[upgrade_id]
    except KeyError:
        raise NotFound(f"unknown upgrade {upgrade_id!r}") from None


# ============================================================================
# ACHIEVEMENTS
# ============================================================================

# Rule type -> where the evaluator reads the stat from (see achievements.stat_snapshot)
RULE_TYPES = frozenset({
    'total_spins',
    'total_wins',
    'total_losses',
    'total_coins_won',
    'total_bets',
    'biggest_win',
    'jackpot_wins',
    'crypto_earned',
    'consecutive_login_days',
    'machines_owned',
    'upgrades_purchased',
})

REWARD_TYPES = frozenset({'coins', 'tokens', 'crypto'})


@dataclass(frozen=True, slots=True)
class Achievement:
    """Rule (rule_type >= threshold) and the reward granted once it holds."""
    achievement_id: str
    name: str
    rule_type: str
    threshold: Decimal
    reward_type: str
    reward_amount: Decimal
    category: str = 'gameplay'
    reward_asset: Optional[str] = None


class AchievementCatalog:
    """Ordered, validated achievement rules."""

    def __init__(self, achievements: Iterable[Achievement]):
        self._entries: Tuple[Achievement, ...] = tuple(achievements)
        self._by_id: Dict[str, Achievement] = {}
        for a in self._entries:
            if a.achievement_id in self._by_id:
                raise InvalidInput(f"duplicate achievement id {a.achievement_id!r}")
            if a.rule_type not in RULE_TYPES:
                raise InvalidInput(f"achievement {a.achievement_id!r} has unknown rule type {a.rule_type!r}")
            if a.reward_type not in REWARD_TYPES:
                raise InvalidInput(f"achievement {a.achievement_id!r} has unknown reward type {a.reward_type!r}")
            if a.reward_amount <= 0:
                raise InvalidInput(f"achievement {a.achievement_id!r} has non-positive reward")
            if a.reward_type == 'crypto' and a.reward_asset is not None:
                normalize_asset(a.reward_asset)
            self._by_id[a.achievement_id] = a

    def list(self) -> Tuple[Achievement, ...]:
        return self._entries

    def get(self, achievement_id: str) -> Achievement:
        try:
            return self._by_id[achievement_id]
        except KeyError:
            raise NotFound(f"unknown achievement {achievement_id!r}") from None

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"AchievementCatalog({len(self._entries)} achievements)"


def _a(achievement_id, name, rule_type, threshold, reward_type, reward_amount, category='gameplay', asset=None):
    return Achievement(achievement_id, name, rule_type, Decimal(threshold), reward_type,
                       Decimal(reward_amount), category, asset)


DEFAULT_ACHIEVEMENTS = AchievementCatalog([
    _a('first_spin', 'First Spin', 'total_spins', 1, 'coins', 50),
    _a('spinner_100', 'Spinner', 'total_spins', 100, 'coins', 500),
    _a('spinner_1000', 'Spin Master', 'total_spins', 1000, 'tokens', 10),
    _a('first_win', 'Beginner\'s Luck', 'total_wins', 1, 'coins', 100),
    _a('winner_50', 'Lucky Streak', 'total_wins', 50, 'coins', 1000),
    _a('big_winner', 'Big Winner', 'biggest_win', 1000, 'tokens', 5),
    _a('coin_collector', 'Coin Collector', 'total_coins_won', 10000, 'coins', 2000),
    _a('high_stakes', 'High Stakes', 'total_bets', 10000, 'tokens', 5, 'progression'),
    _a('jackpot', 'Jackpot!', 'jackpot_wins', 1, 'crypto', '0.0001', 'special', 'BTC'),
    _a('crypto_miner', 'Crypto Miner', 'crypto_earned', '0.01', 'coins', 500, 'crypto'),
    _a('loyal_3', 'Regular', 'consecutive_login_days', 3, 'coins', 300, 'progression'),
    _a('loyal_7', 'Devoted', 'consecutive_login_days', 7, 'tokens', 10, 'progression'),
    _a('collector', 'Collector', 'machines_owned', 2, 'coins', 1000, 'collection'),
    _a('tinkerer', 'Tinkerer', 'upgrades_purchased', 1, 'coins', 200, 'collection'),
])
