"""
core.py - Core types, constants and exceptions for the slot economy engine

This module provides the foundational data structures for the engine:
1. Decimal context and per-currency precision tables
2. Exceptions: EconomyError and the domain-specific error types
3. Immutable data structures: Move, Effect, PendingEvent, Transaction
4. Canonical hashing helpers used to derive content-addressed intent ids

Nothing in this module mutates account state. Pending events describe an
INTENT; only the EconomyLedger turns an intent into a Transaction (FACT).
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from decimal import (
    Context, Decimal, DefaultContext, ROUND_HALF_EVEN, ROUND_DOWN, ROUND_UP, getcontext, localcontext,
)
from enum import Enum
import functools
import hashlib
from typing import Any, Callable, Dict, Mapping, Optional, Tuple, TypeVar


# ============================================================================
# DECIMAL CONTEXT CONFIGURATION
# ============================================================================
#
# All money math runs on Decimal with 50 digits and banker's rounding.
# Amounts are quantized only when they are persisted (see round_amount).
#
# Decimal contexts are per thread. DefaultContext seeds threads that touch
# decimal for the first time after import; public operations additionally
# run under economy_context() so threads with an older context agree too.
#
ECONOMY_DECIMAL_CONTEXT = Context(prec=50, rounding=ROUND_HALF_EVEN)
DefaultContext.prec = ECONOMY_DECIMAL_CONTEXT.prec
DefaultContext.rounding = ECONOMY_DECIMAL_CONTEXT.rounding
getcontext().prec = ECONOMY_DECIMAL_CONTEXT.prec
getcontext().rounding = ECONOMY_DECIMAL_CONTEXT.rounding

F = TypeVar('F', bound=Callable[..., Any])


def economy_context(func: F) -> F:
    """Run func under a copy of ECONOMY_DECIMAL_CONTEXT in the calling thread."""
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        with localcontext(ECONOMY_DECIMAL_CONTEXT):
            return func(*args, **kwargs)
    return wrapper  # type: ignore[return-value]


# ============================================================================
# CONSTANTS
# ============================================================================

# Counterparty of every player-side move. Exempt from balance validation.
SYSTEM_WALLET = "house"

# The account side of every move.
PLAYER_WALLET = "player"

COINS = "COINS"
TOKENS = "TOKENS"

# Quantities with absolute value below this threshold are treated as zero.
QUANTITY_EPSILON = Decimal("1e-12")

DECIMAL_PRECISION = {
    'COINS': 0,
    'TOKENS': 0,
    'CRYPTO': 8,
    'USD': 2,
}

DECIMAL_ROUNDING = {
    'COINS': ROUND_DOWN,
    'TOKENS': ROUND_DOWN,
    'CRYPTO': ROUND_DOWN,
    'USD': ROUND_HALF_EVEN,
    'FEES': ROUND_UP,
}


def asset_class(currency: str) -> str:
    """Return the precision class of a currency symbol."""
    if currency in (COINS, TOKENS):
        return currency
    if currency == 'USD':
        return 'USD'
    return 'CRYPTO'


def round_amount(value: Decimal, currency: str, rounding: Optional[str] = None) -> Decimal:
    """
    Quantize an amount to the persisted precision of its currency.

    Args:
        value: Unrounded amount
        currency: Currency symbol (COINS, TOKENS, USD or a crypto asset)
        rounding: Override of the class rounding mode (e.g. DECIMAL_ROUNDING['FEES'])
    """
    klass = asset_class(currency)
    places = DECIMAL_PRECISION[klass]
    mode = rounding or DECIMAL_ROUNDING[klass]
    return value.quantize(Decimal(1).scaleb(-places), rounding=mode)


def to_decimal(value: Any, name: str = "amount") -> Decimal:
    """Convert user input to a finite Decimal, raising InvalidInput otherwise."""
    if isinstance(value, bool):
        raise InvalidInput(f"{name} must be numeric, got {value!r}")
    if isinstance(value, float):
        value = repr(value)
    try:
        result = Decimal(value)
    except (ArithmeticError, TypeError, ValueError):
        raise InvalidInput(f"{name} must be numeric, got {value!r}") from None
    if not result.is_finite():
        raise InvalidInput(f"{name} must be finite, got {value!r}")
    return result


# ============================================================================
# EXCEPTIONS
# ============================================================================

class EconomyError(Exception):
    """Base exception for all economy engine errors."""
    pass


class InsufficientFunds(EconomyError):
    """Raised when a debit would take a player balance below zero."""

    def __init__(self, currency: str, available: Decimal, required: Decimal):
        self.currency = currency
        self.available = available
        self.required = required
        super().__init__(
            f"insufficient {currency}: available {available}, required {required}"
        )


class InvalidInput(EconomyError):
    """Raised for malformed input. Always raised before any side effect."""
    pass


class InvalidBet(InvalidInput):
    """Raised when a bet lies outside the machine's [min_bet, max_bet] range."""
    pass


class UnsupportedAsset(InvalidInput):
    """Raised for a well-formed asset symbol that the engine does not trade."""
    pass


class NotFound(EconomyError):
    """Base for unknown account, machine, session or upgrade lookups."""
    pass


class AccountNotFound(NotFound):
    pass


class MachineNotFound(NotFound):
    pass


class UpgradeNotFound(NotFound):
    pass


class NoActiveSession(NotFound):
    pass


class PriceUnavailable(EconomyError):
    """Raised when the price oracle cannot quote an asset."""
    pass


class ConflictError(EconomyError):
    """Raised when the stored account version moved under a staged update."""
    pass


class AlreadyClaimed(EconomyError):
    """Raised when the daily bonus was already claimed this calendar day."""

    def __init__(self, message: str, next_available: Optional[datetime] = None):
        self.next_available = next_available
        super().__init__(message)


class AlreadyGranted(EconomyError):
    """Raised when an achievement is already recorded for the account."""
    pass


# ============================================================================
# ENUMS
# ============================================================================

class TransactionKind(Enum):
    """Kind of economic event recorded in the transaction log."""
    ACCOUNT_OPENING = "account_opening"
    GAME_WIN = "game_win"
    GAME_LOSS = "game_loss"
    DAILY_BONUS = "daily_bonus"
    ACHIEVEMENT_REWARD = "achievement_reward"
    CRYPTO_PURCHASE = "crypto_purchase"
    CRYPTO_SALE = "crypto_sale"
    CRYPTO_CONVERSION = "crypto_conversion"
    CRYPTO_DEPOSIT = "crypto_deposit"
    CRYPTO_WITHDRAWAL = "crypto_withdrawal"
    PURCHASE_MACHINE = "purchase_machine"
    PURCHASE_UPGRADE = "purchase_upgrade"
    APPLY_UPGRADE = "apply_upgrade"
    SELL_UPGRADE = "sell_upgrade"


# ============================================================================
# CORE DATA STRUCTURES
# ============================================================================

@dataclass(frozen=True, slots=True)
class Move:
    """
    A single transfer of one currency between the player and the house.

    Attributes:
        quantity: Amount transferred (finite, positive)
        currency: COINS, TOKENS or a crypto asset symbol
        source: Wallet debited (PLAYER_WALLET or SYSTEM_WALLET)
        dest: Wallet credited
        memo: Short label for audit output
    """
    quantity: Decimal
    currency: str
    source: str
    dest: str
    memo: str = ""

    def __post_init__(self):
        if not isinstance(self.quantity, Decimal):
            raise ValueError(f"Move quantity must be Decimal, got {type(self.quantity)}")
        if not self.quantity.is_finite():
            raise ValueError(f"Move quantity must be finite, got {self.quantity}")
        if self.quantity < QUANTITY_EPSILON:
            raise ValueError(f"Move quantity must be positive, got {self.quantity}")
        if not self.currency or not self.currency.strip():
            raise ValueError("Move currency cannot be empty")
        if {self.source, self.dest} != {PLAYER_WALLET, SYSTEM_WALLET}:
            raise ValueError(f"Move must be between player and house, got {self.source}→{self.dest}")

    @property
    def is_debit(self) -> bool:
        return self.source == PLAYER_WALLET

    def __repr__(self) -> str:
        return f"Move({self.quantity} {self.currency}: {self.source}→{self.dest})"


def debit(quantity: Decimal, currency: str, memo: str = "") -> Move:
    """Player pays the house."""
    return Move(quantity, currency, PLAYER_WALLET, SYSTEM_WALLET, memo)


def credit(quantity: Decimal, currency: str, memo: str = "") -> Move:
    """House pays the player."""
    return Move(quantity, currency, SYSTEM_WALLET, PLAYER_WALLET, memo)


@dataclass(frozen=True, slots=True)
class Effect:
    """
    A record change applied alongside an event's moves.

    Effects are intents, not snapshots: the ledger re-applies them to the
    freshly read account state on every attempt.

    Attributes:
        name: Key into the ledger's applier table (e.g. "record_spin")
        params: Applier arguments
    """
    name: str
    params: Mapping[str, Any] = field(default_factory=dict)


def _normalize_decimal(d: Decimal) -> str:
    """Canonical string for a Decimal: Decimal("1.0") and Decimal("1.00") both become "1"."""
    normalized = d.normalize()
    if normalized == normalized.to_integral_value():
        return str(int(normalized))
    return format(normalized, 'f')


def _canonicalize(value: Any) -> str:
    """Deterministic serialization for content hashing, independent of dict order."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Decimal):
        return f"D:{_normalize_decimal(value)}"
    if isinstance(value, (int, float)):
        return f"N:{value}"
    if isinstance(value, str):
        return f"S:{value}"
    if isinstance(value, datetime):
        return f"T:{value.isoformat()}"
    if isinstance(value, Enum):
        return f"E:{value.value}"
    if isinstance(value, Mapping):
        items = sorted(value.items(), key=lambda kv: str(kv[0]))
        serialized = ",".join(f"{_canonicalize(k)}:{_canonicalize(v)}" for k, v in items)
        return f"{{{serialized}}}"
    if isinstance(value, (list, tuple)):
        serialized = ",".join(_canonicalize(item) for item in value)
        return f"[{serialized}]"
    if isinstance(value, (set, frozenset)):
        serialized = ",".join(_canonicalize(item) for item in sorted(value, key=str))
        return f"<{serialized}>"
    return f"R:{repr(value)}"


def _compute_intent_id(
    account_id: str,
    kind: TransactionKind,
    moves: Tuple[Move, ...],
    effects: Tuple[Effect, ...],
    timestamp: datetime,
) -> str:
    """
    Content hash of an event's intent.

    Same account, kind, moves, effects and timestamp always produce the same id.
    """
    parts = [f"account:{account_id}", f"kind:{kind.value}", f"at:{timestamp.isoformat()}"]
    for m in moves:
        parts.append(f"move:{_normalize_decimal(m.quantity)}|{m.currency}|{m.source}|{m.dest}")
    for e in effects:
        parts.append(f"effect:{e.name}|{_canonicalize(e.params)}")
    content = "|".join(parts)
    return hashlib.sha256(content.encode()).hexdigest()[:16]


@dataclass(frozen=True, slots=True)
class PendingEvent:
    """
    An economic event before execution - represents INTENT.

    Built by the pure compute_* functions and submitted to
    EconomyLedger.apply(), which validates, applies and records it.

    Attributes:
        account_id: Account whose records the event touches
        kind: Transaction kind recorded for the event
        moves: Balance transfers, applied in order (debits first)
        effects: Record changes applied after the moves
        amount: Headline amount reported in the transaction
        currency: Currency of the headline amount
        timestamp: When the event was built
        description: Human-readable summary
        fee: Fee charged on the receiving side
        fee_currency: Currency of the fee
        machine_id / achievement_id / upgrade_id: Back-references
        details: Extra audit data
        intent_id: Content hash (auto-computed)
    """
    account_id: str
    kind: TransactionKind
    moves: Tuple[Move, ...]
    effects: Tuple[Effect, ...]
    amount: Decimal
    currency: str
    timestamp: datetime
    description: str = ""
    fee: Decimal = Decimal("0")
    fee_currency: Optional[str] = None
    machine_id: Optional[str] = None
    achievement_id: Optional[str] = None
    upgrade_id: Optional[str] = None
    details: Mapping[str, Any] = field(default_factory=dict)
    intent_id: str = field(default="")

    def __post_init__(self):
        if not self.moves and not self.effects:
            raise ValueError("PendingEvent must have moves or effects")
        if not self.intent_id:
            object.__setattr__(self, 'intent_id', _compute_intent_id(
                self.account_id, self.kind, self.moves, self.effects, self.timestamp
            ))

    def __repr__(self) -> str:
        return (f"PendingEvent({self.kind.value} {self.amount} {self.currency}, "
                f"{len(self.moves)} moves, {len(self.effects)} effects)")


@dataclass(frozen=True, slots=True)
class Transaction:
    """
    An executed, immutable record of one economic event - represents FACT.

    Attributes:
        exec_id: Unique execution identifier
        sequence_number: Monotonic across the store (orders the audit trail)
        account_id: Account the event was applied to
        kind: Event kind
        amount / currency: Headline amount
        fee / fee_currency: Fee charged on the receiving side
        balances_after: Player balances snapshot right after the event
        moves: Balance transfers actually applied (rounded)
        timestamp: When the event was built
        intent_id: Content hash of the pending event
        description, machine_id, achievement_id, upgrade_id, details: audit data
    """
    exec_id: str
    sequence_number: int
    account_id: str
    kind: TransactionKind
    amount: Decimal
    currency: str
    fee: Decimal
    fee_currency: Optional[str]
    balances_after: Mapping[str, Decimal]
    moves: Tuple[Move, ...]
    timestamp: datetime
    intent_id: str
    description: str = ""
    machine_id: Optional[str] = None
    achievement_id: Optional[str] = None
    upgrade_id: Optional[str] = None
    details: Mapping[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'exec_id': self.exec_id,
            'sequence_number': self.sequence_number,
            'account_id': self.account_id,
            'type': self.kind.value,
            'amount': self.amount,
            'currency': self.currency,
            'fee': self.fee,
            'fee_currency': self.fee_currency,
            'balances_after': dict(self.balances_after),
            'description': self.description,
            'machine_id': self.machine_id,
            'achievement_id': self.achievement_id,
            'upgrade_id': self.upgrade_id,
            'details': dict(self.details),
            'timestamp': self.timestamp,
        }

    def __repr__(self) -> str:
        fee = f", fee={self.fee} {self.fee_currency}" if self.fee else ""
        return (f"Transaction({self.exec_id}: {self.kind.value} "
                f"{self.amount} {self.currency}{fee})")
