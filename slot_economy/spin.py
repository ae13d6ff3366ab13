"""
spin.py - Spin resolution

Pure functions turning machine attributes, a bet and random draws into a
SpinOutcome, and a SpinOutcome into the PendingEvent the ledger applies.
Nothing here touches account state; the random source is a parameter, so
any outcome can be reproduced by injecting the draws.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_FLOOR
from typing import Optional, Protocol, Tuple

from .catalog import SymbolSet, get_symbol_set
from .config import CRYPTO_EARNING_SCALE, JACKPOT_MULTIPLIER
from .core import (
    COINS, Effect, InvalidBet, InvalidInput, PendingEvent, TransactionKind,
    credit, debit, round_amount,
)
from .records import MachineAttributes


class RandomSource(Protocol):
    """Anything with random.Random's randrange(stop)."""

    def randrange(self, stop: int) -> int:
        ...


@dataclass(frozen=True, slots=True)
class SpinOutcome:
    """
    Result of one spin.

    Attributes:
        symbols: Drawn symbol per reel
        is_win: All reels show the same symbol
        is_jackpot: The winning symbol is the set's jackpot symbol
        win_amount: Coins paid out (0 on a loss)
        crypto_earned: Unrounded crypto reward; rounded when persisted
        multiplier: Jackpot multiplier applied (1 unless is_jackpot)
        bet_amount: Coins wagered
        paylines: Reel indices forming each winning line
    """
    symbols: Tuple[str, ...]
    is_win: bool
    is_jackpot: bool
    win_amount: int
    crypto_earned: Decimal
    multiplier: int
    bet_amount: int
    paylines: Tuple[Tuple[int, ...], ...] = ()

    @property
    def net(self) -> int:
        return self.win_amount - self.bet_amount


def validate_bet(attributes: MachineAttributes, bet_amount) -> int:
    """Return the bet as an int, or raise InvalidBet if outside [min_bet, max_bet]."""
    if isinstance(bet_amount, bool) or not isinstance(bet_amount, int):
        raise InvalidInput(f"bet amount must be a whole number of coins, got {bet_amount!r}")
    if bet_amount < attributes.min_bet or bet_amount > attributes.max_bet:
        raise InvalidBet(
            f"bet {bet_amount} outside [{attributes.min_bet}, {attributes.max_bet}]"
        )
    return bet_amount


def draw_symbols(symbols: SymbolSet, reels: int, rng: RandomSource) -> Tuple[str, ...]:
    """Draw one symbol per reel, uniformly and with replacement."""
    return tuple(symbols[rng.randrange(len(symbols))].name for _ in range(reels))


def resolve_spin(
    attributes: MachineAttributes,
    bet_amount: int,
    rng: RandomSource,
    symbols: Optional[SymbolSet] = None,
    jackpot_multiplier: int = JACKPOT_MULTIPLIER,
    earning_scale: Decimal = CRYPTO_EARNING_SCALE,
) -> SpinOutcome:
    """
    Resolve one spin.

    A spin wins iff every reel shows the same symbol. The payout is
    bet * symbol payout * payout_multiplier, times jackpot_multiplier for the
    jackpot symbol, floored to whole coins. Crypto earned on a win is
    win_amount * crypto_earning_rate / earning_scale.

    The bet is assumed to be validated by the caller (see validate_bet).
    """
    if symbols is None:
        symbols = get_symbol_set(attributes.symbol_set)
    drawn = draw_symbols(symbols, attributes.reels, rng)

    if len(set(drawn)) != 1:
        return SpinOutcome(
            symbols=drawn, is_win=False, is_jackpot=False, win_amount=0,
            crypto_earned=Decimal("0"), multiplier=1, bet_amount=bet_amount,
        )

    winner = next(s for s in symbols if s.name == drawn[0])
    multiplier = jackpot_multiplier if winner.is_jackpot else 1
    gross = Decimal(bet_amount) * winner.payout * attributes.payout_multiplier * multiplier
    win_amount = int(gross.to_integral_value(rounding=ROUND_FLOOR))
    crypto_earned = Decimal(win_amount) * attributes.crypto_earning_rate / earning_scale

    return SpinOutcome(
        symbols=drawn,
        is_win=True,
        is_jackpot=winner.is_jackpot,
        win_amount=win_amount,
        crypto_earned=crypto_earned,
        multiplier=multiplier,
        bet_amount=bet_amount,
        paylines=(tuple(range(attributes.reels)),),
    )


def compute_spin_event(
    account_id: str,
    machine_id: str,
    outcome: SpinOutcome,
    session_id: str,
    earned_asset: str,
    timestamp: datetime,
    auto_spin: bool = False,
) -> PendingEvent:
    """
    Build the game_win / game_loss event for a resolved spin.

    The bet is debited, the win and any crypto earned are credited, and the
    account, machine and session records are updated in the same event.
    """
    crypto = round_amount(outcome.crypto_earned, earned_asset)
    moves = [debit(Decimal(outcome.bet_amount), COINS, "bet")]
    if outcome.win_amount > 0:
        moves.append(credit(Decimal(outcome.win_amount), COINS, "win"))
    if crypto > 0:
        moves.append(credit(crypto, earned_asset, "crypto earned"))

    spin_params = {
        'machine_id': machine_id,
        'session_id': session_id,
        'symbols': outcome.symbols,
        'bet_amount': outcome.bet_amount,
        'win_amount': outcome.win_amount,
        'is_jackpot': outcome.is_jackpot,
        'crypto_earned': crypto,
        'auto_spin': auto_spin,
    }
    effects = [Effect("record_spin", spin_params), Effect("session_spin", spin_params)]
    if crypto > 0:
        effects.append(Effect("lot_earn", {'asset': earned_asset, 'quantity': crypto}))

    if outcome.win_amount > 0:
        kind, amount = TransactionKind.GAME_WIN, outcome.win_amount
        description = f"Won {outcome.win_amount} coins from slot machine spin"
    else:
        kind, amount = TransactionKind.GAME_LOSS, outcome.bet_amount
        description = f"Lost {outcome.bet_amount} coins on slot machine spin"

    return PendingEvent(
        account_id=account_id,
        kind=kind,
        moves=tuple(moves),
        effects=tuple(effects),
        amount=Decimal(amount),
        currency=COINS,
        timestamp=timestamp,
        description=description,
        machine_id=machine_id,
        details={
            'symbols': list(outcome.symbols),
            'bet_amount': outcome.bet_amount,
            'win_amount': outcome.win_amount,
            'is_jackpot': outcome.is_jackpot,
            'multiplier': outcome.multiplier,
            'crypto_earned': crypto,
        },
    )
