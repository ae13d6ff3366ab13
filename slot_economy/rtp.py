"""
rtp.py - Return-to-player analysis

Exact and Monte-Carlo return-to-player (RTP) figures for a machine
configuration, under the all-reels-match win rule.

Provides:
- theoretical_rtp: exact expected payout per coin wagered
- hit_frequency: probability that a spin wins
- simulate_rtp: vectorized simulation with a normal-approximation
  confidence interval

The exact figures ignore flooring of win amounts to whole coins; the
simulation applies it, so simulated RTP sits at or slightly below the
exact value for bets that do not divide evenly.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

import numpy as np
from scipy.special import ndtri

from .catalog import SymbolSet, get_symbol_set
from .config import JACKPOT_MULTIPLIER
from .core import InvalidInput, economy_context
from .records import MachineAttributes


@dataclass(frozen=True, slots=True)
class RTPEstimate:
    """Simulated return-to-player."""
    spins: int
    rtp: float
    std_error: float
    ci_low: float
    ci_high: float
    confidence: float
    hit_rate: float
    jackpot_rate: float


def _symbols(attributes: MachineAttributes, symbols: Optional[SymbolSet]) -> SymbolSet:
    return get_symbol_set(attributes.symbol_set) if symbols is None else symbols


@economy_context
def hit_frequency(attributes: MachineAttributes, symbols: Optional[SymbolSet] = None) -> Decimal:
    """P(all reels match) = n * (1/n)^reels."""
    n = len(_symbols(attributes, symbols))
    return Decimal(n) / Decimal(n) ** attributes.reels


@economy_context
def theoretical_rtp(
    attributes: MachineAttributes,
    symbols: Optional[SymbolSet] = None,
    jackpot_multiplier: int = JACKPOT_MULTIPLIER,
) -> Decimal:
    """
    Expected payout per coin wagered.

        RTP = sum_s (1/n)^reels * payout_s * payout_multiplier * (jackpot_multiplier if jackpot)
    """
    table = _symbols(attributes, symbols)
    p_line = Decimal(1) / Decimal(len(table)) ** attributes.reels
    total = Decimal(0)
    for symbol in table:
        multiplier = jackpot_multiplier if symbol.is_jackpot else 1
        total += p_line * symbol.payout * attributes.payout_multiplier * multiplier
    return total


@economy_context
def simulate_rtp(
    attributes: MachineAttributes,
    bet_amount: int,
    spins: int,
    seed: Optional[int] = None,
    symbols: Optional[SymbolSet] = None,
    jackpot_multiplier: int = JACKPOT_MULTIPLIER,
    confidence: float = 0.95,
) -> RTPEstimate:
    """
    Monte-Carlo RTP over `spins` independent spins.

    Draws every reel at once with numpy; the same seed reproduces the same
    estimate.
    """
    if spins < 2:
        raise InvalidInput(f"spins must be >= 2, got {spins}")
    if not 0 < confidence < 1:
        raise InvalidInput(f"confidence must be in (0, 1), got {confidence}")
    if bet_amount <= 0:
        raise InvalidInput(f"bet_amount must be positive, got {bet_amount}")
    table = _symbols(attributes, symbols)

    rng = np.random.default_rng(seed)
    draws = rng.integers(0, len(table), size=(spins, attributes.reels))
    is_win = np.all(draws == draws[:, :1], axis=1)

    payouts = np.array([
        float(s.payout) * (jackpot_multiplier if s.is_jackpot else 1) for s in table
    ])
    jackpots = np.array([s.is_jackpot for s in table])
    winner = draws[:, 0]
    gross = bet_amount * payouts[winner] * float(attributes.payout_multiplier)
    wins = np.where(is_win, np.floor(gross), 0.0)

    returns = wins / bet_amount
    rtp = float(returns.mean())
    std_error = float(returns.std(ddof=1) / np.sqrt(spins))
    z = float(ndtri(0.5 + confidence / 2))
    return RTPEstimate(
        spins=spins,
        rtp=rtp,
        std_error=std_error,
        ci_low=rtp - z * std_error,
        ci_high=rtp + z * std_error,
        confidence=confidence,
        hit_rate=float(is_win.mean()),
        jackpot_rate=float((is_win & jackpots[winner]).mean()),
    )
