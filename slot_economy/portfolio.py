"""
portfolio.py - Crypto portfolio accounting

Pure functions for weighted-average cost-basis lots and the compute_*
builders that turn crypto operations into PendingEvents.

Lot rules:
    buy q at p into (q0, avg0):  avg = (q0*avg0 + q*p) / (q0 + q),  qty = q0 + q
    sell q at p from (q0, avg0): avg unchanged, qty = q0 - q,
                                 realized P/L = q * (p - avg0)
    A lot whose quantity reaches zero is removed.

Prices are USD per unit; coins convert at config.coins_per_dollar.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Mapping, Optional, Tuple

from .config import EconomyConfig
from .core import (
    COINS, DECIMAL_ROUNDING, Effect, InvalidInput, PendingEvent, TransactionKind,
    credit, debit, round_amount,
)
from .records import Lot, Wallet


ZERO = Decimal("0")


# ============================================================================
# LOT ARITHMETIC
# ============================================================================

def apply_buy(lot: Optional[Lot], quantity: Decimal, price: Decimal) -> Lot:
    """Add quantity bought at price to a lot (None for an empty lot)."""
    if quantity <= 0:
        raise InvalidInput(f"buy quantity must be positive, got {quantity}")
    if price < 0:
        raise InvalidInput(f"price must be >= 0, got {price}")
    if lot is None:
        return Lot(quantity, price)
    new_quantity = lot.quantity + quantity
    average = (lot.quantity * lot.average_cost + quantity * price) / new_quantity
    return Lot(new_quantity, average)


def apply_sell(lot: Optional[Lot], quantity: Decimal, price: Decimal) -> Tuple[Optional[Lot], Decimal]:
    """
    Remove quantity sold at price from a lot.

    Returns:
        (remaining lot or None if emptied, realized P/L in USD)
    """
    if quantity <= 0:
        raise InvalidInput(f"sell quantity must be positive, got {quantity}")
    held = lot.quantity if lot is not None else ZERO
    if quantity > held:
        raise InvalidInput(f"cannot sell {quantity}, lot holds {held}")
    realized = quantity * (price - lot.average_cost)
    return apply_reduce(lot, quantity), realized


def apply_reduce(lot: Optional[Lot], quantity: Decimal) -> Optional[Lot]:
    """Remove quantity from a lot without booking P/L (withdrawals)."""
    if lot is None:
        return None
    remaining = lot.quantity - quantity
    if remaining <= 0:
        return None
    return Lot(remaining, lot.average_cost)


# ============================================================================
# EVENT BUILDERS
# ============================================================================

def _crypto_quantity(quantity: Decimal, asset: str) -> Decimal:
    q = round_amount(quantity, asset)
    if q <= 0:
        raise InvalidInput(f"{asset} quantity must be at least 1e-8, got {quantity}")
    return q


def coins_for(usd: Decimal, config: EconomyConfig, rounding: str) -> int:
    return int(round_amount(usd * config.coins_per_dollar, COINS, rounding))


def compute_purchase(
    account_id: str,
    asset: str,
    quantity: Decimal,
    price: Decimal,
    config: EconomyConfig,
    timestamp: datetime,
) -> PendingEvent:
    """
    Buy quantity of asset with coins.

    The account pays ceil(quantity * price * coins_per_dollar) coins and is
    credited quantity minus the fee. The fee is part of the cost basis: the
    lot records the credited quantity at usd_value / net per unit.
    """
    q = _crypto_quantity(quantity, asset)
    usd_value = q * price
    cost = coins_for(usd_value, config, DECIMAL_ROUNDING['FEES'])
    if cost <= 0:
        raise InvalidInput(f"purchase of {q} {asset} is worth less than one coin")
    net = round_amount(q - q * config.fee_rate, asset)
    if net <= 0:
        raise InvalidInput(f"purchase of {q} {asset} leaves nothing after fees")

    return PendingEvent(
        account_id=account_id,
        kind=TransactionKind.CRYPTO_PURCHASE,
        moves=(debit(Decimal(cost), COINS, "purchase cost"), credit(net, asset, "purchase")),
        effects=(Effect("lot_buy", {'asset': asset, 'quantity': net, 'price': usd_value / net,
                                    'invested': usd_value}),),
        amount=q,
        currency=asset,
        timestamp=timestamp,
        description=f"Purchased {q} {asset} for {cost} coins",
        fee=q - net,
        fee_currency=asset,
        details={'price': price, 'cost_coins': cost, 'net_quantity': net, 'usd_value': usd_value},
    )


def compute_sale(
    account_id: str,
    asset: str,
    quantity: Decimal,
    price: Decimal,
    config: EconomyConfig,
    timestamp: datetime,
) -> PendingEvent:
    """
    Sell quantity of asset for coins.

    Gross proceeds are floor(quantity * price * coins_per_dollar); the fee is
    ceil(gross * fee_rate) coins. Realized P/L is booked by the ledger from
    the lot it finds at apply time.
    """
    q = _crypto_quantity(quantity, asset)
    gross = coins_for(q * price, config, DECIMAL_ROUNDING['COINS'])
    fee = int(round_amount(Decimal(gross) * config.fee_rate, COINS, DECIMAL_ROUNDING['FEES']))
    net = gross - fee
    if net <= 0:
        raise InvalidInput(f"sale of {q} {asset} is worth less than one coin after fees")

    return PendingEvent(
        account_id=account_id,
        kind=TransactionKind.CRYPTO_SALE,
        moves=(debit(q, asset, "sale"), credit(Decimal(net), COINS, "sale proceeds")),
        effects=(Effect("lot_sell", {'asset': asset, 'quantity': q, 'price': price}),),
        amount=q,
        currency=asset,
        timestamp=timestamp,
        description=f"Sold {q} {asset} for {net} coins",
        fee=Decimal(fee),
        fee_currency=COINS,
        details={'price': price, 'gross_coins': gross, 'net_coins': net},
    )


def compute_conversion(
    account_id: str,
    from_asset: str,
    to_asset: str,
    quantity: Decimal,
    from_price: Decimal,
    to_price: Decimal,
    config: EconomyConfig,
    timestamp: datetime,
) -> PendingEvent:
    """
    Convert quantity of from_asset into to_asset.

    Modeled as a sale of from_asset at from_price followed by a buy of
    to_asset at to_price with the USD proceeds after fee, both inside one
    event. The target lot carries the full USD value as its cost basis, so
    the fee and rounding dust land there.
    """
    if from_asset == to_asset:
        raise InvalidInput(f"cannot convert {from_asset} into itself")
    q = _crypto_quantity(quantity, from_asset)
    usd_value = q * from_price
    gross = usd_value / to_price
    net = round_amount(gross - gross * config.fee_rate, to_asset)
    if net <= 0:
        raise InvalidInput(f"conversion of {q} {from_asset} yields no {to_asset} after fees")

    return PendingEvent(
        account_id=account_id,
        kind=TransactionKind.CRYPTO_CONVERSION,
        moves=(debit(q, from_asset, "conversion"), credit(net, to_asset, "conversion")),
        effects=(
            Effect("lot_sell", {'asset': from_asset, 'quantity': q, 'price': from_price}),
            Effect("lot_buy", {'asset': to_asset, 'quantity': net, 'price': usd_value / net,
                               'invested': ZERO}),
        ),
        amount=q,
        currency=from_asset,
        timestamp=timestamp,
        description=f"Converted {q} {from_asset} to {net} {to_asset}",
        fee=gross - net,
        fee_currency=to_asset,
        details={
            'from_price': from_price, 'to_price': to_price, 'usd_value': usd_value,
            'to_asset': to_asset, 'gross_quantity': gross, 'net_quantity': net,
        },
    )


def compute_deposit(
    account_id: str,
    asset: str,
    quantity: Decimal,
    price: Optional[Decimal],
    timestamp: datetime,
) -> PendingEvent:
    """Simulated deposit. Cost basis is the quote at deposit time, or zero without one."""
    q = _crypto_quantity(quantity, asset)
    return PendingEvent(
        account_id=account_id,
        kind=TransactionKind.CRYPTO_DEPOSIT,
        moves=(credit(q, asset, "deposit"),),
        effects=(Effect("lot_deposit", {'asset': asset, 'quantity': q, 'price': price or ZERO}),),
        amount=q,
        currency=asset,
        timestamp=timestamp,
        description=f"Deposited {q} {asset}",
        details={'price': price},
    )


def compute_withdrawal(
    account_id: str,
    asset: str,
    quantity: Decimal,
    address: str,
    timestamp: datetime,
) -> PendingEvent:
    """Simulated withdrawal to address. The lot shrinks; no P/L is booked."""
    q = _crypto_quantity(quantity, asset)
    return PendingEvent(
        account_id=account_id,
        kind=TransactionKind.CRYPTO_WITHDRAWAL,
        moves=(debit(q, asset, "withdrawal"),),
        effects=(Effect("lot_withdraw", {'asset': asset, 'quantity': q}),),
        amount=q,
        currency=asset,
        timestamp=timestamp,
        description=f"Withdrew {q} {asset}",
        details={'address': address},
    )


# ============================================================================
# VALUATION
# ============================================================================

@dataclass(frozen=True, slots=True)
class Holding:
    asset: str
    quantity: Decimal
    average_cost: Decimal
    cost_basis: Decimal
    price: Optional[Decimal]
    current_value: Optional[Decimal]
    unrealized_pnl: Optional[Decimal]
    pnl_percent: Optional[Decimal]


@dataclass(frozen=True, slots=True)
class PortfolioSummary:
    holdings: Tuple[Holding, ...]
    total_invested: Decimal
    current_value: Decimal
    unrealized_pnl: Decimal
    pnl_percent: Optional[Decimal]
    realized_pnl: Decimal
    unpriced: Tuple[str, ...] = ()


def _percent(pnl: Decimal, basis: Decimal) -> Optional[Decimal]:
    if basis == 0:
        return None
    return pnl / basis * 100


def portfolio_summary(wallet: Wallet, prices: Mapping[str, Optional[Decimal]]) -> PortfolioSummary:
    """
    Value every lot at the given prices.

    Assets without a quote are listed in `unpriced` and left out of the
    valued totals.
    """
    holdings: List[Holding] = []
    unpriced: List[str] = []
    invested = value = ZERO
    for asset in sorted(wallet.lots):
        lot = wallet.lots[asset]
        price = prices.get(asset)
        if price is None:
            unpriced.append(asset)
            holdings.append(Holding(asset, lot.quantity, lot.average_cost, lot.cost_basis,
                                    None, None, None, None))
            continue
        current = lot.quantity * price
        pnl = current - lot.cost_basis
        holdings.append(Holding(asset, lot.quantity, lot.average_cost, lot.cost_basis,
                                price, current, pnl, _percent(pnl, lot.cost_basis)))
        invested += lot.cost_basis
        value += current

    total_pnl = value - invested
    return PortfolioSummary(
        holdings=tuple(holdings),
        total_invested=invested,
        current_value=value,
        unrealized_pnl=total_pnl,
        pnl_percent=_percent(total_pnl, invested),
        realized_pnl=wallet.stats.realized_pnl,
        unpriced=tuple(unpriced),
    )


def holdings_by_asset(summary: PortfolioSummary) -> Dict[str, Holding]:
    return {h.asset: h for h in summary.holdings}
