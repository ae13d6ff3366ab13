"""
ledger.py - Atomic propagation of economic events

The EconomyLedger is the only component that mutates account books.
Every PendingEvent is applied as one indivisible unit:

    1. enter the account's critical section
    2. stage a copy of the account book
    3. apply the moves in order (debits first, each checked against the
       staged balance) and then the effects
    4. build the immutable Transaction with the resulting balances
    5. compare-and-swap the staged book in, appending the transaction

Any failure before step 5 discards the staged copy, so a rejected event
never leaves a trace. A version conflict at step 5 restarts from step 2,
up to config.max_conflict_retries times.

Effects are dispatched through EFFECT_APPLIERS, a plain dict of functions
keyed by Effect.name.
"""

from __future__ import annotations
from collections import defaultdict
import copy
from decimal import Decimal
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from loguru import logger

from .config import EconomyConfig
from .core import (
    Move, PendingEvent, Transaction,
    EconomyError, InsufficientFunds, InvalidInput, ConflictError,
    MachineNotFound, UpgradeNotFound, NoActiveSession, AlreadyClaimed, AlreadyGranted,
    PLAYER_WALLET, economy_context, round_amount,
)
from .portfolio import apply_buy, apply_reduce, apply_sell
from .records import AccountBook, GameSession, SpinRecord
from .store import AccountStore


ZERO = Decimal("0")

Applier = Callable[[AccountBook, Mapping[str, Any], PendingEvent, str], Optional[Dict[str, Any]]]


# ============================================================================
# EFFECT APPLIERS
# ============================================================================

def apply_record_spin(book, params, event, exec_id):
    """Spin totals on the account and on the machine."""
    machine = book.machines.get(params['machine_id'])
    if machine is None:
        raise MachineNotFound(f"unknown machine {params['machine_id']!r}")
    bet, win, jackpot = params['bet_amount'], params['win_amount'], params['is_jackpot']
    book.account.stats.record_spin(bet, win, jackpot)
    machine.stats.record_spin(bet, win, jackpot)
    return None


def apply_session_spin(book, params, event, exec_id):
    """Append the spin to the machine's active session, opening one if needed."""
    machine_id = params['machine_id']
    bet, win = params['bet_amount'], params['win_amount']
    session = book.active_session(machine_id)
    if params.get('auto_spin'):
        if session is None or not session.auto_spin_running:
            raise NoActiveSession(f"auto-spin on machine {machine_id!r} is no longer running")
    if session is None:
        session = GameSession(
            session_id=params['session_id'],
            account_id=book.account_id,
            machine_id=machine_id,
            started_at=event.timestamp,
            starting_coins=book.account.coins - win + bet,
            current_coins=book.account.coins,
        )
        book.sessions[session.session_id] = session

    session.spins.append(SpinRecord(
        exec_id=exec_id,
        symbols=tuple(params['symbols']),
        bet_amount=bet,
        win_amount=win,
        is_win=win > 0,
        is_jackpot=params['is_jackpot'],
        crypto_earned=params['crypto_earned'],
        timestamp=event.timestamp,
    ))
    session.stats.record_spin(bet, win, params['is_jackpot'])
    session.current_coins = book.account.coins
    if params.get('auto_spin'):
        session.auto_spin.remaining -= 1
    return {'session_id': session.session_id}


def apply_lot_buy(book, params, event, exec_id):
    wallet = book.wallet
    asset = params['asset']
    wallet.lots[asset] = apply_buy(wallet.lots.get(asset), params['quantity'], params['price'])
    wallet.stats.total_invested += params.get('invested', ZERO)
    return None


def apply_lot_sell(book, params, event, exec_id):
    wallet = book.wallet
    asset = params['asset']
    lot = wallet.lots.get(asset)
    remaining, realized = apply_sell(lot, params['quantity'], params['price'])
    if remaining is None:
        wallet.lots.pop(asset, None)
    else:
        wallet.lots[asset] = remaining
    wallet.stats.realized_pnl += realized
    return {'realized_pnl': realized, 'average_cost': lot.average_cost}


def apply_lot_earn(book, params, event, exec_id):
    """Crypto received without a purchase joins the lot at zero cost."""
    wallet = book.wallet
    asset = params['asset']
    wallet.lots[asset] = apply_buy(wallet.lots.get(asset), params['quantity'], ZERO)
    wallet.stats.add(params.get('bucket', 'total_earned'), asset, params['quantity'])
    return None


def apply_lot_deposit(book, params, event, exec_id):
    wallet = book.wallet
    asset = params['asset']
    wallet.lots[asset] = apply_buy(wallet.lots.get(asset), params['quantity'], params['price'])
    wallet.stats.add('total_deposited', asset, params['quantity'])
    return None


def apply_lot_withdraw(book, params, event, exec_id):
    wallet = book.wallet
    asset = params['asset']
    remaining = apply_reduce(wallet.lots.get(asset), params['quantity'])
    if remaining is None:
        wallet.lots.pop(asset, None)
    else:
        wallet.lots[asset] = remaining
    wallet.stats.add('total_withdrawn', asset, params['quantity'])
    return None


def apply_daily_bonus(book, params, event, exec_id):
    bonus = book.account.daily_bonus
    if bonus.last_claimed_day == params['day']:
        raise AlreadyClaimed(f"daily bonus already claimed on {params['day']}")
    bonus.last_claimed_day = params['day']
    bonus.last_claimed_at = event.timestamp
    bonus.streak = params['streak']
    return None


def apply_grant_achievement(book, params, event, exec_id):
    achievement_id = params['achievement_id']
    if achievement_id in book.account.achievements:
        raise AlreadyGranted(f"achievement {achievement_id!r} already granted")
    book.account.achievements.add(achievement_id)
    return None


def apply_add_machine(book, params, event, exec_id):
    machine = copy.deepcopy(params['machine'])
    if machine.machine_id in book.machines:
        raise InvalidInput(f"machine {machine.machine_id!r} already exists")
    machine.base.validate()
    book.machines[machine.machine_id] = machine
    return None


def apply_add_upgrade(book, params, event, exec_id):
    owned = copy.deepcopy(params['upgrade'])
    book.account.upgrades[owned.upgrade_id] = owned
    book.account.upgrades_purchased += 1
    return None


def apply_install_upgrade(book, params, event, exec_id):
    owned = book.account.upgrades.get(params['upgrade_id'])
    if owned is None:
        raise UpgradeNotFound(f"unknown upgrade {params['upgrade_id']!r}")
    if owned.applied:
        raise InvalidInput(f"upgrade {owned.upgrade_id!r} is already applied to {owned.machine_id!r}")
    machine = book.machines.get(params['machine_id'])
    if machine is None:
        raise MachineNotFound(f"unknown machine {params['machine_id']!r}")
    machine.deltas[owned.upgrade_id] = dict(owned.effects)
    machine.upgrades.append(owned.upgrade_id)
    machine.attributes.validate()
    owned.machine_id = machine.machine_id
    return None


def apply_remove_upgrade(book, params, event, exec_id):
    owned = book.account.upgrades.get(params['upgrade_id'])
    if owned is None:
        raise UpgradeNotFound(f"unknown upgrade {params['upgrade_id']!r}")
    if owned.applied:
        raise InvalidInput(f"upgrade {owned.upgrade_id!r} is applied and cannot be sold")
    del book.account.upgrades[owned.upgrade_id]
    return None


EFFECT_APPLIERS: Dict[str, Applier] = {
    'record_spin': apply_record_spin,
    'session_spin': apply_session_spin,
    'lot_buy': apply_lot_buy,
    'lot_sell': apply_lot_sell,
    'lot_earn': apply_lot_earn,
    'lot_deposit': apply_lot_deposit,
    'lot_withdraw': apply_lot_withdraw,
    'daily_bonus': apply_daily_bonus,
    'grant_achievement': apply_grant_achievement,
    'add_machine': apply_add_machine,
    'add_upgrade': apply_add_upgrade,
    'install_upgrade': apply_install_upgrade,
    'remove_upgrade': apply_remove_upgrade,
}


# ============================================================================
# LEDGER
# ============================================================================

class EconomyLedger:
    """
    Applies PendingEvents atomically to account books.

    Design Principles:
        - Always validates: balances are checked on the staged copy right
          before each debit, inside the account's critical section.
        - Always logs: every applied event becomes a Transaction appended to
          the account's log in critical-section order.

    Example:
        ledger = EconomyLedger(store, EconomyConfig())
        tx = ledger.apply(compute_purchase("alice", "BTC", Decimal("0.1"),
                                           Decimal("50000"), config, now))
    """

    def __init__(
        self,
        store: AccountStore,
        config: Optional[EconomyConfig] = None,
        appliers: Optional[Dict[str, Applier]] = None,
        verbose: Optional[bool] = None,
    ):
        self.store = store
        self.config = config or EconomyConfig()
        self.appliers = dict(EFFECT_APPLIERS if appliers is None else appliers)
        self.verbose = self.config.verbose if verbose is None else verbose

    # ========================================================================
    # APPLY
    # ========================================================================

    @economy_context
    def apply(self, event: PendingEvent) -> Transaction:
        """
        Apply one event atomically.

        Raises:
            InsufficientFunds: a debit exceeds the staged balance
            ConflictError: the account kept changing for max_conflict_retries attempts
            EconomyError: any effect rejection; nothing is persisted
        """
        for effect in event.effects:
            if effect.name not in self.appliers:
                raise InvalidInput(f"no applier for effect {effect.name!r}")

        retries = self.config.max_conflict_retries
        with self.store.lock(event.account_id):
            for attempt in range(1, retries + 1):
                staged = self.store.get(event.account_id)
                expected_version = staged.version
                sequence = self.store.next_sequence()
                exec_id = f"exec:{event.account_id}:{sequence:012d}"
                try:
                    applied_moves = self._apply_moves(staged, event.moves)
                    details = self._apply_effects(staged, event, exec_id)
                except EconomyError as exc:
                    logger.info("REJECTED {} for {}: {}", event.kind.value, event.account_id, exc)
                    raise

                tx = Transaction(
                    exec_id=exec_id,
                    sequence_number=sequence,
                    account_id=event.account_id,
                    kind=event.kind,
                    amount=event.amount,
                    currency=event.currency,
                    fee=event.fee,
                    fee_currency=event.fee_currency,
                    balances_after=staged.balances(),
                    moves=applied_moves,
                    timestamp=event.timestamp,
                    intent_id=event.intent_id,
                    description=event.description,
                    machine_id=event.machine_id,
                    achievement_id=event.achievement_id,
                    upgrade_id=event.upgrade_id,
                    details=details,
                )
                try:
                    self.store.compare_and_swap(event.account_id, expected_version, staged, tx)
                except ConflictError as exc:
                    logger.warning("Conflict applying {} (attempt {}/{}): {}",
                                   event.intent_id, attempt, retries, exc)
                    continue

                log = logger.info if self.verbose else logger.debug
                log("APPLIED {!r} balances={}", tx, dict(tx.balances_after))
                return tx

        logger.error("Giving up on {} for {} after {} conflicts",
                     event.kind.value, event.account_id, retries)
        raise ConflictError(
            f"account {event.account_id!r} kept changing; {event.kind.value} not applied"
        )

    def _apply_moves(self, book: AccountBook, moves: Tuple[Move, ...]) -> Tuple[Move, ...]:
        """
        Apply moves to the staged book, debits first.

        Quantities are rounded to their currency's persisted precision here,
        and the same rounded quantity lands on both sides.
        """
        applied: List[Move] = []
        ordered = sorted(moves, key=lambda m: not m.is_debit)
        for move in ordered:
            quantity = round_amount(move.quantity, move.currency)
            if quantity <= 0:
                continue
            currency = move.currency
            balance = book.balance(currency)
            if move.is_debit:
                if balance < quantity:
                    raise InsufficientFunds(currency, balance, quantity)
                book.set_balance(currency, balance - quantity)
                book.house[currency] = book.house.get(currency, ZERO) + quantity
            else:
                book.set_balance(currency, balance + quantity)
                book.house[currency] = book.house.get(currency, ZERO) - quantity
            applied.append(Move(quantity, currency, move.source, move.dest, move.memo))
        return tuple(applied)

    def _apply_effects(self, book: AccountBook, event: PendingEvent, exec_id: str) -> Dict[str, Any]:
        details = dict(event.details)
        for effect in event.effects:
            extra = self.appliers[effect.name](book, effect.params, event, exec_id)
            if extra:
                details.update(extra)
        return details

    # ========================================================================
    # VERIFICATION
    # ========================================================================

    @economy_context
    def verify_conservation(self, account_id: str, tolerance: Decimal = Decimal("0")) -> Dict[str, Any]:
        """
        Check that player and house balances cancel for every currency.

        Returns:
            Dict with keys:
            - 'valid': bool - True if every currency nets to zero
            - 'supplies': Dict[str, Decimal] - player + house per currency
            - 'discrepancies': List[Dict] - currency, player, house, difference
        """
        book = self.store.get(account_id)
        player = book.balances()
        currencies = sorted(set(player) | set(book.house))
        supplies = {}
        discrepancies = []
        for currency in currencies:
            p = player.get(currency, ZERO)
            h = book.house.get(currency, ZERO)
            supplies[currency] = p + h
            if abs(p + h) > tolerance:
                discrepancies.append({
                    'currency': currency,
                    'player': p,
                    'house': h,
                    'difference': p + h,
                })
        return {
            'valid': len(discrepancies) == 0,
            'supplies': supplies,
            'discrepancies': discrepancies,
        }

    @economy_context
    def reconcile(self, account_id: str) -> Dict[str, Any]:
        """
        Rebuild player balances from the transaction log and compare them
        with the stored balances.

        Returns the same shape as verify_conservation(), with 'supplies'
        holding the replayed balances.
        """
        with self.store.lock(account_id):
            book = self.store.get(account_id)
            log = self.store.transactions(account_id)
        replayed: Dict[str, Decimal] = defaultdict(lambda: ZERO)
        for tx in log:
            for move in tx.moves:
                sign = -1 if move.source == PLAYER_WALLET else 1
                replayed[move.currency] += sign * move.quantity
        stored = book.balances()
        discrepancies = []
        for currency in sorted(set(replayed) | set(stored)):
            expected = replayed.get(currency, ZERO)
            actual = stored.get(currency, ZERO)
            if expected != actual:
                discrepancies.append({
                    'currency': currency,
                    'expected': expected,
                    'actual': actual,
                    'difference': actual - expected,
                })
        return {
            'valid': len(discrepancies) == 0,
            'supplies': dict(replayed),
            'discrepancies': discrepancies,
        }

    def __repr__(self) -> str:
        return f"EconomyLedger({self.store!r}, {len(self.appliers)} appliers)"
