"""
engine.py - Public operations of the slot economy

SlotEconomy wires the store, ledger, achievement evaluator, session
controller and price oracle together and exposes the operations callers
use. Every operation takes an already-authenticated account id.

Flow of a spin:
    validate → resolve_spin (pure) → EconomyLedger.apply (atomic)
             → AchievementEvaluator.run → SpinResult

Crypto operations query the price oracle first, outside any lock, and then
go through the same ledger contract.
"""

from __future__ import annotations
from datetime import datetime, timezone
from decimal import Decimal
import random
import uuid
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from loguru import logger

from .achievements import AchievementEvaluator
from .bonus import BonusClaim, calendar_day, compute_daily_bonus, next_available
from .catalog import (
    AchievementCatalog, SymbolSet, get_machine_type, get_symbol_set, get_upgrade_spec,
    normalize_asset, validate_withdrawal_address,
)
from .config import EconomyConfig
from .core import (
    COINS, AccountNotFound, EconomyError, InsufficientFunds, InvalidInput, MachineNotFound,
    PriceUnavailable, Transaction, TransactionKind, UpgradeNotFound, economy_context, to_decimal,
)
from .ledger import EconomyLedger
from .machines import (
    compute_account_opening, compute_machine_purchase, compute_upgrade_install,
    compute_upgrade_purchase, compute_upgrade_sale, new_machine,
)
from .portfolio import (
    PortfolioSummary, compute_conversion, compute_deposit, compute_purchase, compute_sale,
    compute_withdrawal, portfolio_summary,
)
from .pricing_source import PriceOracle, StaticPriceOracle
from .records import Account, AccountBook, StopPolicy
from .rtp import theoretical_rtp
from .session import AutoSpinResult, SessionController, SessionState, SpinResult
from .spin import RandomSource, compute_spin_event, resolve_spin, validate_bet
from .store import AccountStore


LEADERBOARD_FIELDS = {
    'winnings': 'total_winnings',
    'spins': 'total_spins',
    'jackpots': 'jackpots_won',
    'biggest_win': 'biggest_win',
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:16]}"


class SlotEconomy:
    """
    The slot economy engine.

    Example:
        economy = SlotEconomy()
        alice = economy.open_account("alice")
        machine_id = economy.machines(alice)[0]
        result = economy.resolve_spin(alice, machine_id, 10)
        economy.purchase_crypto(alice, "BTC", Decimal("0.0001"))
    """

    def __init__(
        self,
        oracle: Optional[PriceOracle] = None,
        config: Optional[EconomyConfig] = None,
        store: Optional[AccountStore] = None,
        achievements: Optional[AchievementCatalog] = None,
        rng: Optional[RandomSource] = None,
        clock: Optional[Callable[[], datetime]] = None,
        id_factory: Optional[Callable[[str], str]] = None,
    ):
        self.config = config or EconomyConfig()
        self.store = store or AccountStore()
        self.oracle = oracle or StaticPriceOracle()
        self.rng = rng or random.Random()
        self.clock = clock or _utcnow
        self.new_id = id_factory or _new_id
        self.ledger = EconomyLedger(self.store, self.config)
        self.evaluator = AchievementEvaluator(self.ledger, achievements, self.clock)
        self.sessions = SessionController(
            self.store, self._spin_cycle, self.clock, self.new_id, self.config.max_conflict_retries,
        )

    # ========================================================================
    # ACCOUNTS
    # ========================================================================

    @economy_context
    def open_account(self, username: str, account_id: Optional[str] = None) -> str:
        """Create an account with the starting coins and a free basic machine."""
        if not isinstance(username, str) or not username.strip():
            raise InvalidInput("username is required")
        account_id = account_id or self.new_id("acct")
        now = self.clock()
        self.store.create(AccountBook(Account(account_id, username.strip(), created_at=now)))
        starter = new_machine(self.new_id("machine"), account_id, get_machine_type('basic'), now)
        try:
            self.ledger.apply(compute_account_opening(account_id, self.config.starting_coins, starter, now))
        except EconomyError:
            self.store.delete(account_id)
            raise
        logger.info("Opened account {} ({})", account_id, username)
        return account_id

    def close_account(self, account_id: str) -> None:
        """Remove the account with its wallet, machines, sessions and transactions."""
        self.store.delete(account_id)

    def account(self, account_id: str) -> AccountBook:
        """Snapshot of everything the account owns."""
        return self.store.get(account_id)

    def balances(self, account_id: str) -> Dict[str, Decimal]:
        return self.store.get(account_id).balances()

    def machines(self, account_id: str) -> List[str]:
        return sorted(self.store.get(account_id).machines)

    def symbols(self, account_id: str, machine_id: str) -> SymbolSet:
        machine = self.store.get(account_id).machines.get(machine_id)
        if machine is None:
            raise MachineNotFound(f"unknown machine {machine_id!r}")
        return get_symbol_set(machine.attributes.symbol_set)

    @economy_context
    def machine_rtp(self, account_id: str, machine_id: str) -> Decimal:
        """Exact return-to-player of the machine's effective attributes."""
        machine = self.store.get(account_id).machines.get(machine_id)
        if machine is None:
            raise MachineNotFound(f"unknown machine {machine_id!r}")
        return theoretical_rtp(machine.attributes, jackpot_multiplier=self.config.jackpot_multiplier)

    # ========================================================================
    # SPINS
    # ========================================================================

    def resolve_spin(self, account_id: str, machine_id: str, bet_amount: int) -> SpinResult:
        """
        Play one spin.

        Raises:
            InsufficientFunds, InvalidBet, MachineNotFound, AccountNotFound
            InvalidInput: an auto-spin is running on the machine
        """
        return self._spin_cycle(account_id, machine_id, bet_amount, False)

    @economy_context
    def _spin_cycle(self, account_id: str, machine_id: str, bet_amount: int, auto_spin: bool) -> SpinResult:
        with self.store.lock(account_id):
            book = self.store.get(account_id)
            machine = book.machines.get(machine_id)
            if machine is None:
                raise MachineNotFound(f"unknown machine {machine_id!r}")
            attributes = machine.attributes
            bet_amount = validate_bet(attributes, bet_amount)
            session = book.active_session(machine_id)
            if not auto_spin and session is not None and session.auto_spin_running:
                raise InvalidInput(f"auto-spin is running on machine {machine_id!r}")
            if book.account.coins < bet_amount:
                raise InsufficientFunds(COINS, Decimal(book.account.coins), Decimal(bet_amount))

            outcome = resolve_spin(
                attributes, bet_amount, self.rng,
                jackpot_multiplier=self.config.jackpot_multiplier,
                earning_scale=self.config.crypto_earning_scale,
            )
            session_id = session.session_id if session else self.new_id("session")
            event = compute_spin_event(
                account_id, machine_id, outcome, session_id,
                self.config.earned_asset, self.clock(), auto_spin=auto_spin,
            )
            tx = self.ledger.apply(event)
            granted = self.evaluator.run(account_id)
        return SpinResult(outcome, tx, tx.details.get('session_id', session_id), tuple(granted))

    # ========================================================================
    # AUTO-SPIN
    # ========================================================================

    def start_auto_spin(
        self,
        account_id: str,
        machine_id: str,
        bet_amount: int,
        spin_count: int,
        stop_policy: Optional[StopPolicy] = None,
    ) -> AutoSpinResult:
        return self.sessions.start(account_id, machine_id, bet_amount, spin_count, stop_policy)

    def step_auto_spin(self, account_id: str) -> Tuple[Optional[SpinResult], Optional[SessionState]]:
        return self.sessions.step(account_id)

    def run_auto_spin(self, account_id: str, max_steps: Optional[int] = None) -> Optional[SessionState]:
        return self.sessions.run(account_id, max_steps)

    def stop_auto_spin(self, account_id: str) -> SessionState:
        return self.sessions.stop(account_id)

    def end_session(self, account_id: str, machine_id: str) -> SessionState:
        return self.sessions.end(account_id, machine_id)

    def game_history(self, account_id: str, limit: Optional[int] = None) -> List[SessionState]:
        """Sessions, most recently started first."""
        book = self.store.get(account_id)
        ordered = sorted(book.sessions.values(), key=lambda s: s.started_at, reverse=True)
        if limit is not None:
            ordered = ordered[:limit]
        return [SessionState.of(s) for s in ordered]

    # ========================================================================
    # DAILY BONUS & ACHIEVEMENTS
    # ========================================================================

    @economy_context
    def claim_daily_bonus(self, account_id: str) -> BonusClaim:
        """Raises AlreadyClaimed (with next_available) on a second claim the same day."""
        now = self.clock()
        with self.store.lock(account_id):
            book = self.store.get(account_id)
            event = compute_daily_bonus(account_id, book.account.daily_bonus, now, self.config)
            tx = self.ledger.apply(event)
            self.evaluator.run(account_id)
        zone = self.config.zone
        return BonusClaim(
            amount=int(event.amount),
            streak=event.details['streak'],
            multiplier=event.details['multiplier'],
            next_available=next_available(calendar_day(now, zone), zone),
            transaction=tx,
        )

    def evaluate_achievements(self, account_id: str):
        return self.evaluator.run(account_id)

    # ========================================================================
    # CRYPTO
    # ========================================================================

    def _require_account(self, account_id: str) -> None:
        if not self.store.exists(account_id):
            raise AccountNotFound(f"unknown account {account_id!r}")

    def _quantity(self, amount: Any) -> Decimal:
        quantity = to_decimal(amount, "amount")
        if quantity <= 0:
            raise InvalidInput(f"amount must be positive, got {amount!r}")
        return quantity

    def _quote(self, asset: str) -> Decimal:
        """Oracle lookup. Never called while holding an account lock."""
        price = self.oracle.price(asset)
        if price is None or price <= 0:
            raise PriceUnavailable(f"no price available for {asset}")
        return price

    @economy_context
    def purchase_crypto(self, account_id: str, asset: str, amount: Any) -> Transaction:
        asset = normalize_asset(asset)
        quantity = self._quantity(amount)
        self._require_account(account_id)
        price = self._quote(asset)
        return self.ledger.apply(compute_purchase(account_id, asset, quantity, price, self.config, self.clock()))

    @economy_context
    def sell_crypto(self, account_id: str, asset: str, amount: Any) -> Transaction:
        asset = normalize_asset(asset)
        quantity = self._quantity(amount)
        self._require_account(account_id)
        price = self._quote(asset)
        return self.ledger.apply(compute_sale(account_id, asset, quantity, price, self.config, self.clock()))

    @economy_context
    def convert_crypto(self, account_id: str, from_asset: str, to_asset: str, amount: Any) -> Transaction:
        from_asset = normalize_asset(from_asset)
        to_asset = normalize_asset(to_asset)
        if from_asset == to_asset:
            raise InvalidInput(f"cannot convert {from_asset} into itself")
        quantity = self._quantity(amount)
        self._require_account(account_id)
        from_price = self._quote(from_asset)
        to_price = self._quote(to_asset)
        return self.ledger.apply(compute_conversion(
            account_id, from_asset, to_asset, quantity, from_price, to_price, self.config, self.clock(),
        ))

    @economy_context
    def deposit_crypto(self, account_id: str, asset: str, amount: Any) -> Transaction:
        """Simulated deposit; cost basis is the current quote, or zero without one."""
        asset = normalize_asset(asset)
        quantity = self._quantity(amount)
        self._require_account(account_id)
        price = self.oracle.price(asset)
        return self.ledger.apply(compute_deposit(account_id, asset, quantity, price, self.clock()))

    @economy_context
    def withdraw_crypto(self, account_id: str, asset: str, amount: Any, address: str) -> Transaction:
        """Simulated withdrawal to an external address."""
        asset = normalize_asset(asset)
        quantity = self._quantity(amount)
        address = validate_withdrawal_address(asset, address)
        self._require_account(account_id)
        return self.ledger.apply(compute_withdrawal(account_id, asset, quantity, address, self.clock()))

    @economy_context
    def portfolio(self, account_id: str) -> PortfolioSummary:
        wallet = self.store.get(account_id).wallet
        prices = {asset: self.oracle.price(asset) for asset in wallet.lots}
        return portfolio_summary(wallet, prices)

    # ========================================================================
    # MACHINES & UPGRADES
    # ========================================================================

    @economy_context
    def purchase_machine(self, account_id: str, machine_type: str) -> Transaction:
        spec = get_machine_type(machine_type)
        self._require_account(account_id)
        machine = new_machine(self.new_id("machine"), account_id, spec, self.clock())
        with self.store.lock(account_id):
            tx = self.ledger.apply(compute_machine_purchase(account_id, spec, machine, self.clock()))
            self.evaluator.run(account_id)
        return tx

    @economy_context
    def purchase_upgrade(self, account_id: str, upgrade_id: str) -> Transaction:
        spec = get_upgrade_spec(upgrade_id)
        self._require_account(account_id)
        with self.store.lock(account_id):
            tx = self.ledger.apply(compute_upgrade_purchase(
                account_id, spec, self.new_id("upgrade"), self.clock(),
            ))
            self.evaluator.run(account_id)
        return tx

    @economy_context
    def apply_upgrade(self, account_id: str, upgrade_id: str, machine_id: str) -> Transaction:
        self._require_account(account_id)
        return self.ledger.apply(compute_upgrade_install(account_id, upgrade_id, machine_id, self.clock()))

    @economy_context
    def sell_upgrade(self, account_id: str, upgrade_id: str) -> Transaction:
        with self.store.lock(account_id):
            owned = self.store.get(account_id).account.upgrades.get(upgrade_id)
            if owned is None:
                raise UpgradeNotFound(f"unknown upgrade {upgrade_id!r}")
            if owned.applied:
                raise InvalidInput(f"upgrade {upgrade_id!r} is applied and cannot be sold")
            return self.ledger.apply(compute_upgrade_sale(account_id, owned, self.clock()))

    # ========================================================================
    # HISTORY & AUDIT
    # ========================================================================

    def transactions(
        self,
        account_id: str,
        kinds: Optional[Iterable[TransactionKind]] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[Transaction]:
        """Transactions in ledger order, optionally filtered by kind and paginated."""
        log = self.store.transactions(account_id)
        if kinds is not None:
            wanted = set(kinds)
            log = [tx for tx in log if tx.kind in wanted]
        end = None if limit is None else offset + limit
        return log[offset:end]

    def leaderboard(self, field: str = 'winnings', limit: int = 10) -> List[Tuple[str, str, int]]:
        """(account_id, username, value) rows, best first."""
        try:
            stat = LEADERBOARD_FIELDS[field]
        except KeyError:
            raise InvalidInput(f"unknown leaderboard field {field!r}") from None
        rows = []
        for account_id in self.store.account_ids():
            try:
                account = self.store.get(account_id).account
            except AccountNotFound:
                continue
            rows.append((account_id, account.username, getattr(account.stats, stat)))
        rows.sort(key=lambda r: (-r[2], r[1]))
        return rows[:limit]

    def verify_conservation(self, account_id: str) -> Dict[str, Any]:
        return self.ledger.verify_conservation(account_id)

    def reconcile(self, account_id: str) -> Dict[str, Any]:
        return self.ledger.reconcile(account_id)

    def __repr__(self) -> str:
        return f"SlotEconomy({self.store!r}, oracle={self.oracle!r})"
