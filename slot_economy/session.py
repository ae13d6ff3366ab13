"""
session.py - Game sessions and the auto-spin loop

Auto-spin state machine per GameSession:

    idle ──start──▶ active(N) ──step──▶ active(N-1)
                        │                   │
                        └──────stop─────────┴──▶ stopped (terminal)

A step is exactly one spin → ledger → achievements cycle, run while
holding the account lock. The stop predicate is evaluated only after the
cycle completes, and an external stop() waits for the lock, so a stop
request never lands mid-cycle. A stopped session is never resumed; the
next auto-spin opens a new session.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Callable, Dict, Optional, Tuple

from loguru import logger

from .catalog import Achievement
from .core import (
    COINS, InsufficientFunds, InvalidBet, InvalidInput, MachineNotFound, NoActiveSession,
    Transaction, economy_context,
)
from .records import AutoSpin, GameSession, StopPolicy
from .spin import SpinOutcome, validate_bet
from .store import AccountStore


STOP_COMPLETED = "completed"
STOP_JACKPOT = "jackpot"
STOP_BIG_WIN = "big_win"
STOP_REQUESTED = "stopped"
STOP_INSUFFICIENT_FUNDS = "insufficient_funds"
STOP_INVALID_BET = "invalid_bet"


@dataclass(frozen=True, slots=True)
class SpinResult:
    """One completed spin cycle."""
    outcome: SpinOutcome
    transaction: Transaction
    session_id: str
    achievements: Tuple[Achievement, ...] = ()


@dataclass(frozen=True, slots=True)
class SessionState:
    """Read-only snapshot of a GameSession."""
    session_id: str
    machine_id: str
    active: bool
    auto_spin_active: bool
    remaining: Optional[int]
    bet_amount: Optional[int]
    spins_recorded: int
    stop_reason: Optional[str]
    starting_coins: int
    current_coins: int
    stats: Dict[str, int]
    started_at: datetime
    ended_at: Optional[datetime]

    @classmethod
    def of(cls, session: GameSession) -> SessionState:
        auto = session.auto_spin
        return cls(
            session_id=session.session_id,
            machine_id=session.machine_id,
            active=session.active,
            auto_spin_active=session.auto_spin_running,
            remaining=auto.remaining if auto else None,
            bet_amount=auto.bet_amount if auto else None,
            spins_recorded=len(session.spins),
            stop_reason=auto.stop_reason if auto else None,
            starting_coins=session.starting_coins,
            current_coins=session.current_coins,
            stats=session.stats.as_dict(),
            started_at=session.started_at,
            ended_at=session.ended_at,
        )


@dataclass(frozen=True, slots=True)
class AutoSpinResult:
    spin: Optional[SpinResult]
    state: SessionState

    @property
    def outcome(self) -> Optional[SpinOutcome]:
        return self.spin.outcome if self.spin else None


def stop_reason(outcome: SpinOutcome, remaining: int, policy: StopPolicy) -> Optional[str]:
    """Why the run should stop after this spin, or None to keep going."""
    if policy.stop_on_jackpot and outcome.is_jackpot:
        return STOP_JACKPOT
    if policy.stop_on_big_win and outcome.is_win and outcome.win_amount >= policy.big_win_threshold:
        return STOP_BIG_WIN
    if remaining <= 0:
        return STOP_COMPLETED
    return None


SpinCycle = Callable[[str, str, int, bool], SpinResult]


class SessionController:
    """
    Drives auto-spin runs.

    Args:
        store: Account store (provides the per-account lock)
        spin_cycle: Runs one spin → ledger → achievements cycle:
                    spin_cycle(account_id, machine_id, bet_amount, auto_spin)
        clock: Source of timestamps
        new_id: Id factory taking a prefix
        max_conflict_retries: Bound for session-state updates
    """

    def __init__(
        self,
        store: AccountStore,
        spin_cycle: SpinCycle,
        clock: Callable[[], datetime],
        new_id: Callable[[str], str],
        max_conflict_retries: int = 3,
    ):
        self.store = store
        self.spin_cycle = spin_cycle
        self.clock = clock
        self.new_id = new_id
        self.retries = max_conflict_retries

    # ========================================================================
    # QUERIES
    # ========================================================================

    def state(self, account_id: str, session_id: str) -> SessionState:
        book = self.store.get(account_id)
        session = book.sessions.get(session_id)
        if session is None:
            raise NoActiveSession(f"unknown session {session_id!r}")
        return SessionState.of(session)

    def current(self, account_id: str) -> Optional[SessionState]:
        """State of the account's running auto-spin session, if any."""
        session = self.store.get(account_id).active_session()
        return SessionState.of(session) if session else None

    # ========================================================================
    # TRANSITIONS
    # ========================================================================

    @economy_context
    def start(
        self,
        account_id: str,
        machine_id: str,
        bet_amount: int,
        spin_count: int,
        policy: Optional[StopPolicy] = None,
    ) -> AutoSpinResult:
        """
        Begin an auto-spin run and perform its first cycle.

        Raises:
            InvalidInput: spin_count < 1, or an auto-spin is already running
            InvalidBet / MachineNotFound: as for a single spin
            InsufficientFunds: coins < bet_amount * spin_count
        """
        if isinstance(spin_count, bool) or not isinstance(spin_count, int) or spin_count < 1:
            raise InvalidInput(f"spin_count must be a positive integer, got {spin_count!r}")
        policy = policy or StopPolicy()

        with self.store.lock(account_id):
            book = self.store.get(account_id)
            machine = book.machines.get(machine_id)
            if machine is None:
                raise MachineNotFound(f"unknown machine {machine_id!r}")
            validate_bet(machine.attributes, bet_amount)
            running = book.active_session()
            if running is not None:
                raise InvalidInput(f"auto-spin already running on machine {running.machine_id!r}")
            required = bet_amount * spin_count
            if book.account.coins < required:
                raise InsufficientFunds(COINS, Decimal(book.account.coins), Decimal(required))

            now = self.clock()
            new_session_id = self.new_id("session")

            def begin(staged):
                session = staged.active_session(machine_id)
                if session is None:
                    session = GameSession(
                        session_id=new_session_id,
                        account_id=account_id,
                        machine_id=machine_id,
                        started_at=now,
                        starting_coins=staged.account.coins,
                        current_coins=staged.account.coins,
                    )
                    staged.sessions[session.session_id] = session
                session.auto_spin = AutoSpin(
                    remaining=spin_count, bet_amount=bet_amount, policy=policy, requested=spin_count,
                )
                return session.session_id

            session_id = self.store.update(account_id, begin, self.retries)
            logger.info("Auto-spin {} started: {} x {} on {}", session_id, spin_count, bet_amount, machine_id)
            spin, state = self.step(account_id)
        return AutoSpinResult(spin, state)

    @economy_context
    def step(self, account_id: str) -> Tuple[Optional[SpinResult], Optional[SessionState]]:
        """
        Run one cycle of the account's auto-spin, then apply the stop predicate.

        Returns (None, None) when no auto-spin is running. A cycle rejected
        for lack of coins or an out-of-range bet stops the run instead of
        raising.
        """
        with self.store.lock(account_id):
            session = self.store.get(account_id).active_session()
            if session is None:
                return None, None
            auto = session.auto_spin
            try:
                spin = self.spin_cycle(account_id, session.machine_id, auto.bet_amount, True)
            except InsufficientFunds as exc:
                logger.info("Auto-spin {} out of funds: {}", session.session_id, exc)
                return None, self._stop(account_id, session.session_id, STOP_INSUFFICIENT_FUNDS)
            except InvalidBet as exc:
                logger.info("Auto-spin {} bet no longer valid: {}", session.session_id, exc)
                return None, self._stop(account_id, session.session_id, STOP_INVALID_BET)

            state = self.state(account_id, session.session_id)
            reason = stop_reason(spin.outcome, state.remaining, auto.policy)
            if reason is not None:
                state = self._stop(account_id, session.session_id, reason)
            return spin, state

    def run(self, account_id: str, max_steps: Optional[int] = None) -> Optional[SessionState]:
        """
        Step until the run stops. The lock is released between cycles so a
        concurrent stop() takes effect after the in-flight cycle.
        """
        state = self.current(account_id)
        steps = 0
        while state is not None and state.auto_spin_active:
            if max_steps is not None and steps >= max_steps:
                break
            _, state = self.step(account_id)
            steps += 1
        return state

    def stop(self, account_id: str) -> SessionState:
        """Stop the running auto-spin. Raises NoActiveSession if none is running."""
        with self.store.lock(account_id):
            session = self.store.get(account_id).active_session()
            if session is None:
                raise NoActiveSession(f"no auto-spin running for {account_id!r}")
            return self._stop(account_id, session.session_id, STOP_REQUESTED)

    def end(self, account_id: str, machine_id: str) -> SessionState:
        """Close the active session on a machine (stopping its auto-spin, if any)."""
        with self.store.lock(account_id):
            session = self.store.get(account_id).active_session(machine_id)
            if session is None:
                raise NoActiveSession(f"no active session on machine {machine_id!r}")
            return self._stop(account_id, session.session_id, STOP_REQUESTED)

    def _stop(self, account_id: str, session_id: str, reason: str) -> SessionState:
        now = self.clock()

        def close(staged):
            session = staged.sessions[session_id]
            session.close(now, reason)
            return SessionState.of(session)

        state = self.store.update(account_id, close, self.retries)
        logger.info("Session {} stopped ({}) after {} spins", session_id, reason, state.spins_recorded)
        return state
