"""
achievements.py - Achievement evaluation

evaluate() is pure: given a stats snapshot and the already-satisfied ids it
returns the catalog entries whose rule now holds (stat >= threshold).

AchievementEvaluator.run() is the side-effecting half. Inside the
account's critical section it grants each newly satisfied achievement
through its own achievement_reward event, so every grant is independently
atomic and a second evaluation without stat changes grants nothing.
"""

from __future__ import annotations
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Collection, Dict, List, Mapping, Optional

from loguru import logger

from .catalog import Achievement, AchievementCatalog, DEFAULT_ACHIEVEMENTS, normalize_asset
from .config import EconomyConfig
from .core import (
    COINS, TOKENS, AlreadyGranted, Effect, PendingEvent, TransactionKind, credit, economy_context,
    round_amount,
)
from .ledger import EconomyLedger
from .records import AccountBook


def stat_snapshot(book: AccountBook, earned_asset: str) -> Dict[str, Decimal]:
    """Current value of every stat an achievement rule can refer to."""
    stats = book.account.stats
    return {
        'total_spins': Decimal(stats.total_spins),
        'total_wins': Decimal(stats.total_wins),
        'total_losses': Decimal(stats.total_losses),
        'total_coins_won': Decimal(stats.total_winnings),
        'total_bets': Decimal(stats.total_bets),
        'biggest_win': Decimal(stats.biggest_win),
        'jackpot_wins': Decimal(stats.jackpots_won),
        'crypto_earned': book.wallet.stats.total_earned.get(earned_asset, Decimal("0")),
        'consecutive_login_days': Decimal(book.account.daily_bonus.streak),
        'machines_owned': Decimal(len(book.machines)),
        'upgrades_purchased': Decimal(book.account.upgrades_purchased),
    }


def evaluate(
    snapshot: Mapping[str, Decimal],
    satisfied: Collection[str],
    catalog: AchievementCatalog,
) -> List[Achievement]:
    """Achievements not yet in satisfied whose rule holds for snapshot."""
    return [
        a for a in catalog.list()
        if a.achievement_id not in satisfied
        and snapshot.get(a.rule_type, Decimal("0")) >= a.threshold
    ]


def compute_achievement_reward(
    account_id: str,
    achievement: Achievement,
    config: EconomyConfig,
    timestamp: datetime,
) -> PendingEvent:
    """Reward event that also records the achievement as satisfied."""
    effects = [Effect("grant_achievement", {'achievement_id': achievement.achievement_id})]
    if achievement.reward_type == 'coins':
        currency = COINS
    elif achievement.reward_type == 'tokens':
        currency = TOKENS
    else:
        currency = normalize_asset(achievement.reward_asset or config.earned_asset)
    amount = round_amount(achievement.reward_amount, currency)
    moves = (credit(amount, currency, "achievement reward"),) if amount > 0 else ()
    if currency not in (COINS, TOKENS) and amount > 0:
        effects.append(Effect("lot_earn", {'asset': currency, 'quantity': amount,
                                           'bucket': 'total_rewarded'}))
    return PendingEvent(
        account_id=account_id,
        kind=TransactionKind.ACHIEVEMENT_REWARD,
        moves=moves,
        effects=tuple(effects),
        amount=amount,
        currency=currency,
        timestamp=timestamp,
        description=f"Achievement unlocked: {achievement.name}",
        achievement_id=achievement.achievement_id,
    )


class AchievementEvaluator:
    """Grants newly satisfied achievements for one account at a time."""

    def __init__(
        self,
        ledger: EconomyLedger,
        catalog: Optional[AchievementCatalog] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.ledger = ledger
        self.catalog = DEFAULT_ACHIEVEMENTS if catalog is None else catalog
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    @economy_context
    def run(self, account_id: str) -> List[Achievement]:
        """
        Evaluate and grant. Returns the achievements granted by this call.

        Must be called after every stat-affecting event; safe to call at any
        other time.
        """
        config = self.ledger.config
        store = self.ledger.store
        granted: List[Achievement] = []
        with store.lock(account_id):
            book = store.get(account_id)
            snapshot = stat_snapshot(book, config.earned_asset)
            for achievement in evaluate(snapshot, book.account.achievements, self.catalog):
                event = compute_achievement_reward(account_id, achievement, config, self.clock())
                try:
                    self.ledger.apply(event)
                except AlreadyGranted:
                    logger.debug("Achievement {} already granted to {}", achievement.achievement_id, account_id)
                    continue
                logger.info("Achievement {} granted to {}", achievement.achievement_id, account_id)
                granted.append(achievement)
        return granted
