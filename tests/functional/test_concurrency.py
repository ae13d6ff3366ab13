"""
test_concurrency.py - Concurrent operations on one and on many accounts

Operations on one account serialize through its lock; the transaction log
order matches critical-section order and no balance drifts.
"""

import random
import threading
from decimal import Decimal

from slot_economy import COINS, EconomyError, TransactionKind

from tests.scripted import make_economy


def _run_threads(target, count):
    errors = []

    def guarded(index):
        try:
            target(index)
        except Exception as exc:  # surfaced through the errors list below
            errors.append(exc)

    threads = [threading.Thread(target=guarded, args=(i,)) for i in range(count)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)
    assert errors == []


class TestSameAccount:
    """Many threads spinning on one account."""

    def test_spins_serialize_without_drift(self):
        economy = make_economy(random.Random(7), starting_coins=100_000)
        alice = economy.open_account("alice", account_id="alice")
        machine = economy.machines(alice)[0]

        def spin(_):
            for _ in range(25):
                economy.resolve_spin(alice, machine, 10)

        _run_threads(spin, 4)

        book = economy.account(alice)
        stats = book.account.stats
        assert stats.total_spins == 100
        assert book.account.coins == 100_000 - stats.total_bets + stats.total_winnings
        assert economy.verify_conservation(alice)['valid']
        assert economy.reconcile(alice)['valid']

        log = economy.transactions(alice)
        assert len(log) == 101
        sequence = [tx.sequence_number for tx in log]
        assert sequence == sorted(sequence)
        # Each recorded balance follows from the previous one.
        for previous, current in zip(log, log[1:]):
            delta = sum(
                (m.quantity if not m.is_debit else -m.quantity)
                for m in current.moves if m.currency == COINS
            )
            assert current.balances_after[COINS] == previous.balances_after[COINS] + delta

    def test_competing_purchases_never_overdraw(self):
        economy = make_economy()
        alice = economy.open_account("alice", account_id="alice")
        outcomes = []

        def buy(_):
            try:
                economy.purchase_upgrade(alice, 'payout_boost')
                outcomes.append("ok")
            except EconomyError as exc:
                outcomes.append(type(exc).__name__)

        _run_threads(buy, 5)
        assert outcomes.count("ok") == 2
        assert outcomes.count("InsufficientFunds") == 3
        assert economy.balances(alice)[COINS] == 0
        purchases = economy.transactions(alice, kinds=[TransactionKind.PURCHASE_UPGRADE])
        assert len(purchases) == 2


class TestManyAccounts:
    """Independent accounts proceed in parallel."""

    def test_parallel_accounts(self):
        economy = make_economy(random.Random(11))
        accounts = [economy.open_account(f"player{i}", account_id=f"player{i}") for i in range(6)]

        def play(index):
            account_id = accounts[index]
            machine = economy.machines(account_id)[0]
            for _ in range(10):
                economy.resolve_spin(account_id, machine, 10)
            economy.claim_daily_bonus(account_id)

        _run_threads(play, len(accounts))

        for account_id in accounts:
            assert economy.account(account_id).account.stats.total_spins == 10
            assert economy.verify_conservation(account_id)['valid']
            assert economy.reconcile(account_id)['valid']
            assert economy.balances(account_id)[COINS] >= Decimal(0)

    def test_spins_and_crypto_interleave(self):
        """Three threads per account mix spins with purchases, sales and conversions."""
        economy = make_economy(random.Random(23), starting_coins=2_000_000, fee_rate=Decimal("0.01"))
        accounts = [economy.open_account(f"trader{i}", account_id=f"trader{i}") for i in range(3)]

        def trade(index):
            account_id = accounts[index % len(accounts)]
            machine = economy.machines(account_id)[0]
            for step in range(15):
                economy.resolve_spin(account_id, machine, 10)
                # Each thread only spends ETH it bought itself
                if step % 3 == 0:
                    economy.purchase_crypto(account_id, "ETH", "0.01")
                elif step % 3 == 1:
                    economy.sell_crypto(account_id, "ETH", "0.005")
                else:
                    economy.convert_crypto(account_id, "ETH", "DOGE", "0.002")

        _run_threads(trade, 3 * len(accounts))

        for account_id in accounts:
            book = economy.account(account_id)
            stats = book.account.stats
            assert stats.total_spins == 45
            assert economy.verify_conservation(account_id)['valid']
            assert economy.reconcile(account_id)['valid']

            wallet = book.wallet
            for asset in set(wallet.balances) | set(wallet.lots):
                lot = wallet.lots.get(asset)
                assert (lot.quantity if lot else Decimal("0")) == wallet.balance(asset), asset

            log = economy.transactions(account_id)
            purchases = [tx for tx in log if tx.kind == TransactionKind.CRYPTO_PURCHASE]
            sales = [tx for tx in log if tx.kind == TransactionKind.CRYPTO_SALE]
            conversions = [tx for tx in log if tx.kind == TransactionKind.CRYPTO_CONVERSION]
            assert (len(purchases), len(sales), len(conversions)) == (15, 15, 15)
            assert len(log) == 1 + 45 + 45

            spent = sum(tx.details['cost_coins'] for tx in purchases)
            received = sum(tx.details['net_coins'] for tx in sales)
            assert book.account.coins == (
                2_000_000 - stats.total_bets + stats.total_winnings - spent + received
            )
