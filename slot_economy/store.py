"""
store.py - Keyed, lockable account record store

In-memory persistence for AccountBooks and their transaction logs.

Concurrency model:
    - One re-entrant lock per account id. The registry lock only guards
      lock creation, so different accounts never contend.
    - get() hands out a staged copy tagged with the stored version.
    - compare_and_swap() installs a staged copy only if the stored version
      still matches, and appends the transaction in the same step.
"""

from __future__ import annotations
from contextlib import contextmanager
import itertools
import threading
from typing import Callable, Dict, Iterator, List, Optional, TypeVar

from loguru import logger

from .core import AccountNotFound, ConflictError, InvalidInput, Transaction
from .records import AccountBook


T = TypeVar("T")


class AccountStore:
    """
    Thread-safe store of AccountBooks.

    Example:
        store = AccountStore()
        store.create(AccountBook(Account("alice", "alice")))
        with store.lock("alice"):
            book = store.get("alice")
            book.account.tokens += 1
            store.compare_and_swap("alice", book.version, book)
    """

    def __init__(self):
        self._books: Dict[str, AccountBook] = {}
        self._logs: Dict[str, List[Transaction]] = {}
        self._locks: Dict[str, threading.RLock] = {}
        self._registry_lock = threading.Lock()
        self._sequence = itertools.count()

    # ========================================================================
    # LOCKING
    # ========================================================================

    def _lock_for(self, account_id: str, create: bool = False) -> threading.RLock:
        lock = self._locks.get(account_id)
        if lock is None:
            with self._registry_lock:
                lock = self._locks.get(account_id)
                if lock is None:
                    if not create and account_id not in self._books:
                        raise AccountNotFound(f"unknown account {account_id!r}")
                    lock = self._locks[account_id] = threading.RLock()
        return lock

    @contextmanager
    def lock(self, account_id: str, create: bool = False) -> Iterator[None]:
        """
        Exclusive, re-entrant critical section for one account.

        Locks exist only for stored accounts; create=True allows one for an
        account that is about to be created.
        """
        with self._lock_for(account_id, create):
            yield

    def next_sequence(self) -> int:
        """Monotonic sequence number shared by all accounts."""
        with self._registry_lock:
            return next(self._sequence)

    # ========================================================================
    # READS
    # ========================================================================

    def exists(self, account_id: str) -> bool:
        return account_id in self._books

    def get(self, account_id: str) -> AccountBook:
        """Staged copy of an account book. Mutating it changes nothing until swapped in."""
        with self.lock(account_id):
            book = self._books.get(account_id)
            if book is None:
                raise AccountNotFound(f"unknown account {account_id!r}")
            return book.stage()

    def version(self, account_id: str) -> int:
        book = self._books.get(account_id)
        if book is None:
            raise AccountNotFound(f"unknown account {account_id!r}")
        return book.version

    def transactions(self, account_id: str) -> List[Transaction]:
        with self.lock(account_id):
            if account_id not in self._books:
                raise AccountNotFound(f"unknown account {account_id!r}")
            return list(self._logs[account_id])

    def account_ids(self) -> List[str]:
        with self._registry_lock:
            return sorted(self._books)

    # ========================================================================
    # WRITES
    # ========================================================================

    def create(self, book: AccountBook) -> AccountBook:
        account_id = book.account_id
        with self.lock(account_id, create=True):
            if account_id in self._books:
                raise InvalidInput(f"account {account_id!r} already exists")
            stored = book.stage()
            stored.version = 1
            with self._registry_lock:
                self._books[account_id] = stored
                self._logs[account_id] = []
            logger.debug("Created account {}", account_id)
            return stored.stage()

    def compare_and_swap(
        self,
        account_id: str,
        expected_version: int,
        staged: AccountBook,
        transaction: Optional[Transaction] = None,
    ) -> int:
        """
        Install staged if the stored version is still expected_version.

        Returns:
            The new version

        Raises:
            ConflictError: the account changed since expected_version was read
        """
        with self.lock(account_id):
            current = self._books.get(account_id)
            if current is None:
                raise AccountNotFound(f"unknown account {account_id!r}")
            if current.version != expected_version:
                raise ConflictError(
                    f"account {account_id!r} at version {current.version}, expected {expected_version}"
                )
            staged.version = expected_version + 1
            self._books[account_id] = staged
            if transaction is not None:
                self._logs[account_id].append(transaction)
            return staged.version

    def update(
        self,
        account_id: str,
        mutate: Callable[[AccountBook], T],
        retries: int = 3,
    ) -> T:
        """
        Read-modify-write with compare-and-swap, retried on conflict.

        mutate receives a staged book; an exception from it aborts the update
        with nothing persisted.
        """
        with self.lock(account_id):
            for attempt in range(1, retries + 1):
                staged = self.get(account_id)
                result = mutate(staged)
                try:
                    self.compare_and_swap(account_id, staged.version, staged)
                except ConflictError:
                    logger.warning("Conflict updating {} (attempt {}/{})", account_id, attempt, retries)
                    continue
                return result
            raise ConflictError(f"account {account_id!r} kept changing after {retries} attempts")

    def delete(self, account_id: str) -> None:
        """Remove an account together with its wallet, sessions and transaction log."""
        with self.lock(account_id):
            if account_id not in self._books:
                raise AccountNotFound(f"unknown account {account_id!r}")
            with self._registry_lock:
                del self._books[account_id]
                del self._logs[account_id]
                self._locks.pop(account_id, None)
            logger.info("Deleted account {}", account_id)

    def __repr__(self) -> str:
        return f"AccountStore({len(self._books)} accounts)"
