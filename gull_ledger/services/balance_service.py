"""
Balance ledger.

Each user has one running balance. Every change is a
read-modify-write done under that user's lock, so two requests for
the same user cannot both read the old balance and both succeed.

Admin balances are unlimited: a deduction is never refused and the
balance may go negative.
"""

import threading
from decimal import Decimal

from gull_ledger.errors import ValidationError
from gull_ledger.logging_setup import get_logger
from gull_ledger.stores.base import BalanceStore

logger = get_logger(__name__)

ZERO = Decimal("0")

_locks: dict[int, threading.RLock] = {}
_locks_guard = threading.Lock()


def user_lock(user_id: int) -> threading.RLock:
    """The process-wide lock for one user's balance."""
    with _locks_guard:
        lock = _locks.get(user_id)
        if lock is None:
            lock = threading.RLock()
            _locks[user_id] = lock
        return lock


class BalanceLedger:

    def __init__(self, store: BalanceStore, user_id: int, unlimited: bool = False):
        self.store = store
        self.user_id = user_id
        self.unlimited = unlimited

    @staticmethod
    def _validate(amount: Decimal) -> Decimal:
        amount = Decimal(amount)
        if amount < ZERO:
            raise ValidationError(f"Amount must not be negative, got {amount}")
        return amount

    @property
    def balance(self) -> Decimal:
        return self.store.get_balance(self.user_id)

    @property
    def total_spent(self) -> Decimal:
        return self.store.get_total_spent(self.user_id)

    def has_sufficient(self, amount: Decimal) -> bool:
        amount = self._validate(amount)
        return self.unlimited or self.balance >= amount

    def deduct(
        self, amount: Decimal, adjust_spent: bool = True, *, force: bool = False
    ) -> bool:
        """
        Take amount off the balance.

        Returns False, changing nothing, when the balance is too low
        and the ledger is not unlimited. force skips the check; it is
        only for reversing a credit made earlier in the same operation.
        """
        amount = self._validate(amount)
        with user_lock(self.user_id):
            current = self.store.get_balance(self.user_id)
            if not (self.unlimited or force) and current < amount:
                logger.info(
                    "Refused deduction of %s for user %s (balance %s)",
                    amount, self.user_id, current,
                )
                return False
            self.store.set_balance(self.user_id, current - amount)
            if adjust_spent:
                spent = self.store.get_total_spent(self.user_id)
                self.store.set_total_spent(self.user_id, spent + amount)
        logger.debug("Deducted %s from user %s", amount, self.user_id)
        return True

    def add(self, amount: Decimal, adjust_spent: bool = True) -> bool:
        """Credit amount; with adjust_spent, total_spent drops by it (not below zero)."""
        amount = self._validate(amount)
        with user_lock(self.user_id):
            current = self.store.get_balance(self.user_id)
            self.store.set_balance(self.user_id, current + amount)
            if adjust_spent:
                spent = self.store.get_total_spent(self.user_id)
                self.store.set_total_spent(self.user_id, max(ZERO, spent - amount))
        logger.debug("Credited %s to user %s", amount, self.user_id)
        return True

    def top_up(self, amount: Decimal) -> Decimal:
        """Admin credit. Not a refund, so total_spent is left alone."""
        amount = self._validate(amount)
        if amount == ZERO:
            raise ValidationError("Top-up amount must be positive")
        self.add(amount, adjust_spent=False)
        logger.info("Topped up user %s by %s", self.user_id, amount)
        return self.balance
