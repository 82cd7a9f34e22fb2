"""
In-memory stores.

Used by the service tests and for running the engine without a
database. fail_on() makes writes for a given number raise a store
error, which is how partial and transient failures are exercised.
"""

import itertools
import threading
from datetime import datetime, timezone
from decimal import Decimal

from gull_ledger.errors import (
    ConstraintViolationError,
    EntryNotFoundError,
    NotFoundError,
    StoreError,
)
from gull_ledger.schemas.account import ActingContext
from gull_ledger.schemas.entry import EntryDraft, EntrySnapshot, EntryUpdate
from gull_ledger.stores.base import BalanceListener, BalanceNotifier

ZERO = Decimal("0")


class InMemoryBalanceStore:

    def __init__(self, balances: dict[int, Decimal] | None = None):
        self._balances: dict[int, Decimal] = dict(balances or {})
        self._spent: dict[int, Decimal] = {uid: ZERO for uid in self._balances}
        self._notifier = BalanceNotifier()

    def add_user(self, user_id: int, balance: Decimal = ZERO) -> None:
        self._balances[user_id] = Decimal(balance)
        self._spent.setdefault(user_id, ZERO)

    def _check(self, user_id: int) -> None:
        if user_id not in self._balances:
            raise NotFoundError(f"User {user_id} not found")

    def get_balance(self, user_id: int) -> Decimal:
        self._check(user_id)
        return self._balances[user_id]

    def set_balance(self, user_id: int, value: Decimal) -> None:
        self._check(user_id)
        self._balances[user_id] = value
        self._notifier.notify(user_id, value)

    def get_total_spent(self, user_id: int) -> Decimal:
        self._check(user_id)
        return self._spent[user_id]

    def set_total_spent(self, user_id: int, value: Decimal) -> None:
        self._check(user_id)
        self._spent[user_id] = value

    def subscribe(self, listener: BalanceListener):
        return self._notifier.subscribe(listener)


class InMemoryLedgerStore:
    """
    Dict-backed LedgerStore.

    With tracks_spent=True a balance store must be given; the store
    then keeps total_spent in step with writes the way the SQL store
    does.
    """

    def __init__(
        self,
        *,
        tracks_spent: bool = False,
        balances: InMemoryBalanceStore | None = None,
    ):
        if tracks_spent and balances is None:
            raise ValueError("tracks_spent requires a balance store")
        self.tracks_spent = tracks_spent
        self._balances = balances
        self._entries: dict[int, EntrySnapshot] = {}
        self._ids = itertools.count(1)
        self._failures: dict[str, tuple[type[StoreError], int | None]] = {}
        self._lock = threading.Lock()

    def fail_on(
        self,
        number: str,
        error: type[StoreError] = ConstraintViolationError,
        times: int | None = None,
    ) -> None:
        """Make writes touching number raise error (forever if times is None)."""
        self._failures[number] = (error, times)

    def clear_failures(self) -> None:
        self._failures.clear()

    def _maybe_fail(self, number: str) -> None:
        if number not in self._failures:
            return
        error, times = self._failures[number]
        if times is not None:
            if times <= 1:
                del self._failures[number]
            else:
                self._failures[number] = (error, times - 1)
        raise error(f"Write rejected for {number}")

    def _adjust_spent(self, user_id: int, delta: Decimal) -> None:
        if not self.tracks_spent:
            return
        spent = self._balances.get_total_spent(user_id)
        self._balances.set_total_spent(user_id, max(ZERO, spent + delta))

    def _get(self, entry_id: int) -> EntrySnapshot:
        try:
            return self._entries[entry_id]
        except KeyError:
            raise EntryNotFoundError(f"Entry {entry_id} not found") from None

    def create_entry(self, owner: ActingContext, entry: EntryDraft) -> EntrySnapshot:
        with self._lock:
            self._maybe_fail(entry.number)
            now = datetime.now(timezone.utc)
            snapshot = EntrySnapshot(
                id=next(self._ids),
                owner_scope=owner.owner_scope,
                user_id=owner.user_id,
                admin_user_id=owner.admin_user_id,
                created_at=now,
                updated_at=now,
                **entry.model_dump(),
            )
            self._entries[snapshot.id] = snapshot
            self._adjust_spent(owner.user_id, snapshot.stake)
            return snapshot

    def update_entry(self, entry_id: int, patch: EntryUpdate) -> EntrySnapshot:
        with self._lock:
            current = self._get(entry_id)
            self._maybe_fail(current.number)
            updated = current.model_copy(update={
                **patch.model_dump(exclude_unset=True),
                "updated_at": datetime.now(timezone.utc),
            })
            self._entries[entry_id] = updated
            self._adjust_spent(current.user_id, updated.stake - current.stake)
            return updated

    def delete_entry(self, entry_id: int) -> None:
        with self._lock:
            current = self._get(entry_id)
            self._maybe_fail(current.number)
            del self._entries[entry_id]
            self._adjust_spent(current.user_id, -current.stake)

    def list_entries(self, scope: str, user_id: int | None = None) -> list[EntrySnapshot]:
        with self._lock:
            entries = [
                e for e in self._entries.values()
                if e.owner_scope == scope
                and (user_id is None or e.user_id == user_id)
            ]
        return sorted(entries, key=lambda e: (e.created_at, e.id), reverse=True)

    def get_entry(self, entry_id: int) -> EntrySnapshot:
        with self._lock:
            return self._get(entry_id)
