"""
SQLAlchemy-backed stores.

Both stores work inside the caller's Session and only flush; the
API layer commits or rolls back the whole request. Each entry write
runs in its own savepoint, so a failed write is rolled back alone and
the request's balance change survives it.

SqlLedgerStore keeps UserAccount.total_spent in step with entry
writes (insert adds the stake, update applies the difference, delete
takes it back, never going below zero), so it reports
tracks_spent=True.
"""

import uuid
from contextlib import contextmanager
from decimal import Decimal
from typing import Iterable

from sqlalchemy import event, select
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.orm import Session, SessionTransaction

from gull_ledger.errors import (
    ConstraintViolationError,
    EntryNotFoundError,
    NotFoundError,
    StoreError,
    TransientStoreError,
)
from gull_ledger.logging_setup import get_logger
from gull_ledger.models.entry import Entry
from gull_ledger.models.user_account import UserAccount
from gull_ledger.schemas.account import ActingContext
from gull_ledger.schemas.entry import (
    EntryDraft,
    EntrySnapshot,
    EntryUpdate,
    is_bulk_number,
)
from gull_ledger.services.number_normalizer import is_valid_number
from gull_ledger.stores.base import (
    BalanceListener,
    BalanceNotifier,
    LedgerStore,
    PendingWrite,
    PendingWriteCache,
    ReconcileReport,
)

logger = get_logger(__name__)

ZERO = Decimal("0")


def _raise_store_error(e: DBAPIError) -> None:
    if isinstance(e, IntegrityError):
        raise ConstraintViolationError(str(e.orig)) from e
    if isinstance(e, OperationalError):
        raise TransientStoreError(str(e.orig)) from e
    raise StoreError(str(e.orig)) from e


def _flush(db: Session) -> None:
    try:
        db.flush()
    except DBAPIError as e:
        _raise_store_error(e)


@contextmanager
def _savepoint(db: Session):
    """Run one write in a SAVEPOINT; on failure only that write is lost."""
    try:
        with db.begin_nested():
            yield
    except DBAPIError as e:
        _raise_store_error(e)


class SqlLedgerStore:

    tracks_spent = True

    def __init__(self, db: Session):
        self.db = db

    def _get_user(self, user_id: int) -> UserAccount:
        user = self.db.get(UserAccount, user_id)
        if not user:
            raise ConstraintViolationError(f"User {user_id} not found")
        return user

    def _get_row(self, entry_id: int) -> Entry:
        entry = self.db.get(Entry, entry_id)
        if not entry:
            raise EntryNotFoundError(f"Entry {entry_id} not found")
        return entry

    @staticmethod
    def _check_number(number: str, category) -> None:
        # Checked before the insert so the error names the number
        if not is_valid_number(number, category):
            raise ConstraintViolationError(
                f"'{number}' is not a valid {category.value} number"
            )

    @staticmethod
    def _adjust_spent(user: UserAccount, delta: Decimal) -> None:
        user.total_spent = max(ZERO, (user.total_spent or ZERO) + delta)

    def create_entry(self, owner: ActingContext, entry: EntryDraft) -> EntrySnapshot:
        self._check_number(entry.number, entry.category)
        user = self._get_user(owner.user_id)
        if owner.admin_user_id is not None:
            self._get_user(owner.admin_user_id)

        row = Entry(
            owner_scope=owner.owner_scope,
            user_id=owner.user_id,
            admin_user_id=owner.admin_user_id,
            number=entry.number,
            category=entry.category,
            first=entry.first,
            second=entry.second,
            notes=entry.notes,
            is_deduction=entry.is_deduction,
        )
        with _savepoint(self.db):
            self.db.add(row)
            self._adjust_spent(user, entry.stake)
            self.db.flush()
        return EntrySnapshot.model_validate(row)

    def update_entry(self, entry_id: int, patch: EntryUpdate) -> EntrySnapshot:
        row = self._get_row(entry_id)
        changes = patch.model_dump(exclude_unset=True)

        number = changes.get("number", row.number)
        category = changes.get("category", row.category)
        # Legacy bulk rows may still have their amounts edited
        if "number" in changes or not is_bulk_number(row.number):
            self._check_number(number, category)

        user = self._get_user(row.user_id)
        old_stake = row.stake
        with _savepoint(self.db):
            for field, value in changes.items():
                setattr(row, field, value)
            self._adjust_spent(user, row.stake - old_stake)
            self.db.flush()
        return EntrySnapshot.model_validate(row)

    def delete_entry(self, entry_id: int) -> None:
        row = self._get_row(entry_id)
        user = self._get_user(row.user_id)
        with _savepoint(self.db):
            self._adjust_spent(user, -row.stake)
            self.db.delete(row)
            self.db.flush()

    def list_entries(self, scope: str, user_id: int | None = None) -> list[EntrySnapshot]:
        query = select(Entry).where(Entry.owner_scope == scope)
        if user_id is not None:
            query = query.where(Entry.user_id == user_id)
        query = query.order_by(Entry.created_at.desc(), Entry.id.desc())
        rows = self.db.execute(query).scalars().all()
        return [EntrySnapshot.model_validate(r) for r in rows]

    def get_entry(self, entry_id: int) -> EntrySnapshot:
        return EntrySnapshot.model_validate(self._get_row(entry_id))


class SqlBalanceStore:

    def __init__(self, db: Session):
        self.db = db
        self._notifier = BalanceNotifier()

    def _get_user(self, user_id: int) -> UserAccount:
        user = self.db.get(UserAccount, user_id)
        if not user:
            raise NotFoundError(f"User {user_id} not found")
        return user

    def get_balance(self, user_id: int) -> Decimal:
        return self._get_user(user_id).balance

    def set_balance(self, user_id: int, value: Decimal) -> None:
        user = self._get_user(user_id)
        user.balance = value
        _flush(self.db)
        self._notifier.notify(user_id, value)

    def get_total_spent(self, user_id: int) -> Decimal:
        return self._get_user(user_id).total_spent

    def set_total_spent(self, user_id: int, value: Decimal) -> None:
        self._get_user(user_id).total_spent = value
        _flush(self.db)

    def subscribe(self, listener: BalanceListener):
        return self._notifier.subscribe(listener)


class SessionPendingWrites:
    """
    The shared pending cache, seen through one Session.

    Queued writes are paid for inside the Session's transaction, so
    they reach the shared cache only when it commits. Writes taken out
    of the cache (flushed or withdrawn) are put back if it rolls back,
    along with the refund or entry that went with them.
    """

    def __init__(self, db: Session, cache: PendingWriteCache):
        self.cache = cache
        self._staged: list[PendingWrite] = []
        self._taken: list[PendingWrite] = []
        event.listen(db, "after_commit", self._on_commit)
        event.listen(db, "after_transaction_end", self._on_transaction_end)

    def __len__(self) -> int:
        return len(self.cache) + len(self._staged)

    def add(self, owner: ActingContext, draft: EntryDraft) -> PendingWrite:
        item = PendingWrite(owner=owner, draft=draft)
        self._staged.append(item)
        return item

    def withdraw(self, ids: Iterable[uuid.UUID]) -> list[PendingWrite]:
        wanted = set(ids)
        staged = [i for i in self._staged if i.id in wanted]
        self._staged = [i for i in self._staged if i.id not in wanted]
        taken = self.cache.withdraw(wanted)
        self._taken.extend(taken)
        return staged + taken

    def resolved(self, ids: Iterable[uuid.UUID]) -> dict[uuid.UUID, EntrySnapshot]:
        return self.cache.resolved(ids)

    def pending_for(self, user_id: int | None = None) -> list[PendingWrite]:
        return self.cache.pending_for(user_id) + [
            i for i in self._staged if user_id is None or i.owner.user_id == user_id
        ]

    def flush(self, store: LedgerStore, user_id: int | None = None) -> ReconcileReport:
        before = self.cache.pending_for(user_id)
        report = self.cache.flush(store, user_id)
        left = {i.id for i in self.cache.pending_for(user_id)}
        self._taken.extend(i for i in before if i.id not in left)
        return report

    def _on_commit(self, session: Session) -> None:
        # Releasing a savepoint fires after_commit too
        if session.in_nested_transaction():
            return
        if self._staged:
            self.cache.extend(self._staged)
        self._staged.clear()
        self._taken.clear()

    def _on_transaction_end(self, session: Session, transaction: SessionTransaction) -> None:
        if transaction.parent is not None or transaction.nested:
            return
        if self._staged:
            logger.warning(
                "Discarding %d queued writes; their transaction was rolled back",
                len(self._staged),
            )
            self._staged.clear()
        if self._taken:
            self.cache.restore(self._taken)
            self._taken.clear()
