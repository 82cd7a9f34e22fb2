"""
Store interfaces and the pending write cache.

The services only talk to persistence through LedgerStore and
BalanceStore. Implementations live next to this module: sql.py
(SQLAlchemy) and memory.py (in-process, used by tests and offline
runs).
"""

import threading
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Iterable, Literal, Protocol

from pydantic import BaseModel, Field

from gull_ledger.errors import StoreError, TransientStoreError
from gull_ledger.logging_setup import get_logger
from gull_ledger.schemas.account import ActingContext
from gull_ledger.schemas.entry import EntryDraft, EntrySnapshot, EntryUpdate

logger = get_logger(__name__)

BalanceListener = Callable[[int, Decimal], None]


class LedgerStore(Protocol):
    """
    Entry persistence.

    tracks_spent is True when the store itself keeps the owner's
    total_spent in step with entry writes (the SQL store does, like a
    database trigger would). Balance updates must then leave spent
    alone or it is counted twice.
    """

    tracks_spent: bool

    def create_entry(self, owner: ActingContext, entry: EntryDraft) -> EntrySnapshot: ...

    def update_entry(self, entry_id: int, patch: EntryUpdate) -> EntrySnapshot: ...

    def delete_entry(self, entry_id: int) -> None: ...

    def list_entries(self, scope: str, user_id: int | None = None) -> list[EntrySnapshot]: ...

    def get_entry(self, entry_id: int) -> EntrySnapshot: ...


class BalanceStore(Protocol):

    def get_balance(self, user_id: int) -> Decimal: ...

    def set_balance(self, user_id: int, value: Decimal) -> None: ...

    def get_total_spent(self, user_id: int) -> Decimal: ...

    def set_total_spent(self, user_id: int, value: Decimal) -> None: ...

    def subscribe(self, listener: BalanceListener) -> Callable[[], None]: ...


class BalanceNotifier:
    """Listener registry shared by the BalanceStore implementations."""

    def __init__(self):
        self._listeners: list[BalanceListener] = []

    def subscribe(self, listener: BalanceListener) -> Callable[[], None]:
        """Register listener; returns a function that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def notify(self, user_id: int, balance: Decimal) -> None:
        for listener in list(self._listeners):
            listener(user_id, balance)


# --- Write outcomes ---

class PersistOutcome(BaseModel):
    """
    Result of one entry write.

    written: the entry is in the store.
    queued: the store was unavailable; the write waits in the pending
    cache and the balance already reflects it.
    failed: the write was rejected; the caller must refund it.
    """
    status: Literal["written", "queued", "failed"]
    draft: EntryDraft
    entry: EntrySnapshot | None = None
    pending_id: uuid.UUID | None = None
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status != "failed"


class PendingWrite(BaseModel):
    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    owner: ActingContext
    draft: EntryDraft
    queued_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    attempts: int = 0


class ReconcileReport(BaseModel):
    written: list[EntrySnapshot] = Field(default_factory=list)
    dropped: list[PendingWrite] = Field(default_factory=list)
    still_pending: int = 0


class PendingQueue(Protocol):
    """What the transaction service needs from a pending write cache."""

    def add(self, owner: ActingContext, draft: EntryDraft) -> PendingWrite: ...

    def withdraw(self, ids: Iterable[uuid.UUID]) -> list[PendingWrite]: ...

    def resolved(self, ids: Iterable[uuid.UUID]) -> dict[uuid.UUID, EntrySnapshot]: ...

    def flush(self, store: LedgerStore, user_id: int | None = None) -> ReconcileReport: ...


class PendingWriteCache:
    """
    Writes accepted while the store was unavailable.

    Entries are paid for when they are queued. flush() retries them:
    transient failures stay queued, permanent ones are handed back so
    the caller can refund them. A flushed write remembers the entry it
    became, so an undo can still find it by its pending id.
    """

    def __init__(self):
        self._items: list[PendingWrite] = []
        self._resolved: dict[uuid.UUID, EntrySnapshot] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._items)

    def add(self, owner: ActingContext, draft: EntryDraft) -> PendingWrite:
        item = PendingWrite(owner=owner, draft=draft)
        self.extend([item])
        return item

    def extend(self, items: list[PendingWrite]) -> None:
        with self._lock:
            self._items.extend(items)
        for item in items:
            logger.info(
                "Queued %s %s for user %s until the store is reachable",
                item.draft.category.value, item.draft.number, item.owner.user_id,
            )

    def restore(self, items: list[PendingWrite]) -> None:
        """Put back writes whose flush or withdrawal was rolled back."""
        with self._lock:
            for item in items:
                self._resolved.pop(item.id, None)
            self._items.extend(items)

    def withdraw(self, ids: Iterable[uuid.UUID]) -> list[PendingWrite]:
        """Take still-queued writes out of the cache."""
        wanted = set(ids)
        with self._lock:
            taken = [i for i in self._items if i.id in wanted]
            self._items = [i for i in self._items if i.id not in wanted]
        return taken

    def resolved(self, ids: Iterable[uuid.UUID]) -> dict[uuid.UUID, EntrySnapshot]:
        with self._lock:
            return {i: self._resolved[i] for i in ids if i in self._resolved}

    def clear(self) -> None:
        with self._lock:
            self._items.clear()
            self._resolved.clear()

    def pending_for(self, user_id: int | None = None) -> list[PendingWrite]:
        with self._lock:
            return [i for i in self._items if user_id is None or i.owner.user_id == user_id]

    def flush(self, store: LedgerStore, user_id: int | None = None) -> ReconcileReport:
        """Retry queued writes, optionally only those of one user."""
        report = ReconcileReport()
        with self._lock:
            items = [
                i for i in self._items
                if user_id is None or i.owner.user_id == user_id
            ]
            for item in items:
                item.attempts += 1
                try:
                    entry = store.create_entry(item.owner, item.draft)
                except TransientStoreError:
                    continue
                except StoreError as e:
                    logger.warning(
                        "Dropping queued %s %s after permanent failure: %s",
                        item.draft.category.value, item.draft.number, e,
                    )
                    report.dropped.append(item)
                else:
                    self._resolved[item.id] = entry
                    report.written.append(entry)
                self._items.remove(item)
            report.still_pending = len(
                [i for i in self._items if user_id is None or i.owner.user_id == user_id]
            )
        return report
