"""
Ledger session: mutations with undo/redo.

Wraps a TransactionService and a HistoryStack. Every successful
mutation is pushed onto the history; undo and redo replay the
inverse or forward effect through the same TransactionService, so
balances are reconciled exactly as for a fresh mutation:

    add     undo: delete the entry        redo: re-create it
    delete  undo: re-create the entry     redo: delete it again
    edit    undo: restore the original    redo: apply the update again
    batch   undo: delete all its entries  redo: re-create them
    filter  undo: delete the deductions   redo: re-create them

Re-created entries get new ids. Every action in the history that
refers to the old id is rewritten to the new one, so later undos
still find their targets.
"""

from contextlib import contextmanager
from typing import Iterable

from gull_ledger.errors import MutationInFlightError, PersistenceError, ValidationError
from gull_ledger.logging_setup import get_logger
from gull_ledger.models.enums import ActionType, BatchStatus, Category
from gull_ledger.schemas.entry import (
    BatchResult,
    EntryDraft,
    EntrySnapshot,
    EntryUpdate,
    QueuedDraft,
    is_bulk_number,
)
from gull_ledger.schemas.filter import FilterCriteria
from gull_ledger.schemas.history import (
    AddPayload,
    BatchPayload,
    DeletePayload,
    EditPayload,
    FilterPayload,
    HistoryAction,
)
from gull_ledger.services.aggregation import aggregate
from gull_ledger.services.filter_service import compute_deductions, deduction_drafts
from gull_ledger.services.history import HistoryStack
from gull_ledger.services.transaction_service import TransactionService

logger = get_logger(__name__)


def _numbers(
    entries: Iterable[EntrySnapshot], queued: Iterable[QueuedDraft] = ()
) -> list[str]:
    return sorted({e.number for e in entries} | {q.draft.number for q in queued})


def _update_from(snapshot: EntrySnapshot) -> EntryUpdate:
    update = EntryUpdate(
        first=snapshot.first,
        second=snapshot.second,
        notes=snapshot.notes,
    )
    # Legacy bulk rows cannot be renumbered, only re-amounted
    if not is_bulk_number(snapshot.number):
        update.number = snapshot.number
        update.category = snapshot.category
    return update


def _match_new_ids(
    old: list[EntrySnapshot], new: list[EntrySnapshot]
) -> dict[int, int]:
    """Pair re-created entries with the snapshots they came from."""
    mapping: dict[int, int] = {}
    unused = list(new)
    for snapshot in old:
        key = (snapshot.number, snapshot.category, snapshot.first, snapshot.second)
        for candidate in unused:
            if (candidate.number, candidate.category,
                    candidate.first, candidate.second) == key:
                mapping[snapshot.id] = candidate.id
                unused.remove(candidate)
                break
    return mapping


def _remap_snapshot(snapshot: EntrySnapshot, ids: dict[int, int]) -> EntrySnapshot:
    if snapshot.id in ids:
        return snapshot.model_copy(update={"id": ids[snapshot.id]})
    return snapshot


def _remap_payload(payload, ids: dict[int, int]):
    if isinstance(payload, (AddPayload, DeletePayload)):
        return payload.model_copy(update={"entry": _remap_snapshot(payload.entry, ids)})
    if isinstance(payload, EditPayload):
        return payload.model_copy(update={
            "entry_id": ids.get(payload.entry_id, payload.entry_id),
            "original": _remap_snapshot(payload.original, ids),
            "updated": _remap_snapshot(payload.updated, ids),
        })
    return payload.model_copy(update={
        "entries": [_remap_snapshot(e, ids) for e in payload.entries]
    })


class LedgerSession:

    def __init__(self, mutator: TransactionService, history: HistoryStack):
        self.mutator = mutator
        self.history = history

    @contextmanager
    def _exclusive(self):
        if not self.history.lock.acquire(blocking=False):
            raise MutationInFlightError(
                "Another change is still being applied; try again"
            )
        try:
            yield
        finally:
            self.history.lock.release()

    def _record(self, action_type: ActionType, description: str, payload, numbers) -> None:
        self.history.push(HistoryAction(
            type=action_type,
            description=description,
            affected_numbers=list(numbers),
            payload=payload,
        ))

    def _record_batch(self, result: BatchResult, category_label: str) -> None:
        entries, queued = result.entries, result.queued
        if not entries and not queued:
            return
        if len(entries) == 1 and not queued:
            entry = entries[0]
            self._record(
                ActionType.ADD,
                f"Added {entry.category.value} {entry.number}",
                AddPayload(entry=entry),
                [entry.number],
            )
            return
        self._record(
            ActionType.BATCH,
            f"Added {len(entries) + len(queued)} {category_label} entries",
            BatchPayload(entries=entries, queued=queued),
            _numbers(entries, queued),
        )

    def _remap_ids(self, ids: dict[int, int]) -> None:
        if not ids:
            return
        for action in self.history.actions:
            self.history.replace(
                action.model_copy(update={"payload": _remap_payload(action.payload, ids)})
            )

    def _recreate(
        self, snapshots: list[EntrySnapshot], queued: Iterable[QueuedDraft] = ()
    ) -> BatchResult:
        """
        Write snapshots (and queued drafts) again, all or nothing.

        A partly restored action could not be undone later, so the
        written share is deleted again and PersistenceError raised.
        """
        drafts = [s.to_draft() for s in snapshots] + [q.draft for q in queued]
        result = self.mutator.restore_entries(drafts)
        if result.status == BatchStatus.REJECTED:
            raise ValidationError("Entries could not be restored", result.errors)
        if result.status == BatchStatus.PARTIAL:
            self.mutator.bulk_delete([e.id for e in result.entries], strict=True)
            raise PersistenceError(
                "Entries could not all be restored; nothing was changed",
                all_failed=True,
                failures=result.errors,
            )
        self._remap_ids(_match_new_ids(snapshots, result.entries))
        return result

    def _replace_payload(self, action: HistoryAction, **changes) -> None:
        self.history.replace(
            action.model_copy(update={"payload": action.payload.model_copy(update=changes)})
        )

    def _undo_many(self, action: HistoryAction) -> None:
        """Delete a batch's entries, including queued ones written since."""
        payload = action.payload
        resolved = self.mutator.resolve_queued(payload.queued)
        targets = payload.entries + [
            resolved[q.pending_id] for q in payload.queued if q.pending_id in resolved
        ]
        waiting = [q for q in payload.queued if q.pending_id not in resolved]
        if targets:
            self.mutator.bulk_delete([e.id for e in targets], strict=True)
        withdrawn = self.mutator.withdraw_queued(waiting)
        # Redo re-creates exactly what was taken back here
        self._replace_payload(action, entries=targets, queued=withdrawn)

    def _redo_many(self, action: HistoryAction) -> None:
        payload = action.payload
        result = self._recreate(payload.entries, payload.queued)
        self._replace_payload(
            self.history.peek_redo(), entries=result.entries, queued=[]
        )

    # --- Mutations ---

    def submit_text(
        self,
        text: str,
        category: Category | None = None,
        first=None,
        second=None,
        notes: str | None = None,
    ) -> BatchResult:
        with self._exclusive():
            result = self.mutator.submit_text(text, category, first, second, notes)
            label = Category(category).value if category else "mixed"
            self._record_batch(result, label)
            return result

    def add_entries(self, drafts: list[EntryDraft]) -> BatchResult:
        with self._exclusive():
            result = self.mutator.commit_batch(drafts)
            categories = {d.category for d in drafts}
            label = categories.pop().value if len(categories) == 1 else "mixed"
            self._record_batch(result, label)
            return result

    def edit_entry(self, entry_id: int, update: EntryUpdate) -> EntrySnapshot:
        with self._exclusive():
            original = self.mutator.get_entry(entry_id)
            updated = self.mutator.edit_entry(entry_id, update)
            self._record(
                ActionType.EDIT,
                f"Edited {original.category.value} {original.number}",
                EditPayload(entry_id=entry_id, original=original, updated=updated),
                _numbers([original, updated]),
            )
            return updated

    def delete_entry(self, entry_id: int) -> EntrySnapshot:
        with self._exclusive():
            entry = self.mutator.delete_entry(entry_id)
            self._record(
                ActionType.DELETE,
                f"Deleted {entry.category.value} {entry.number}",
                DeletePayload(entry=entry),
                [entry.number],
            )
            return entry

    def apply_filter(self, criteria: FilterCriteria) -> BatchResult:
        """Book the filter's deductions as negative entries."""
        with self._exclusive():
            summaries = aggregate(self.mutator.list_entries(), criteria.category)
            deductions = compute_deductions(summaries, criteria)
            if not deductions:
                return BatchResult(
                    status=BatchStatus.REJECTED,
                    errors=["No numbers exceed the filter limits"],
                )
            result = self.mutator.commit_batch(
                deduction_drafts(deductions, criteria), is_deduction=True
            )
            if result.entries or result.queued:
                self._record(
                    ActionType.FILTER,
                    f"Filter deduction on {len(result.entries) + len(result.queued)} "
                    f"{criteria.category.value} numbers",
                    FilterPayload(
                        entries=result.entries, queued=result.queued, criteria=criteria
                    ),
                    _numbers(result.entries, result.queued),
                )
            return result

    # --- Replay ---

    def undo(self) -> HistoryAction:
        """
        Reverse the most recent applied action.

        If its target no longer exists NotFoundError propagates and
        the history is left where it was.
        """
        with self._exclusive():
            action = self.history.peek_undo()
            if action is None:
                raise ValidationError("Nothing to undo")

            payload = action.payload
            if isinstance(payload, AddPayload):
                self.mutator.delete_entry(payload.entry.id)
            elif isinstance(payload, DeletePayload):
                self._recreate([payload.entry])
            elif isinstance(payload, EditPayload):
                self.mutator.edit_entry(payload.entry_id, _update_from(payload.original))
            else:
                self._undo_many(action)

            self.history.mark_undone()
            logger.info("Undid %s: %s", action.type.value, action.description)
            return self.history.peek_redo()

    def redo(self) -> HistoryAction:
        """Apply the most recently undone action again."""
        with self._exclusive():
            action = self.history.peek_redo()
            if action is None:
                raise ValidationError("Nothing to redo")

            payload = action.payload
            if isinstance(payload, AddPayload):
                self._recreate([payload.entry])
            elif isinstance(payload, DeletePayload):
                self.mutator.delete_entry(payload.entry.id)
            elif isinstance(payload, EditPayload):
                self.mutator.edit_entry(payload.entry_id, _update_from(payload.updated))
            else:
                self._redo_many(action)

            self.history.mark_redone()
            logger.info("Redid %s: %s", action.type.value, action.description)
            return self.history.peek_undo()
