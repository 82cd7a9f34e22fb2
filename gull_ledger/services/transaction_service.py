"""
Transaction service: the only writer of entries.

Every mutation follows the same steps:
1. Validate and normalize the input
2. Check amount limits (before any money moves)
3. Check the balance and apply the whole change in one step
4. Persist the entries
5. Compensate the balance for anything that could not be persisted

A batch therefore ends COMMITTED, PARTIAL (some writes failed and
were refunded) or, when nothing could be written, the balance change
is reversed and PersistenceError is raised. The combination "balance
charged but no entry exists" is never left behind.

Validation problems are returned in the BatchResult. Balance, limit
and persistence problems are raised.
"""

import uuid
from decimal import Decimal
from typing import Callable, Iterable

from gull_ledger.errors import (
    EntryNotFoundError,
    InsufficientBalanceError,
    NotFoundError,
    ParseError,
    PersistenceError,
    StoreError,
    TransientStoreError,
    ValidationError,
)
from gull_ledger.logging_setup import get_logger
from gull_ledger.models.enums import BatchStatus, Category
from gull_ledger.schemas.account import ActingContext
from gull_ledger.schemas.entry import (
    BatchResult,
    EntryDraft,
    EntrySnapshot,
    EntryUpdate,
    QueuedDraft,
    is_bulk_number,
)
from gull_ledger.services.amount_limits import AmountLimitMap
from gull_ledger.services.balance_service import BalanceLedger
from gull_ledger.services.entry_parser import parse
from gull_ledger.services.number_normalizer import normalize
from gull_ledger.stores.base import (
    LedgerStore,
    PendingQueue,
    PersistOutcome,
    ReconcileReport,
)

logger = get_logger(__name__)

ZERO = Decimal("0")

AuditSink = Callable[[str, str], None]


class TransactionService:

    def __init__(
        self,
        ledger_store: LedgerStore,
        balance_ledger: BalanceLedger,
        context: ActingContext,
        limits: AmountLimitMap | None = None,
        pending: PendingQueue | None = None,
        audit: AuditSink | None = None,
    ):
        self.store = ledger_store
        self.ledger = balance_ledger
        self.context = context
        self.limits = limits
        self.pending = pending
        self.audit = audit
        # A store that maintains total_spent itself must not see it
        # adjusted a second time by the balance ledger
        self.adjust_spent = not ledger_store.tracks_spent

    # --- Reads ---

    def list_entries(self) -> list[EntrySnapshot]:
        return self.store.list_entries(self.context.owner_scope, self.context.user_id)

    def get_entry(self, entry_id: int) -> EntrySnapshot:
        """Fetch an entry owned by the acting user, or raise NotFoundError."""
        entry = self.store.get_entry(entry_id)
        if (
            entry.user_id != self.context.user_id
            or entry.owner_scope != self.context.owner_scope
        ):
            raise EntryNotFoundError(f"Entry {entry_id} not found")
        return entry

    # --- Balance ---

    def _settle(self, delta: Decimal) -> None:
        """Charge a positive delta or credit a negative one, in one call."""
        if delta > ZERO:
            if not self.ledger.deduct(delta, adjust_spent=self.adjust_spent):
                raise InsufficientBalanceError(
                    required=delta, available=self.ledger.balance
                )
        elif delta < ZERO:
            self.ledger.add(-delta, adjust_spent=self.adjust_spent)

    def _compensate(self, delta: Decimal) -> None:
        """Undo an earlier _settle(delta). Never refused."""
        if delta > ZERO:
            self.ledger.add(delta, adjust_spent=self.adjust_spent)
        elif delta < ZERO:
            self.ledger.deduct(-delta, adjust_spent=self.adjust_spent, force=True)

    def _record_audit(self, event_type: str, details: str) -> None:
        if self.audit is not None and self.context.is_impersonating:
            self.audit(event_type, details)

    # --- Validation ---

    @staticmethod
    def _check_amounts(draft: EntryDraft) -> str | None:
        if draft.is_deduction:
            if draft.first > ZERO or draft.second > ZERO:
                return "deduction amounts must not be positive"
        else:
            if draft.first < ZERO or draft.second < ZERO:
                return "amounts must not be negative"
        if draft.first == ZERO and draft.second == ZERO:
            return "no amount specified"
        return None

    def _validate_drafts(
        self, drafts: Iterable[EntryDraft], is_deduction: bool
    ) -> tuple[list[EntryDraft], list[str]]:
        valid: list[EntryDraft] = []
        errors: list[str] = []
        for i, draft in enumerate(drafts, start=1):
            if is_deduction and not draft.is_deduction:
                draft = draft.model_copy(update={"is_deduction": True})
            try:
                number = normalize(draft.number, draft.category)
            except ParseError as e:
                errors.append(f"Entry {i}: {e}")
                continue
            problem = self._check_amounts(draft)
            if problem:
                errors.append(f"Entry {i} ({number}): {problem}")
                continue
            valid.append(draft.model_copy(update={"number": number}))
        return valid, errors

    def _check_limits(self, drafts: list[EntryDraft], exclude_id: int | None = None) -> None:
        if self.limits is None:
            return
        charged = [d for d in drafts if not d.is_deduction]
        if not charged:
            return
        existing = [e for e in self.list_entries() if e.id != exclude_id]
        self.limits.check(charged, existing)

    # --- Persistence ---

    def _persist(self, draft: EntryDraft, queue: bool = True) -> PersistOutcome:
        try:
            entry = self.store.create_entry(self.context, draft)
            return PersistOutcome(status="written", draft=draft, entry=entry)
        except TransientStoreError as e:
            if queue and self.pending is not None:
                item = self.pending.add(self.context, draft)
                return PersistOutcome(
                    status="queued", draft=draft, pending_id=item.id, error=str(e)
                )
            return PersistOutcome(status="failed", draft=draft, error=str(e))
        except StoreError as e:
            return PersistOutcome(status="failed", draft=draft, error=str(e))

    # --- Mutations ---

    def submit_text(
        self,
        text: str,
        category: Category | None = None,
        first: Decimal | None = None,
        second: Decimal | None = None,
        notes: str | None = None,
    ) -> BatchResult:
        """
        Parse a block of text and commit whatever parsed cleanly.

        Parse errors are returned alongside the batch outcome. Nothing
        is charged when no entry could be parsed.
        """
        parsed = parse(text, category, default_first=first, default_second=second)
        if not parsed.entries:
            return BatchResult(
                status=BatchStatus.REJECTED,
                errors=parsed.errors or ["No entries found"],
            )

        result = self.commit_batch([p.to_draft(notes) for p in parsed.entries])
        result.errors = parsed.errors + result.errors
        return result

    def commit_batch(
        self,
        drafts: Iterable[EntryDraft],
        *,
        is_deduction: bool = False,
        queue: bool = True,
    ) -> BatchResult:
        """
        Charge for and write a batch of entries.

        The balance moves once for the whole batch. Writes are
        independent of each other and run one after another on the
        store; whatever fails is refunded with one compensating credit.
        With queue=False a store outage counts as a failure instead of
        being parked in the pending cache.
        """
        drafts, errors = self._validate_drafts(drafts, is_deduction)
        if errors or not drafts:
            return BatchResult(
                status=BatchStatus.REJECTED,
                errors=errors or ["No entries to commit"],
            )

        self._check_limits(drafts)

        total = sum((d.stake for d in drafts), ZERO)
        self._settle(total)

        outcomes = [self._persist(d, queue) for d in drafts]
        failed = [o for o in outcomes if not o.succeeded]
        failures = [f"{o.draft.number}: {o.error}" for o in failed]

        if len(failed) == len(outcomes):
            self._compensate(total)
            logger.warning(
                "Batch of %d entries for user %s failed entirely; balance restored",
                len(drafts), self.context.user_id,
            )
            raise PersistenceError(
                "No entries could be saved; the balance was restored",
                all_failed=True,
                failures=failures,
            )

        refund = sum((o.draft.stake for o in failed), ZERO)
        if failed:
            self._compensate(refund)

        written = [o.entry for o in outcomes if o.status == "written"]
        queued = [o for o in outcomes if o.status == "queued"]
        status = BatchStatus.PARTIAL if failed else BatchStatus.COMMITTED

        logger.info(
            "Batch for user %s: %s, %d written, %d queued, %d failed, net %s",
            self.context.user_id, status.value,
            len(written), len(queued), len(failed), total - refund,
        )
        self._record_audit(
            "ENTRIES_DEDUCTED" if is_deduction else "ENTRIES_ADDED",
            f"{len(written) + len(queued)} entries, net {total - refund}, "
            f"numbers {', '.join(d.number for d in drafts)}",
        )

        return BatchResult(
            status=status,
            entries=written,
            success_count=len(written) + len(queued),
            failed_count=len(failed),
            queued_count=len(queued),
            queued=[QueuedDraft(pending_id=o.pending_id, draft=o.draft) for o in queued],
            balance_change=-(total - refund),
            errors=failures,
        )

    def restore_entries(self, drafts: Iterable[EntryDraft]) -> BatchResult:
        """
        Write entries again, e.g. from history snapshots.

        They get new ids. Nothing is queued: a restored entry has to
        exist, or the caller cannot refer to it afterwards.
        """
        return self.commit_batch(drafts, queue=False)

    def resolve_queued(self, queued: Iterable[QueuedDraft]) -> dict[uuid.UUID, EntrySnapshot]:
        """The entries that queued writes became, for those already flushed."""
        if self.pending is None:
            return {}
        return self.pending.resolved(q.pending_id for q in queued)

    def withdraw_queued(self, queued: Iterable[QueuedDraft]) -> list[QueuedDraft]:
        """
        Cancel writes still waiting in the pending cache and refund them.

        Returns the ones withdrawn; writes already flushed or dropped
        are left alone.
        """
        queued = list(queued)
        if self.pending is None or not queued:
            return []
        taken = {i.id for i in self.pending.withdraw(q.pending_id for q in queued)}
        withdrawn = [q for q in queued if q.pending_id in taken]
        refund = sum((q.draft.stake for q in withdrawn), ZERO)
        if refund:
            self._compensate(refund)
        if withdrawn:
            logger.info(
                "Withdrew %d queued writes for user %s, refunded %s",
                len(withdrawn), self.context.user_id, refund,
            )
            self._record_audit(
                "ENTRIES_DELETED",
                f"{len(withdrawn)} queued entries withdrawn, refunded {refund}",
            )
        return withdrawn

    def edit_entry(self, entry_id: int, update: EntryUpdate) -> EntrySnapshot:
        """
        Change an entry and settle the difference.

        A higher stake is charged (subject to balance and limits), a
        lower one is credited back.
        """
        original = self.get_entry(entry_id)
        changes = update.model_dump(exclude_unset=True, exclude_none=True)

        category = Category(changes.get("category", original.category))
        number = changes.get("number", original.number)
        if "number" in changes or "category" in changes or not is_bulk_number(number):
            try:
                number = normalize(number, category)
            except ParseError as e:
                raise ValidationError(str(e)) from e
        if "number" in changes or "category" in changes:
            changes["number"] = number

        edited = EntryDraft(
            number=number,
            category=category,
            first=changes.get("first", original.first),
            second=changes.get("second", original.second),
            notes=changes.get("notes", original.notes),
            is_deduction=original.is_deduction,
        )
        problem = self._check_amounts(edited)
        if problem:
            raise ValidationError(f"Entry {entry_id}: {problem}")

        self._check_limits([edited], exclude_id=entry_id)

        delta = edited.stake - original.stake
        self._settle(delta)
        try:
            updated = self.store.update_entry(entry_id, EntryUpdate(**changes))
        except EntryNotFoundError:
            self._compensate(delta)
            raise
        except StoreError as e:
            self._compensate(delta)
            raise PersistenceError(
                f"Entry {entry_id} could not be updated: {e}",
                all_failed=True,
                failures=[str(e)],
            ) from e

        logger.info(
            "Edited entry %s for user %s, balance delta %s",
            entry_id, self.context.user_id, -delta,
        )
        self._record_audit(
            "ENTRY_EDITED",
            f"entry {entry_id} {original.number}: "
            f"{original.first}/{original.second} -> {updated.first}/{updated.second}",
        )
        return updated

    def delete_entry(self, entry_id: int) -> EntrySnapshot:
        """Remove an entry and refund its stake. Returns the removed entry."""
        entry = self.get_entry(entry_id)
        # Refund first; a failed delete takes the refund back
        self._settle(-entry.stake)
        try:
            self.store.delete_entry(entry_id)
        except EntryNotFoundError:
            self._compensate(-entry.stake)
            raise
        except StoreError as e:
            self._compensate(-entry.stake)
            raise PersistenceError(
                f"Entry {entry_id} could not be deleted: {e}",
                all_failed=True,
                failures=[str(e)],
            ) from e

        logger.info(
            "Deleted entry %s for user %s, refunded %s",
            entry_id, self.context.user_id, entry.stake,
        )
        self._record_audit(
            "ENTRY_DELETED",
            f"entry {entry_id} {entry.number} refunded {entry.stake}",
        )
        return entry

    def bulk_delete(self, entry_ids: Iterable[int], *, strict: bool = False) -> BatchResult:
        """
        Delete several entries with a single refund.

        Unknown ids are reported in the result, or, with strict=True,
        raise NotFoundError before anything changes.
        """
        found: list[EntrySnapshot] = []
        errors: list[str] = []
        for entry_id in entry_ids:
            try:
                found.append(self.get_entry(entry_id))
            except NotFoundError:
                errors.append(f"Entry {entry_id} not found")

        if errors and strict:
            raise NotFoundError("; ".join(errors))
        if not found:
            raise NotFoundError("None of the entries exist")

        total = sum((e.stake for e in found), ZERO)
        self._settle(-total)

        deleted: list[EntrySnapshot] = []
        failed: list[EntrySnapshot] = []
        for entry in found:
            try:
                self.store.delete_entry(entry.id)
                deleted.append(entry)
            except StoreError as e:
                failed.append(entry)
                errors.append(f"Entry {entry.id} ({entry.number}): {e}")

        kept = sum((e.stake for e in failed), ZERO)
        if failed:
            self._compensate(-kept)
        if not deleted:
            raise PersistenceError(
                "No entries could be deleted; the balance was restored",
                all_failed=True,
                failures=errors,
            )

        status = BatchStatus.PARTIAL if errors else BatchStatus.COMMITTED
        logger.info(
            "Bulk delete for user %s: %d deleted, %d failed, refunded %s",
            self.context.user_id, len(deleted), len(failed), total - kept,
        )
        self._record_audit(
            "ENTRIES_DELETED",
            f"{len(deleted)} entries, refunded {total - kept}",
        )
        return BatchResult(
            status=status,
            entries=deleted,
            success_count=len(deleted),
            failed_count=len(failed),
            balance_change=total - kept,
            errors=errors,
        )

    def reconcile(self) -> ReconcileReport:
        """
        Retry writes queued while the store was unavailable.

        Writes that now fail for good are refunded.
        """
        if self.pending is None:
            return ReconcileReport()

        report = self.pending.flush(self.store, self.context.user_id)
        refund = sum((item.draft.stake for item in report.dropped), ZERO)
        if refund:
            self._compensate(refund)
        logger.info(
            "Reconciled pending writes for user %s: %d written, %d dropped, %d pending",
            self.context.user_id, len(report.written),
            len(report.dropped), report.still_pending,
        )
        return report
