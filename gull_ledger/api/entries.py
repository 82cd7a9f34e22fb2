"""
Entry API endpoints.

Mutations go through a LedgerSession so they land in the undo/redo
history. The router only translates errors and commits.
"""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from gull_ledger.api.dependencies import (
    build_ledger_session,
    build_transaction_service,
    get_acting_context,
    http_error,
)
from gull_ledger.models.base import get_db
from gull_ledger.models.enums import AmountSide, BatchStatus, Category
from gull_ledger.schemas.account import ActingContext
from gull_ledger.schemas.entry import (
    BatchResult,
    BatchSubmission,
    BulkDeleteRequest,
    EntrySnapshot,
    EntryUpdate,
    LedgerStatistics,
    NumberSummary,
    ParseResult,
    TextSubmission,
)
from gull_ledger.services import aggregation
from gull_ledger.services.entry_parser import parse
from gull_ledger.stores.base import ReconcileReport

router = APIRouter(prefix="/entries", tags=["Entries"])


@router.post("/parse", response_model=ParseResult)
def parse_preview(request: TextSubmission):
    """Parse text without charging or saving anything."""
    return parse(
        request.text,
        request.category,
        default_first=request.first,
        default_second=request.second,
    )


@router.post("/submit", response_model=BatchResult, status_code=201)
def submit_text(
    request: TextSubmission,
    context: ActingContext = Depends(get_acting_context),
    db: Session = Depends(get_db),
):
    """Parse a block of text and commit the entries in one batch."""
    try:
        session = build_ledger_session(db, context)
        result = session.submit_text(
            request.text,
            request.category,
            request.first,
            request.second,
            request.notes,
        )
        if result.status == BatchStatus.REJECTED:
            raise HTTPException(status_code=400, detail=result.errors)
        db.commit()
        return result
    except ValueError as e:
        db.rollback()
        raise http_error(e)


@router.post("/batch", response_model=BatchResult, status_code=201)
def submit_batch(
    request: BatchSubmission,
    context: ActingContext = Depends(get_acting_context),
    db: Session = Depends(get_db),
):
    """Commit already structured entries in one batch."""
    try:
        result = build_ledger_session(db, context).add_entries(request.entries)
        if result.status == BatchStatus.REJECTED:
            raise HTTPException(status_code=400, detail=result.errors)
        db.commit()
        return result
    except ValueError as e:
        db.rollback()
        raise http_error(e)


@router.get("", response_model=list[EntrySnapshot])
def list_entries(
    category: Category | None = None,
    context: ActingContext = Depends(get_acting_context),
    db: Session = Depends(get_db),
):
    """List the acting user's entries, newest first."""
    try:
        entries = build_transaction_service(db, context).list_entries()
    except ValueError as e:
        raise http_error(e)
    if category is not None:
        entries = [e for e in entries if e.category == category]
    return entries


@router.get("/summaries", response_model=list[NumberSummary])
def list_summaries(
    category: Category,
    search: str | None = None,
    side: AmountSide | None = None,
    context: ActingContext = Depends(get_acting_context),
    db: Session = Depends(get_db),
):
    """
    Per-number totals for one category, sorted by number.

    search narrows the numbers ("1**", "starts:12", "ends:5", ...);
    side keeps only numbers holding a stake on that side.
    """
    try:
        entries = build_transaction_service(db, context).list_entries()
    except ValueError as e:
        raise http_error(e)
    summaries = aggregation.aggregate(entries, category)
    if search or side:
        return aggregation.search_numbers(summaries, search or "starts:", side)
    return [summaries[n] for n in sorted(summaries)]


@router.get("/statistics", response_model=LedgerStatistics)
def get_statistics(
    context: ActingContext = Depends(get_acting_context),
    db: Session = Depends(get_db),
):
    try:
        entries = build_transaction_service(db, context).list_entries()
    except ValueError as e:
        raise http_error(e)
    return aggregation.statistics(entries)


@router.post("/bulk-delete", response_model=BatchResult)
def bulk_delete(
    request: BulkDeleteRequest,
    context: ActingContext = Depends(get_acting_context),
    db: Session = Depends(get_db),
):
    """Delete several entries with one refund. Not recorded for undo."""
    try:
        result = build_transaction_service(db, context).bulk_delete(request.entry_ids)
        db.commit()
        return result
    except ValueError as e:
        db.rollback()
        raise http_error(e)


@router.post("/reconcile", response_model=ReconcileReport)
def reconcile(
    context: ActingContext = Depends(get_acting_context),
    db: Session = Depends(get_db),
):
    """Retry entries queued while the database was unreachable."""
    try:
        report = build_transaction_service(db, context).reconcile()
        db.commit()
        return report
    except ValueError as e:
        db.rollback()
        raise http_error(e)


@router.get("/{entry_id}", response_model=EntrySnapshot)
def get_entry(
    entry_id: int,
    context: ActingContext = Depends(get_acting_context),
    db: Session = Depends(get_db),
):
    try:
        return build_transaction_service(db, context).get_entry(entry_id)
    except ValueError as e:
        raise http_error(e)


@router.patch("/{entry_id}", response_model=EntrySnapshot)
def edit_entry(
    entry_id: int,
    request: EntryUpdate,
    context: ActingContext = Depends(get_acting_context),
    db: Session = Depends(get_db),
):
    """Change an entry; the stake difference is charged or refunded."""
    try:
        entry = build_ledger_session(db, context).edit_entry(entry_id, request)
        db.commit()
        return entry
    except ValueError as e:
        db.rollback()
        raise http_error(e)


@router.delete("/{entry_id}", response_model=EntrySnapshot)
def delete_entry(
    entry_id: int,
    context: ActingContext = Depends(get_acting_context),
    db: Session = Depends(get_db),
):
    """Delete an entry and refund its stake."""
    try:
        entry = build_ledger_session(db, context).delete_entry(entry_id)
        db.commit()
        return entry
    except ValueError as e:
        db.rollback()
        raise http_error(e)
