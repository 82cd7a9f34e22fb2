"""
Filter API endpoints.

Preview shows which numbers a filter matches and what it would
deduct. Apply books the deductions as negative entries.
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
from gull_ledger.models.enums import BatchStatus
from gull_ledger.schemas.account import ActingContext
from gull_ledger.schemas.entry import BatchResult
from gull_ledger.schemas.filter import FilterCriteria, FilterPreview
from gull_ledger.services.aggregation import aggregate, filtered_totals
from gull_ledger.services.filter_service import compute_deductions, evaluate_filter

router = APIRouter(prefix="/filters", tags=["Filters"])


@router.post("/preview", response_model=FilterPreview)
def preview_filter(
    criteria: FilterCriteria,
    context: ActingContext = Depends(get_acting_context),
    db: Session = Depends(get_db),
):
    try:
        entries = build_transaction_service(db, context).list_entries()
    except ValueError as e:
        raise http_error(e)

    summaries = aggregate(entries, criteria.category)
    results = evaluate_filter(summaries, criteria)
    first_total, second_total = filtered_totals(
        {r.number: summaries[r.number] for r in results}
    )
    return FilterPreview(
        results=results,
        deductions=compute_deductions(summaries, criteria),
        first_total=first_total,
        second_total=second_total,
    )


@router.post("/apply", response_model=BatchResult, status_code=201)
def apply_filter(
    criteria: FilterCriteria,
    context: ActingContext = Depends(get_acting_context),
    db: Session = Depends(get_db),
):
    """Deduct everything above the filter's limits."""
    try:
        result = build_ledger_session(db, context).apply_filter(criteria)
        if result.status == BatchStatus.REJECTED:
            raise HTTPException(status_code=400, detail=result.errors)
        db.commit()
        return result
    except ValueError as e:
        db.rollback()
        raise http_error(e)
