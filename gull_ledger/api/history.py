"""
Undo/redo API endpoints.

History is per user and scope and lives in this process only.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from gull_ledger.api.dependencies import (
    build_ledger_session,
    get_acting_context,
    get_history,
    http_error,
)
from gull_ledger.models.base import get_db
from gull_ledger.schemas.account import ActingContext
from gull_ledger.schemas.history import HistoryState

router = APIRouter(prefix="/history", tags=["History"])


@router.get("", response_model=HistoryState)
def get_history_state(context: ActingContext = Depends(get_acting_context)):
    return get_history(context).state()


@router.post("/undo", response_model=HistoryState)
def undo(
    context: ActingContext = Depends(get_acting_context),
    db: Session = Depends(get_db),
):
    """Reverse the last action, including its balance effect."""
    try:
        session = build_ledger_session(db, context)
        session.undo()
        db.commit()
        return session.history.state()
    except ValueError as e:
        db.rollback()
        raise http_error(e)


@router.post("/redo", response_model=HistoryState)
def redo(
    context: ActingContext = Depends(get_acting_context),
    db: Session = Depends(get_db),
):
    """Apply the last undone action again."""
    try:
        session = build_ledger_session(db, context)
        session.redo()
        db.commit()
        return session.history.state()
    except ValueError as e:
        db.rollback()
        raise http_error(e)
