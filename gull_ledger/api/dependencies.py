"""
Shared request plumbing for the API routers.

The acting identity comes from headers: X-User-Id is whose balance
pays, X-Admin-Id is set when an admin acts for that user. There is no
authentication layer; a gateway in front of the service is expected
to set these.

Undo/redo history and the pending write cache live in this process,
keyed by user and scope.
"""

import threading

from fastapi import Header, HTTPException
from sqlalchemy.orm import Session

from gull_ledger.config import get_settings
from gull_ledger.errors import (
    InsufficientBalanceError,
    LimitExceededError,
    MutationInFlightError,
    NotFoundError,
)
from gull_ledger.schemas.account import ActingContext
from gull_ledger.services.account_service import AccountService
from gull_ledger.services.amount_limits import AmountLimitMap
from gull_ledger.services.history import HistoryStack
from gull_ledger.services.ledger_session import LedgerSession
from gull_ledger.services.transaction_service import TransactionService
from gull_ledger.stores.base import PendingWriteCache
from gull_ledger.stores.sql import SessionPendingWrites, SqlLedgerStore

settings = get_settings()

pending_writes = PendingWriteCache()

_histories: dict[tuple[int, str], HistoryStack] = {}
_histories_guard = threading.Lock()


def get_acting_context(
    x_user_id: int = Header(...),
    x_admin_id: int | None = Header(default=None),
    x_owner_scope: str | None = Header(default=None),
) -> ActingContext:
    return ActingContext(
        user_id=x_user_id,
        admin_user_id=x_admin_id,
        owner_scope=x_owner_scope or settings.DEFAULT_OWNER_SCOPE,
    )


def get_history(context: ActingContext) -> HistoryStack:
    key = (context.user_id, context.owner_scope)
    with _histories_guard:
        history = _histories.get(key)
        if history is None:
            history = HistoryStack(limit=settings.HISTORY_LIMIT)
            _histories[key] = history
        return history


def reset_histories() -> None:
    with _histories_guard:
        _histories.clear()


def build_transaction_service(db: Session, context: ActingContext) -> TransactionService:
    """Wire a TransactionService to the request's session."""
    accounts = AccountService(db)
    accounts.validate_context(context)
    return TransactionService(
        SqlLedgerStore(db),
        accounts.balance_ledger(context.user_id),
        context,
        limits=AmountLimitMap.from_db(db),
        pending=SessionPendingWrites(db, pending_writes) if settings.OFFLINE_FALLBACK else None,
        audit=accounts.audit_sink(context),
    )


def build_ledger_session(db: Session, context: ActingContext) -> LedgerSession:
    return LedgerSession(build_transaction_service(db, context), get_history(context))


def http_error(error: ValueError) -> HTTPException:
    """Map a ledger error to the HTTP status it should produce."""
    if isinstance(error, NotFoundError):
        status = 404
    elif isinstance(error, MutationInFlightError):
        status = 409
    elif isinstance(error, (InsufficientBalanceError, LimitExceededError)):
        status = 422
    else:
        status = 400
    return HTTPException(status_code=status, detail=str(error))
