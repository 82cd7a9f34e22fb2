"""
Amount limit API endpoints.

Reading a category's caps is open; changing them needs an admin in
X-Admin-Id.
"""

from fastapi import APIRouter, Depends, Header
from sqlalchemy.orm import Session

from gull_ledger.api.dependencies import http_error
from gull_ledger.errors import ValidationError
from gull_ledger.models.base import get_db
from gull_ledger.models.enums import Category
from gull_ledger.schemas.account import AmountLimitResponse, AmountLimitUpdate
from gull_ledger.services.account_service import AccountService
from gull_ledger.services.amount_limits import get_limit, set_limit

router = APIRouter(prefix="/limits", tags=["Limits"])


@router.get("/{category}", response_model=AmountLimitResponse)
def read_limit(category: Category, db: Session = Depends(get_db)):
    return get_limit(db, category)


@router.put("/{category}", response_model=AmountLimitResponse)
def update_limit(
    category: Category,
    request: AmountLimitUpdate,
    x_admin_id: int = Header(...),
    db: Session = Depends(get_db),
):
    """Set or clear (null) the First/Second caps of a category."""
    accounts = AccountService(db)
    try:
        admin = accounts.get_user(x_admin_id)
        if not admin.is_admin:
            raise ValidationError("Only an admin can change amount limits")
        limit = set_limit(db, category, request)
        accounts.record_audit(
            "AMOUNT_LIMIT_CHANGED",
            actor_user_id=admin.id,
            subject_user_id=None,
            details={
                "category": category.value,
                "first_limit": None if limit.first_limit is None else str(limit.first_limit),
                "second_limit": None if limit.second_limit is None else str(limit.second_limit),
            },
        )
        db.commit()
        return limit
    except ValueError as e:
        db.rollback()
        raise http_error(e)
