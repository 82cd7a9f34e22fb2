"""
User and balance API endpoints.
"""

from fastapi import APIRouter, Depends, Header
from sqlalchemy.orm import Session

from gull_ledger.api.dependencies import http_error
from gull_ledger.models.base import get_db
from gull_ledger.schemas.account import (
    BalanceResponse,
    TopUpRequest,
    UserCreate,
    UserResponse,
)
from gull_ledger.services.account_service import AccountService

router = APIRouter(prefix="/users", tags=["Users"])


@router.post("", response_model=UserResponse, status_code=201)
def create_user(
    request: UserCreate,
    db: Session = Depends(get_db),
):
    """Create a user with an opening balance."""
    service = AccountService(db)
    try:
        user = service.create_user(request)
        db.commit()
        return user
    except ValueError as e:
        db.rollback()
        raise http_error(e)


@router.get("", response_model=list[UserResponse])
def list_users(db: Session = Depends(get_db)):
    return AccountService(db).list_users()


@router.get("/{user_id}", response_model=UserResponse)
def get_user(user_id: int, db: Session = Depends(get_db)):
    try:
        return AccountService(db).get_user(user_id)
    except ValueError as e:
        raise http_error(e)


@router.get("/{user_id}/balance", response_model=BalanceResponse)
def get_balance(user_id: int, db: Session = Depends(get_db)):
    try:
        return AccountService(db).get_balance(user_id)
    except ValueError as e:
        raise http_error(e)


@router.post("/{user_id}/top-up", response_model=BalanceResponse)
def top_up(
    user_id: int,
    request: TopUpRequest,
    x_admin_id: int | None = Header(default=None),
    db: Session = Depends(get_db),
):
    """Credit a user's balance. Topping up someone else needs an admin."""
    service = AccountService(db)
    try:
        balance = service.top_up(user_id, request.amount, admin_user_id=x_admin_id)
        db.commit()
        return balance
    except ValueError as e:
        db.rollback()
        raise http_error(e)
