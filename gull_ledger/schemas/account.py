"""
Pydantic schemas for users, balances, amount limits and the acting
identity.
"""

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from gull_ledger.models.enums import Category


class ActingContext(BaseModel):
    """
    Who is acting, and whose balance pays.

    user_id is the balance owner. admin_user_id is set when an admin
    acts through impersonation; the action is attributed to the admin
    while the user's balance is charged or credited.
    """
    user_id: int
    admin_user_id: int | None = None
    owner_scope: str = "user-scope"

    @property
    def is_impersonating(self) -> bool:
        return self.admin_user_id is not None and self.admin_user_id != self.user_id


# --- User Schemas ---

class UserCreate(BaseModel):
    username: str = Field(min_length=1, max_length=100)
    email: str = Field(min_length=3, max_length=255)
    is_admin: bool = False
    balance: Decimal = Field(default=Decimal("0"), ge=0)


class UserResponse(BaseModel):
    id: int
    external_id: uuid.UUID
    username: str
    email: str
    is_admin: bool
    balance: Decimal
    total_spent: Decimal
    created_at: datetime

    model_config = {"from_attributes": True}


class BalanceResponse(BaseModel):
    user_id: int
    balance: Decimal
    total_spent: Decimal


class TopUpRequest(BaseModel):
    amount: Decimal = Field(gt=0)


# --- Amount Limit Schemas ---

class AmountLimitUpdate(BaseModel):
    """None clears the cap (unlimited)."""
    first_limit: Decimal | None = Field(default=None, ge=0)
    second_limit: Decimal | None = Field(default=None, ge=0)


class AmountLimitResponse(BaseModel):
    category: Category
    first_limit: Decimal | None
    second_limit: Decimal | None
