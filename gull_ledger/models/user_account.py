"""
User account model.

Holds the single running balance for a user and the "total spent"
statistic. The balance is mutated only through the BalanceLedger.
"""

import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import String, Boolean, DateTime, Numeric, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from gull_ledger.models.base import Base, utc_now


class UserAccount(Base):
    __tablename__ = "app_users"

    id: Mapped[int] = mapped_column(primary_key=True)
    external_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, unique=True, nullable=False, default=uuid.uuid4
    )
    username: Mapped[str] = mapped_column(
        String(100), unique=True, nullable=False
    )
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    is_admin: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    balance: Mapped[Decimal] = mapped_column(
        Numeric(19, 4), nullable=False, default=Decimal("0")
    )
    total_spent: Mapped[Decimal] = mapped_column(
        Numeric(19, 4), nullable=False, default=Decimal("0")
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utc_now, onupdate=utc_now
    )

    entries: Mapped[list["Entry"]] = relationship(
        back_populates="user", foreign_keys="Entry.user_id"
    )

    def __repr__(self) -> str:
        return f"<UserAccount {self.username} balance={self.balance}>"
