"""
Ledger entry model.

One row per stake against one number. Older rows may hold several
numbers in the number column (space or comma separated); those are
read as bulk records by the aggregation engine and are never written
by current code.
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    String, Boolean, DateTime, Numeric, ForeignKey,
    Enum as SAEnum,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from gull_ledger.models.base import Base, utc_now
from gull_ledger.models.enums import Category


class Entry(Base):
    """
    A stake (or, with negative amounts, a deduction) on one number.

    Invariant: len(number) equals the width of category. The
    TransactionService is the only writer.
    """

    __tablename__ = "entries"

    id: Mapped[int] = mapped_column(primary_key=True)
    owner_scope: Mapped[str] = mapped_column(
        String(100), nullable=False, index=True
    )
    user_id: Mapped[int] = mapped_column(
        ForeignKey("app_users.id"), nullable=False, index=True
    )
    # Set when an admin created or changed the entry while
    # impersonating the user
    admin_user_id: Mapped[int | None] = mapped_column(
        ForeignKey("app_users.id"), nullable=True
    )
    number: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    category: Mapped[Category] = mapped_column(
        SAEnum(
            Category,
            name="category_enum",
            values_callable=lambda e: [c.value for c in e],
            create_constraint=True,
        ),
        nullable=False,
    )
    first: Mapped[Decimal] = mapped_column(
        Numeric(19, 4), nullable=False, default=Decimal("0")
    )
    second: Mapped[Decimal] = mapped_column(
        Numeric(19, 4), nullable=False, default=Decimal("0")
    )
    notes: Mapped[str | None] = mapped_column(String(500), nullable=True)
    is_deduction: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utc_now, onupdate=utc_now
    )

    user: Mapped["UserAccount"] = relationship(
        back_populates="entries", foreign_keys=[user_id]
    )

    @property
    def stake(self) -> Decimal:
        """Net stake of the entry, i.e. what it costs the balance."""
        return (self.first or Decimal("0")) + (self.second or Decimal("0"))

    def __repr__(self) -> str:
        return (
            f"<Entry {self.category.value} {self.number} "
            f"F={self.first} S={self.second}>"
        )
