"""
Amount limit model.

Per-category caps on the cumulative First and Second totals of any
single number. NULL means unlimited.
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, Numeric, Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column

from gull_ledger.models.base import Base, utc_now
from gull_ledger.models.enums import Category


class AmountLimit(Base):
    __tablename__ = "amount_limits"

    id: Mapped[int] = mapped_column(primary_key=True)
    category: Mapped[Category] = mapped_column(
        SAEnum(
            Category,
            name="limit_category_enum",
            values_callable=lambda e: [c.value for c in e],
        ),
        unique=True,
        nullable=False,
    )
    first_limit: Mapped[Decimal | None] = mapped_column(
        Numeric(19, 4), nullable=True
    )
    second_limit: Mapped[Decimal | None] = mapped_column(
        Numeric(19, 4), nullable=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utc_now, onupdate=utc_now
    )

    def __repr__(self) -> str:
        return (
            f"<AmountLimit {self.category.value} "
            f"F={self.first_limit} S={self.second_limit}>"
        )
