"""
Amount limit checks.

An admin can cap, per category, how much First and how much Second
any single number may accumulate. A batch is checked as a whole
before the balance is touched: if adding it would push any number
past a cap, nothing is charged and nothing is written.
"""

from collections import defaultdict
from decimal import Decimal
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from gull_ledger.errors import LimitExceededError
from gull_ledger.models.amount_limit import AmountLimit
from gull_ledger.models.enums import AmountSide, Category
from gull_ledger.schemas.account import AmountLimitResponse, AmountLimitUpdate
from gull_ledger.schemas.entry import EntryDraft, split_bulk_number, to_record

ZERO = Decimal("0")


class AmountLimitMap:
    """Caps per category and side. A missing or None cap is unlimited."""

    def __init__(
        self,
        limits: dict[Category, tuple[Decimal | None, Decimal | None]] | None = None,
    ):
        self._limits = {Category(c): v for c, v in (limits or {}).items()}

    @classmethod
    def from_db(cls, db: Session) -> "AmountLimitMap":
        rows = db.execute(select(AmountLimit)).scalars().all()
        return cls({r.category: (r.first_limit, r.second_limit) for r in rows})

    def cap(self, category: Category, side: AmountSide) -> Decimal | None:
        first, second = self._limits.get(Category(category), (None, None))
        return first if side == AmountSide.FIRST else second

    def is_unlimited(self) -> bool:
        return all(f is None and s is None for f, s in self._limits.values())

    def check(self, drafts: Iterable[EntryDraft], existing: Iterable) -> None:
        """
        Raise LimitExceededError if adding drafts to existing breaks a cap.

        existing is the entries already on the ledger (rows, snapshots
        or records). Amounts within the batch are summed per number; a
        legacy bulk draft counts its full amounts against each number.
        """
        drafts = list(drafts)
        if not drafts or self.is_unlimited():
            return

        adding: dict[tuple[Category, str], list[Decimal]] = defaultdict(
            lambda: [ZERO, ZERO]
        )
        for draft in drafts:
            for number in split_bulk_number(draft.number):
                key = (Category(draft.category), number)
                adding[key][0] += draft.first
                adding[key][1] += draft.second

        current: dict[tuple[Category, str], list[Decimal]] = defaultdict(
            lambda: [ZERO, ZERO]
        )
        for entry in existing:
            record = to_record(entry)
            for number in record.numbers:
                key = (record.category, number)
                if key in adding:
                    current[key][0] += record.first
                    current[key][1] += record.second

        for (category, number), (add_first, add_second) in adding.items():
            have_first, have_second = current[(category, number)]
            for side, have, add in (
                (AmountSide.FIRST, have_first, add_first),
                (AmountSide.SECOND, have_second, add_second),
            ):
                cap = self.cap(category, side)
                if cap is None or add <= ZERO:
                    continue
                if have + add > cap:
                    raise LimitExceededError(
                        number=number,
                        side=side.value,
                        cap=cap,
                        current=have,
                        attempted=add,
                    )


# --- Admin configuration ---

def get_limit(db: Session, category: Category) -> AmountLimitResponse:
    row = db.execute(
        select(AmountLimit).where(AmountLimit.category == Category(category))
    ).scalar_one_or_none()
    if not row:
        return AmountLimitResponse(
            category=category, first_limit=None, second_limit=None
        )
    return AmountLimitResponse(
        category=row.category,
        first_limit=row.first_limit,
        second_limit=row.second_limit,
    )


def set_limit(
    db: Session, category: Category, update: AmountLimitUpdate
) -> AmountLimitResponse:
    """Create or replace the caps of a category. The caller commits."""
    row = db.execute(
        select(AmountLimit).where(AmountLimit.category == Category(category))
    ).scalar_one_or_none()
    if not row:
        row = AmountLimit(category=Category(category))
        db.add(row)
    row.first_limit = update.first_limit
    row.second_limit = update.second_limit
    db.flush()
    return AmountLimitResponse(
        category=row.category,
        first_limit=row.first_limit,
        second_limit=row.second_limit,
    )
