"""
Pydantic schemas for entries, parsed input and batch results.

The ledger record variant (SingleNumberEntry | BulkNumberEntry) is
the read model used by aggregation: a legacy row whose number column
holds several numbers is split once, here, instead of being
re-parsed by every consumer.
"""

import re
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field

from gull_ledger.models.enums import BatchStatus, Category

BULK_SEPARATOR = re.compile(r"[,\s]+")

ZERO = Decimal("0")


# --- Write models ---

class EntryDraft(BaseModel):
    """An entry that has not been persisted yet."""
    number: str = Field(min_length=1, max_length=32)
    category: Category
    first: Decimal = ZERO
    second: Decimal = ZERO
    notes: str | None = Field(default=None, max_length=500)
    is_deduction: bool = False

    @property
    def stake(self) -> Decimal:
        return self.first + self.second


class EntryUpdate(BaseModel):
    """Patch for an existing entry. Omitted fields keep their value."""
    number: str | None = Field(default=None, min_length=1, max_length=32)
    category: Category | None = None
    first: Decimal | None = None
    second: Decimal | None = None
    notes: str | None = Field(default=None, max_length=500)


class EntrySnapshot(BaseModel):
    """A persisted entry, as returned by the API and kept in history."""
    id: int
    owner_scope: str
    user_id: int
    admin_user_id: int | None = None
    number: str
    category: Category
    first: Decimal
    second: Decimal
    notes: str | None = None
    is_deduction: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None

    model_config = {"from_attributes": True}

    @property
    def stake(self) -> Decimal:
        return self.first + self.second

    def to_draft(self) -> EntryDraft:
        return EntryDraft(
            number=self.number,
            category=self.category,
            first=self.first,
            second=self.second,
            notes=self.notes,
            is_deduction=self.is_deduction,
        )


# --- Read model for aggregation ---

class _RecordBase(BaseModel):
    id: int | None = None
    category: Category
    first: Decimal = ZERO
    second: Decimal = ZERO
    is_deduction: bool = False
    created_at: datetime | None = None


class SingleNumberEntry(_RecordBase):
    kind: Literal["single"] = "single"
    number: str

    @property
    def numbers(self) -> list[str]:
        return [self.number]


class BulkNumberEntry(_RecordBase):
    """Legacy row whose number field encoded several numbers."""
    kind: Literal["bulk"] = "bulk"
    numbers: list[str]


LedgerRecord = Annotated[
    Union[SingleNumberEntry, BulkNumberEntry],
    Field(discriminator="kind"),
]


def split_bulk_number(value: str) -> list[str]:
    """Split a legacy bulk number field into its numbers."""
    return [n for n in BULK_SEPARATOR.split(value.strip()) if n]


def is_bulk_number(value: str) -> bool:
    return "," in value or " " in value.strip()


def to_record(entry) -> SingleNumberEntry | BulkNumberEntry:
    """
    Convert an Entry row (or snapshot) to its ledger record variant.

    Records pass through unchanged.
    """
    if isinstance(entry, (SingleNumberEntry, BulkNumberEntry)):
        return entry

    common = dict(
        id=entry.id,
        category=entry.category,
        first=entry.first or ZERO,
        second=entry.second or ZERO,
        is_deduction=bool(entry.is_deduction),
        created_at=entry.created_at,
    )
    if is_bulk_number(entry.number):
        return BulkNumberEntry(numbers=split_bulk_number(entry.number), **common)
    return SingleNumberEntry(number=entry.number, **common)


class NumberSummary(BaseModel):
    """Aggregate of every contribution to one number within a category."""
    number: str
    first_total: Decimal = ZERO
    second_total: Decimal = ZERO
    entry_count: int = 0
    entries: list[LedgerRecord] = Field(default_factory=list)

    @property
    def total(self) -> Decimal:
        return self.first_total + self.second_total


class LedgerStatistics(BaseModel):
    total_entries: int
    entries_by_category: dict[Category, int]
    first_total: Decimal
    second_total: Decimal
    unique_numbers: int


# --- Parser output ---

class ParsedEntry(BaseModel):
    number: str
    first: Decimal
    second: Decimal
    category: Category
    line: int

    def to_draft(self, notes: str | None = None) -> EntryDraft:
        return EntryDraft(
            number=self.number,
            category=self.category,
            first=self.first,
            second=self.second,
            notes=notes,
        )


class ParseResult(BaseModel):
    entries: list[ParsedEntry] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)


# --- API requests / results ---

class TextSubmission(BaseModel):
    """Free-text entry block, with optional form-field amounts."""
    text: str = Field(min_length=1)
    category: Category | None = None
    first: Decimal | None = None
    second: Decimal | None = None
    notes: str | None = Field(default=None, max_length=500)


class BatchSubmission(BaseModel):
    entries: list[EntryDraft] = Field(min_length=1)


class BulkDeleteRequest(BaseModel):
    entry_ids: list[int] = Field(min_length=1)


class QueuedDraft(BaseModel):
    """A paid-for entry waiting in the pending write cache."""
    pending_id: uuid.UUID
    draft: EntryDraft


class BatchResult(BaseModel):
    """Outcome of one batch passing through the transaction service."""
    status: BatchStatus
    entries: list[EntrySnapshot] = Field(default_factory=list)
    success_count: int = 0
    failed_count: int = 0
    queued_count: int = 0
    queued: list[QueuedDraft] = Field(default_factory=list)
    balance_change: Decimal = ZERO
    errors: list[str] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status in (BatchStatus.COMMITTED, BatchStatus.PARTIAL)
