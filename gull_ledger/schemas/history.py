"""
Pydantic schemas for undo/redo history actions.

Each payload holds enough to replay the action in either direction
without looking at current state.
"""

import uuid
from datetime import datetime, timezone
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field

from gull_ledger.models.enums import ActionType
from gull_ledger.schemas.entry import EntrySnapshot, QueuedDraft
from gull_ledger.schemas.filter import FilterCriteria


class AddPayload(BaseModel):
    kind: Literal["add"] = "add"
    entry: EntrySnapshot


class DeletePayload(BaseModel):
    kind: Literal["delete"] = "delete"
    entry: EntrySnapshot


class EditPayload(BaseModel):
    kind: Literal["edit"] = "edit"
    entry_id: int
    original: EntrySnapshot
    updated: EntrySnapshot


class BatchPayload(BaseModel):
    kind: Literal["batch"] = "batch"
    entries: list[EntrySnapshot]
    # Accepted while the store was unavailable; ids come on reconcile
    queued: list[QueuedDraft] = Field(default_factory=list)


class FilterPayload(BaseModel):
    kind: Literal["filter"] = "filter"
    entries: list[EntrySnapshot]
    queued: list[QueuedDraft] = Field(default_factory=list)
    criteria: FilterCriteria | None = None


ActionPayload = Annotated[
    Union[AddPayload, DeletePayload, EditPayload, BatchPayload, FilterPayload],
    Field(discriminator="kind"),
]


class HistoryAction(BaseModel):
    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    type: ActionType
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    description: str
    affected_numbers: list[str] = Field(default_factory=list)
    payload: ActionPayload


class HistoryState(BaseModel):
    actions: list[HistoryAction]
    cursor: int
    can_undo: bool
    can_redo: bool
