"""
Shared enumerations for models and schemas.

Using Python enums mapped to database enums ensures that
only valid values can be stored.
"""

import enum


class Category(str, enum.Enum):
    """Entry category, determined by the fixed digit width of the number."""
    OPEN = "open"
    AKRA = "akra"
    RING = "ring"
    PACKET = "packet"


class AmountSide(str, enum.Enum):
    """The two independent stake legs of an entry."""
    FIRST = "First"
    SECOND = "Second"


class ActionType(str, enum.Enum):
    """Kinds of reversible action kept in the undo/redo history."""
    ADD = "add"
    EDIT = "edit"
    DELETE = "delete"
    BATCH = "batch"
    FILTER = "filter"


class BatchStatus(str, enum.Enum):
    """Terminal state of a submitted batch."""
    COMMITTED = "COMMITTED"
    PARTIAL = "PARTIAL"
    REJECTED = "REJECTED"
    ROLLED_BACK = "ROLLED_BACK"


class FilterOperator(str, enum.Enum):
    GTE = ">="
    GT = ">"
    LTE = "<="
    LT = "<"
    EQ = "=="
