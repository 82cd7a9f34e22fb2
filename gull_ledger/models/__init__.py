"""
Database models package.

All models must be imported here so that Alembic can discover
them through Base.metadata when generating migrations.
"""

from gull_ledger.models.base import Base
from gull_ledger.models.enums import (
    Category,
    AmountSide,
    ActionType,
    BatchStatus,
    FilterOperator,
)
from gull_ledger.models.audit_log import AuditLog
from gull_ledger.models.user_account import UserAccount
from gull_ledger.models.entry import Entry
from gull_ledger.models.amount_limit import AmountLimit

__all__ = [
    "Base",
    "Category",
    "AmountSide",
    "ActionType",
    "BatchStatus",
    "FilterOperator",
    "AuditLog",
    "UserAccount",
    "Entry",
    "AmountLimit",
]
