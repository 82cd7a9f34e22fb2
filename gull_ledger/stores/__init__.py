"""Persistence backends for entries and balances."""

from gull_ledger.stores.base import (
    LedgerStore,
    BalanceStore,
    PersistOutcome,
    PendingQueue,
    PendingWriteCache,
)
from gull_ledger.stores.sql import SqlLedgerStore, SqlBalanceStore, SessionPendingWrites
from gull_ledger.stores.memory import InMemoryLedgerStore, InMemoryBalanceStore

__all__ = [
    "LedgerStore",
    "BalanceStore",
    "PersistOutcome",
    "PendingQueue",
    "PendingWriteCache",
    "SqlLedgerStore",
    "SqlBalanceStore",
    "SessionPendingWrites",
    "InMemoryLedgerStore",
    "InMemoryBalanceStore",
]
