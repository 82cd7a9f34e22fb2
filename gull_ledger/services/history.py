"""
Undo/redo history stack.

A linear list of actions with a cursor. The cursor points one past
the last applied action: undo steps it back, redo steps it forward,
and pushing a new action discards everything after it.

The stack only stores actions. Replaying them against the ledger is
LedgerSession's job.
"""

import threading

from gull_ledger.schemas.history import HistoryAction, HistoryState


class HistoryStack:

    def __init__(self, limit: int = 100):
        if limit < 1:
            raise ValueError("History limit must be at least 1")
        self.limit = limit
        self._actions: list[HistoryAction] = []
        self._cursor = 0
        # Held by LedgerSession for the duration of a mutation or replay
        self.lock = threading.Lock()

    @property
    def actions(self) -> list[HistoryAction]:
        return list(self._actions)

    @property
    def cursor(self) -> int:
        return self._cursor

    @property
    def can_undo(self) -> bool:
        return self._cursor > 0

    @property
    def can_redo(self) -> bool:
        return self._cursor < len(self._actions)

    def push(self, action: HistoryAction) -> None:
        del self._actions[self._cursor:]
        self._actions.append(action)
        # Oldest actions fall off the bottom
        overflow = len(self._actions) - self.limit
        if overflow > 0:
            del self._actions[:overflow]
        self._cursor = len(self._actions)

    def peek_undo(self) -> HistoryAction | None:
        return self._actions[self._cursor - 1] if self.can_undo else None

    def peek_redo(self) -> HistoryAction | None:
        return self._actions[self._cursor] if self.can_redo else None

    def mark_undone(self) -> None:
        if not self.can_undo:
            raise IndexError("Nothing to undo")
        self._cursor -= 1

    def mark_redone(self) -> None:
        if not self.can_redo:
            raise IndexError("Nothing to redo")
        self._cursor += 1

    def replace(self, action: HistoryAction) -> None:
        """Swap in an updated copy of an action (matched by id)."""
        for i, existing in enumerate(self._actions):
            if existing.id == action.id:
                self._actions[i] = action
                return
        raise KeyError(f"Action {action.id} is not in the history")

    def clear(self) -> None:
        self._actions.clear()
        self._cursor = 0

    def state(self) -> HistoryState:
        return HistoryState(
            actions=self.actions,
            cursor=self._cursor,
            can_undo=self.can_undo,
            can_redo=self.can_redo,
        )
