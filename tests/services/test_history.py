"""
Tests for the HistoryStack.
"""

import pytest

from gull_ledger.models.enums import ActionType, Category
from gull_ledger.schemas.entry import EntrySnapshot
from gull_ledger.schemas.history import AddPayload, HistoryAction
from gull_ledger.services.history import HistoryStack


def action(n):
    entry = EntrySnapshot(
        id=n, owner_scope="user-scope", user_id=1, number="12",
        category=Category.AKRA, first=1, second=0,
    )
    return HistoryAction(
        type=ActionType.ADD,
        description=f"action {n}",
        affected_numbers=["12"],
        payload=AddPayload(entry=entry),
    )


class TestHistoryStack:

    def test_empty_stack(self):
        stack = HistoryStack()
        assert not stack.can_undo
        assert not stack.can_redo
        assert stack.peek_undo() is None

    def test_push_advances_cursor(self):
        stack = HistoryStack()
        stack.push(action(1))
        stack.push(action(2))
        assert stack.cursor == 2
        assert stack.can_undo
        assert not stack.can_redo

    def test_undo_then_redo_moves_cursor(self):
        stack = HistoryStack()
        stack.push(action(1))
        stack.mark_undone()
        assert stack.cursor == 0
        assert stack.peek_redo().description == "action 1"
        stack.mark_redone()
        assert stack.cursor == 1

    def test_push_after_undo_discards_redo_tail(self):
        stack = HistoryStack()
        for n in (1, 2, 3):
            stack.push(action(n))
        stack.mark_undone()
        stack.mark_undone()
        stack.push(action(4))
        assert [a.description for a in stack.actions] == ["action 1", "action 4"]
        assert not stack.can_redo

    def test_limit_drops_oldest(self):
        stack = HistoryStack(limit=2)
        for n in (1, 2, 3):
            stack.push(action(n))
        assert [a.description for a in stack.actions] == ["action 2", "action 3"]
        assert stack.cursor == 2

    def test_mark_undone_on_empty_raises(self):
        with pytest.raises(IndexError):
            HistoryStack().mark_undone()

    def test_replace_by_id(self):
        stack = HistoryStack()
        first = action(1)
        stack.push(first)
        stack.replace(first.model_copy(update={"description": "renamed"}))
        assert stack.actions[0].description == "renamed"

    def test_state(self):
        stack = HistoryStack()
        stack.push(action(1))
        state = stack.state()
        assert state.cursor == 1
        assert state.can_undo is True
        assert len(state.actions) == 1

    def test_timestamps_are_timezone_aware(self):
        assert action(1).timestamp.tzinfo is not None
