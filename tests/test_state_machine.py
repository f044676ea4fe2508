"""Tests for task status transition validation."""
from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest
from auction_core.models import TaskStatus
from auction_core.state_machine import (
    OVERDUE,
    STATUS_SORT_ORDER,
    StateTransitionError,
    display_status,
    get_allowed_transitions,
    is_overdue,
    is_transition_valid,
    validate_transition,
)


class TestStateTransitions:
    """Test state machine transition validation."""

    def test_valid_forward_transitions(self):
        """Test that the forward path through the board is allowed."""
        # Backlog → In Progress (auction won)
        assert is_transition_valid(TaskStatus.BACKLOG, TaskStatus.IN_PROGRESS)
        validate_transition(TaskStatus.BACKLOG, TaskStatus.IN_PROGRESS)  # Should not raise

        # In Progress → Under Review
        assert is_transition_valid(TaskStatus.IN_PROGRESS, TaskStatus.UNDER_REVIEW)
        validate_transition(TaskStatus.IN_PROGRESS, TaskStatus.UNDER_REVIEW)

        # Under Review → Done
        assert is_transition_valid(TaskStatus.UNDER_REVIEW, TaskStatus.DONE)
        validate_transition(TaskStatus.UNDER_REVIEW, TaskStatus.DONE)

    def test_valid_back_transitions(self):
        """Test that rework and withdrawal are allowed."""
        # Under Review → In Progress (rework)
        assert is_transition_valid(TaskStatus.UNDER_REVIEW, TaskStatus.IN_PROGRESS)
        validate_transition(TaskStatus.UNDER_REVIEW, TaskStatus.IN_PROGRESS)

        # In Progress → Backlog (withdrawn)
        assert is_transition_valid(TaskStatus.IN_PROGRESS, TaskStatus.BACKLOG)
        validate_transition(TaskStatus.IN_PROGRESS, TaskStatus.BACKLOG)

    def test_noop_transitions_rejected(self):
        """Test that staying in the same status is not a transition."""
        for status in TaskStatus:
            assert not is_transition_valid(status, status)

            with pytest.raises(StateTransitionError) as exc_info:
                validate_transition(status, status)

            assert "already" in str(exc_info.value).lower()

    def test_invalid_skip_review_transition(self):
        """Test that skipping review (In Progress → Done) is blocked."""
        assert not is_transition_valid(TaskStatus.IN_PROGRESS, TaskStatus.DONE)

        with pytest.raises(StateTransitionError) as exc_info:
            validate_transition(TaskStatus.IN_PROGRESS, TaskStatus.DONE)

        error = exc_info.value
        assert error.current_status == TaskStatus.IN_PROGRESS
        assert error.requested_status == TaskStatus.DONE
        assert "must be reviewed" in str(error).lower()

    def test_invalid_backlog_jumps(self):
        """Test that backlog tasks cannot jump to review or done."""
        for target_status in [TaskStatus.UNDER_REVIEW, TaskStatus.DONE]:
            assert not is_transition_valid(TaskStatus.BACKLOG, target_status)

            with pytest.raises(StateTransitionError):
                validate_transition(TaskStatus.BACKLOG, target_status)

    def test_done_is_immutable(self):
        """Test that done status cannot be changed."""
        for status in TaskStatus:
            if status != TaskStatus.DONE:
                assert not is_transition_valid(TaskStatus.DONE, status)

                with pytest.raises(StateTransitionError) as exc_info:
                    validate_transition(TaskStatus.DONE, status)

                assert "immutable" in str(exc_info.value).lower()

    def test_get_allowed_transitions(self):
        """Test getting allowed transitions from each state."""
        assert get_allowed_transitions(TaskStatus.BACKLOG) == [TaskStatus.IN_PROGRESS]

        allowed = get_allowed_transitions(TaskStatus.IN_PROGRESS)
        assert set(allowed) == {TaskStatus.UNDER_REVIEW, TaskStatus.BACKLOG}

        allowed = get_allowed_transitions(TaskStatus.UNDER_REVIEW)
        assert set(allowed) == {TaskStatus.DONE, TaskStatus.IN_PROGRESS}

        assert get_allowed_transitions(TaskStatus.DONE) == []

    def test_state_transition_error_attributes(self):
        """Test that StateTransitionError contains all required attributes."""
        with pytest.raises(StateTransitionError) as exc_info:
            validate_transition(TaskStatus.BACKLOG, TaskStatus.DONE)

        error = exc_info.value
        assert error.current_status == TaskStatus.BACKLOG
        assert error.requested_status == TaskStatus.DONE
        assert error.allowed_transitions == [TaskStatus.IN_PROGRESS]
        assert str(error).startswith("Invalid transition:")


class TestDisplayStatus:
    """Test the derived overdue presentation state."""

    NOW = datetime(2026, 3, 1, 12, 0)

    def _task(self, status, deadline):
        return SimpleNamespace(status=status, deadline=deadline)

    def test_past_deadline_shows_overdue(self):
        """Test that an unfinished task past its deadline displays as overdue."""
        task = self._task(TaskStatus.IN_PROGRESS, self.NOW - timedelta(hours=1))
        assert is_overdue(task, self.NOW)
        assert display_status(task, self.NOW) == OVERDUE

    def test_done_task_never_overdue(self):
        """Test that done tasks keep their status after the deadline."""
        task = self._task(TaskStatus.DONE, self.NOW - timedelta(days=3))
        assert not is_overdue(task, self.NOW)
        assert display_status(task, self.NOW) == "done"

    def test_no_deadline(self):
        """Test that tasks without a deadline are never overdue."""
        task = self._task(TaskStatus.BACKLOG, None)
        assert display_status(task, self.NOW) == "backlog"

    def test_overdue_is_not_a_stored_status(self):
        """Test that overdue is never part of the transition matrix."""
        assert OVERDUE not in [s.value for s in TaskStatus]

    def test_board_sort_order(self):
        """Test that in-progress work sorts first and done last."""
        ordered = sorted(TaskStatus, key=STATUS_SORT_ORDER.get)
        assert ordered[0] == TaskStatus.IN_PROGRESS
        assert ordered[-1] == TaskStatus.DONE


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
