"""State machine validation for task status transitions.

Enforces the Kanban workflow as an explicit allow-list of edges:
- backlog → in_progress (auction won, or assigned)
- in_progress → under_review (work submitted)
- under_review → done (accepted)
- under_review → in_progress (rework)
- in_progress → backlog (withdrawal / reassignment)

Every other edge, including staying in the same status, is rejected.
OVERDUE is a display state derived from the deadline, never a stored status.
"""
import logging
from datetime import datetime
from typing import Optional

from .models import TaskStatus

logger = logging.getLogger("auction-core.state_machine")

OVERDUE = "overdue"


class StateTransitionError(Exception):
    """Raised when an invalid state transition is attempted."""

    def __init__(
        self,
        message: str,
        current_status: TaskStatus,
        requested_status: TaskStatus,
        allowed_transitions: list[TaskStatus]
    ):
        super().__init__(message)
        self.current_status = current_status
        self.requested_status = requested_status
        self.allowed_transitions = allowed_transitions


# State machine transition matrix
# Maps current status → list of allowed next statuses
TRANSITION_MATRIX: dict[TaskStatus, list[TaskStatus]] = {
    TaskStatus.BACKLOG: [
        TaskStatus.IN_PROGRESS,     # Forward: auction closed with a winner
    ],
    TaskStatus.IN_PROGRESS: [
        TaskStatus.UNDER_REVIEW,    # Forward: submitted for review
        TaskStatus.BACKLOG,         # Back: withdrawn for reassignment
    ],
    TaskStatus.UNDER_REVIEW: [
        TaskStatus.DONE,            # Forward: accepted
        TaskStatus.IN_PROGRESS,     # Back: rework requested
    ],
    TaskStatus.DONE: [
        # Terminal: completed tasks are immutable records
    ],
}


def is_transition_valid(
    current_status: TaskStatus,
    new_status: TaskStatus
) -> bool:
    """
    Check if a status transition is valid.

    Args:
        current_status: Current task status
        new_status: Requested new task status

    Returns:
        True if transition is allowed, False otherwise
    """
    allowed_transitions = TRANSITION_MATRIX.get(current_status, [])
    return new_status in allowed_transitions


def validate_transition(
    current_status: TaskStatus,
    new_status: TaskStatus
) -> None:
    """
    Validate a status transition and raise exception if invalid.

    Args:
        current_status: Current task status
        new_status: Requested new task status

    Raises:
        StateTransitionError: If the transition is not allowed
    """
    if not is_transition_valid(current_status, new_status):
        allowed_transitions = TRANSITION_MATRIX.get(current_status, [])
        allowed_names = [s.value for s in allowed_transitions]

        error_msg = f"Invalid transition: {current_status.value} → {new_status.value}."
        if allowed_names:
            error_msg += f" From {current_status.value}, you can only transition to: {', '.join(allowed_names)}."

        # Add helpful guidance based on the attempted transition
        if current_status == new_status:
            error_msg += f" Task is already {current_status.value}."
        elif current_status == TaskStatus.BACKLOG and new_status in (TaskStatus.UNDER_REVIEW, TaskStatus.DONE):
            error_msg += " Backlog tasks must be taken into work first."
        elif current_status == TaskStatus.IN_PROGRESS and new_status == TaskStatus.DONE:
            error_msg += " Work must be reviewed before it is done."
        elif current_status == TaskStatus.DONE:
            error_msg += " Done tasks are immutable."

        logger.warning(f"Blocked transition: {error_msg}")
        raise StateTransitionError(
            message=error_msg,
            current_status=current_status,
            requested_status=new_status,
            allowed_transitions=list(allowed_transitions)
        )

    logger.debug(f"Valid transition: {current_status.value} → {new_status.value}")


def get_allowed_transitions(current_status: TaskStatus) -> list[TaskStatus]:
    """
    Get list of allowed transitions from current status.

    Args:
        current_status: Current task status

    Returns:
        List of allowed next statuses
    """
    return list(TRANSITION_MATRIX.get(current_status, []))


def is_overdue(task, now: Optional[datetime] = None) -> bool:
    """True if the task's deadline has passed and it is not done."""
    now = now or datetime.utcnow()
    return (
        task.deadline is not None
        and task.deadline < now
        and task.status != TaskStatus.DONE
    )


def display_status(task, now: Optional[datetime] = None) -> str:
    """Status shown on the board: the stored status, or 'overdue'."""
    if is_overdue(task, now):
        return OVERDUE
    return TaskStatus(task.status).value


# Status sort order for board listings
# Lower number = higher priority (shown first)
STATUS_SORT_ORDER: dict[TaskStatus, int] = {
    TaskStatus.IN_PROGRESS: 1,   # Actively working
    TaskStatus.UNDER_REVIEW: 2,  # Needs review decision
    TaskStatus.BACKLOG: 3,       # Open auctions and unassigned work
    TaskStatus.DONE: 4,          # Completed
}
