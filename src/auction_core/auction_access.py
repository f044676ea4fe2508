"""Auction visibility and bid eligibility.

Visibility and bidding are evaluated separately: a task may be visible in a
listing without being biddable. Rules are checked in order and the first
failing rule decides the reason.

Visibility:
1. Administrators never see auctions
2. The user must belong to the task's department
3. UNIT auctions additionally require the task's division (when set)

Bidding:
1. Administrators never bid
2. The task creator never bids on their own task
3. The task must be visible to the user
4. The user's grade must be at least the task's minimum grade
"""
import logging
from dataclasses import dataclass
from typing import Optional

from .grades import has_grade_access, resolve_user_grade
from .models import Grade, Role, TaskType
from .org_scope import same_department, same_division

logger = logging.getLogger("auction-core.auction_access")

REASON_ADMIN_NOT_VISIBLE = "Administrators do not participate in auctions"
REASON_OTHER_DEPARTMENT = "Auction is open only to employees of the task's department"
REASON_OTHER_DIVISION = "Auction is open only to employees of the task's division"
REASON_ADMIN_CANNOT_BID = "Administrators cannot bid"
REASON_CREATOR_CANNOT_BID = "Task creator cannot bid on own task"


@dataclass(frozen=True)
class VisibilityDecision:
    """Whether a user may see an auction."""

    visible: bool
    reason: Optional[str] = None


@dataclass(frozen=True)
class BidEligibility:
    """Whether a user may bid, with both grades for display."""

    allowed: bool
    reason: Optional[str] = None
    user_grade: Optional[Grade] = None
    minimum_grade: Optional[Grade] = None


def evaluate_visibility(task, user) -> VisibilityDecision:
    """
    Decide whether an auction is visible to a user.

    Args:
        task: Task (or any object with task_type/department_id/division_id)
        user: User (or any object with role/department_id/division_id)

    Returns:
        VisibilityDecision with a reason when not visible
    """
    if user.role == Role.ADMIN:
        return VisibilityDecision(False, REASON_ADMIN_NOT_VISIBLE)

    if not same_department(task, user):
        return VisibilityDecision(False, REASON_OTHER_DEPARTMENT)

    if task.task_type == TaskType.UNIT and not same_division(task, user):
        return VisibilityDecision(False, REASON_OTHER_DIVISION)

    return VisibilityDecision(True)


def is_auction_visible_to_user(task, user) -> bool:
    """Boolean shortcut for list filtering."""
    return evaluate_visibility(task, user).visible


def evaluate_bid_eligibility(task, user) -> BidEligibility:
    """
    Decide whether a user may bid on a task's auction.

    Auction state (open/closed) is not considered here; the bid ratchet
    checks it.

    Args:
        task: Task being bid on
        user: Prospective bidder

    Returns:
        BidEligibility; when allowed, both grades are populated
    """
    if user.role == Role.ADMIN:
        return BidEligibility(False, REASON_ADMIN_CANNOT_BID)

    if user.id == task.creator_id:
        return BidEligibility(False, REASON_CREATOR_CANNOT_BID)

    visibility = evaluate_visibility(task, user)
    if not visibility.visible:
        return BidEligibility(False, visibility.reason)

    user_grade = resolve_user_grade(user)
    minimum_grade = Grade(task.minimum_grade) if task.minimum_grade is not None else Grade.D

    if not has_grade_access(user_grade, minimum_grade):
        logger.debug(f"Grade {user_grade.value} below minimum {minimum_grade.value} for task {task.id}")
        return BidEligibility(
            False,
            f"Bidding requires grade {minimum_grade.value} or higher, your grade: {user_grade.value}",
            user_grade=user_grade,
            minimum_grade=minimum_grade,
        )

    return BidEligibility(True, user_grade=user_grade, minimum_grade=minimum_grade)
