"""Grade ledger: translation of accumulated points into competency grades.

Grades are ordered D < C < B < A. A user's point balance maps onto a grade
through fixed, increasing cutoffs; D is the floor and A has no upper bound.
Bid eligibility compares grades by priority (D=1 ... A=4).
"""
import logging
import math
from dataclasses import dataclass
from typing import Iterable, Optional, Union

from .models import Grade, Role

logger = logging.getLogger("auction-core.grades")

Number = Union[int, float]

# Ordered lowest to highest
GRADE_ORDER: list[Grade] = [Grade.D, Grade.C, Grade.B, Grade.A]

# Minimum points needed to hold each grade
GRADE_THRESHOLDS: dict[Grade, int] = {
    Grade.D: 0,
    Grade.C: 55,
    Grade.B: 70,
    Grade.A: 85,
}

GRADE_PRIORITY: dict[Grade, int] = {
    Grade.D: 1,
    Grade.C: 2,
    Grade.B: 3,
    Grade.A: 4,
}

# Grade implied by role when a user has no explicit grade recorded
ROLE_GRADES: dict[Role, Grade] = {
    Role.ADMIN: Grade.A,
    Role.DIRECTOR: Grade.A,
    Role.MANAGER: Grade.B,
    Role.SENIOR: Grade.C,
    Role.EMPLOYEE: Grade.D,
}

# Opening balance for a new user, by the grade implied by their role
STARTING_POINTS: dict[Grade, int] = {
    Grade.A: 85,
    Grade.B: 70,
    Grade.C: 55,
    Grade.D: 40,
}


@dataclass(frozen=True)
class GradeProgress:
    """Current grade and distance to the next one."""

    grade: Grade
    next_grade: Optional[Grade] = None
    points_to_next: Optional[float] = None


def _safe_points(points: Optional[Number]) -> float:
    """Clamp missing, non-finite or negative balances to zero."""
    if points is None or isinstance(points, bool):
        return 0.0
    try:
        value = float(points)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(value) or value < 0:
        return 0.0
    return value


def grade_of(points: Optional[Number]) -> Grade:
    """Return the grade held with the given point balance."""
    value = _safe_points(points)
    current = Grade.D
    for grade in GRADE_ORDER:
        if value >= GRADE_THRESHOLDS[grade]:
            current = grade
    return current


def grade_progress(points: Optional[Number]) -> GradeProgress:
    """
    Return the grade for ``points`` and how far away the next grade is.

    Args:
        points: Accumulated point balance

    Returns:
        GradeProgress; ``next_grade`` and ``points_to_next`` are None at grade A
    """
    value = _safe_points(points)
    grade = grade_of(value)
    index = GRADE_ORDER.index(grade)
    if index + 1 >= len(GRADE_ORDER):
        return GradeProgress(grade=grade)

    next_grade = GRADE_ORDER[index + 1]
    points_to_next = max(0.0, GRADE_THRESHOLDS[next_grade] - value)
    if points_to_next.is_integer():
        points_to_next = int(points_to_next)
    return GradeProgress(grade=grade, next_grade=next_grade, points_to_next=points_to_next)


def has_grade_access(user_grade: Grade, minimum_grade: Grade) -> bool:
    """True if ``user_grade`` is at or above ``minimum_grade``."""
    return GRADE_PRIORITY[user_grade] >= GRADE_PRIORITY[minimum_grade]


def grade_for_role(role: Optional[Union[Role, str]]) -> Grade:
    """Grade implied by a role; unknown roles are treated as employees."""
    try:
        return ROLE_GRADES[Role(role)]
    except ValueError:
        return ROLE_GRADES[Role.EMPLOYEE]


def resolve_user_grade(user) -> Grade:
    """
    Effective grade of a user for bid eligibility.

    Precedence: the explicit ``user.grade`` when recorded, otherwise the
    grade implied by ``user.role``.
    """
    if user.grade is not None:
        return Grade(user.grade)
    return grade_for_role(user.role)


def initial_points_for_role(role: Union[Role, str]) -> int:
    """Opening point balance for a newly created user."""
    if Role(role) == Role.ADMIN:
        return 0
    return STARTING_POINTS[grade_for_role(role)]


def points_balance(amounts: Iterable[Number]) -> int:
    """Running sum of ledger amounts, never below zero."""
    total = sum(int(amount) for amount in amounts)
    return max(0, total)
