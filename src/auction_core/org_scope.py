"""Organizational scope checks for auction visibility.

A DEPARTMENT auction is scoped to the task's department. A UNIT auction is
further scoped to the task's division when one is set; without a division it
falls back to department scope. INDIVIDUAL tasks are never auctioned.
"""


def same_department(task, user) -> bool:
    """True if the user belongs to the task's department."""
    if user.department_id is None:
        return False
    return user.department_id == task.department_id


def same_division(task, user) -> bool:
    """True if the user belongs to the task's division.

    Tasks without a division place no division constraint.
    """
    if task.division_id is None:
        return True
    return user.division_id == task.division_id

