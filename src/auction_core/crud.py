"""CRUD operations for database models."""
import logging
from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import case, func, select
from sqlalchemy.orm import Session

from . import models, schemas
from .auction_access import is_auction_visible_to_user
from .grades import grade_of, initial_points_for_role
from .state_machine import STATUS_SORT_ORDER

logger = logging.getLogger("auction-core.crud")


def _status_sort_expression():
    """Build SQLAlchemy CASE expression for board ordering.

    In-progress work first, done tasks last.
    """
    return case(
        *[(models.Task.status == status, order)
          for status, order in STATUS_SORT_ORDER.items()],
        else_=99
    )


# =============================================================================
# Organization (read-only)
# =============================================================================

def get_department(db: Session, department_id: UUID) -> Optional[models.Department]:
    """Get a department by ID."""
    return db.query(models.Department).filter(models.Department.id == department_id).first()


def get_departments(db: Session) -> list[models.Department]:
    """List all departments by name."""
    return db.query(models.Department).order_by(models.Department.name).all()


def get_management(db: Session, management_id: UUID) -> Optional[models.Management]:
    """Get a management by ID."""
    return db.query(models.Management).filter(models.Management.id == management_id).first()


def get_managements(db: Session, department_id: Optional[UUID] = None) -> list[models.Management]:
    """List managements, optionally within one department."""
    query = db.query(models.Management)
    if department_id:
        query = query.filter(models.Management.department_id == department_id)
    return query.order_by(models.Management.name).all()


def get_division(db: Session, division_id: UUID) -> Optional[models.Division]:
    """Get a division by ID."""
    return db.query(models.Division).filter(models.Division.id == division_id).first()


def get_divisions(
    db: Session,
    department_id: Optional[UUID] = None,
    management_id: Optional[UUID] = None,
) -> list[models.Division]:
    """List divisions, optionally filtered by department or management."""
    query = db.query(models.Division)
    if department_id:
        query = query.filter(models.Division.department_id == department_id)
    if management_id:
        query = query.filter(models.Division.management_id == management_id)
    return query.order_by(models.Division.name).all()


# =============================================================================
# Users
# =============================================================================

def get_user(db: Session, user_id: UUID) -> Optional[models.User]:
    """Get a user by ID."""
    return db.query(models.User).filter(models.User.id == user_id).first()


def create_user(db: Session, user_data: schemas.UserCreate) -> models.User:
    """
    Register a user with the opening point balance for their role.

    The opening balance is written to the point ledger as a
    ``position_assigned`` entry so the ledger sum always equals ``points``.

    Args:
        db: Database session
        user_data: User creation data

    Returns:
        Created User
    """
    starting_points = initial_points_for_role(user_data.role)
    user = models.User(
        username=user_data.username,
        name=user_data.name,
        email=user_data.email,
        role=user_data.role,
        department_id=user_data.department_id,
        management_id=user_data.management_id,
        division_id=user_data.division_id,
        grade=user_data.grade,
        points=starting_points,
    )
    db.add(user)
    db.flush()

    if starting_points:
        db.add(models.PointTransaction(
            user_id=user.id,
            amount=starting_points,
            type=models.PointTransactionType.POSITION_ASSIGNED,
            comment=f"Starting points for role {user_data.role.value}",
        ))

    db.commit()
    db.refresh(user)
    logger.info(f"Created user {user.username} ({user.role.value}) with {starting_points} points")
    return user


# =============================================================================
# Point ledger
# =============================================================================

def record_point_transaction(
    db: Session,
    user: models.User,
    data: schemas.PointTransactionCreate,
) -> models.PointTransaction:
    """
    Append a ledger entry and update the user's balance in one transaction.

    Balances never drop below zero: a deduction larger than the balance is
    recorded as the amount actually removed, so the ledger always sums to
    the stored balance.

    Args:
        db: Database session
        user: User receiving the points
        data: Ledger entry data

    Returns:
        Created PointTransaction
    """
    balance = user.points or 0
    applied = max(-balance, data.amount)
    if applied != data.amount:
        logger.info(f"Deduction for {user.username} capped at {applied} (requested {data.amount})")

    transaction = models.PointTransaction(
        user_id=user.id,
        amount=applied,
        type=data.type,
        task_id=data.task_id,
        task_title=data.task_title,
        comment=data.comment,
    )
    db.add(transaction)

    old_grade = grade_of(user.points)
    user.points = balance + applied
    new_grade = grade_of(user.points)

    db.commit()
    db.refresh(transaction)

    if new_grade != old_grade:
        logger.info(f"User {user.username} moved from grade {old_grade.value} to {new_grade.value}")
    return transaction


def get_point_history(db: Session, user_id: UUID) -> list[models.PointTransaction]:
    """Ledger entries for a user, newest first."""
    return db.query(models.PointTransaction).filter(
        models.PointTransaction.user_id == user_id
    ).order_by(models.PointTransaction.created_at.desc()).all()


# =============================================================================
# Tasks
# =============================================================================

def get_task(db: Session, task_id: UUID) -> Optional[models.Task]:
    """Get a task by ID."""
    return db.query(models.Task).filter(models.Task.id == task_id).first()


def get_tasks(
    db: Session,
    skip: int = 0,
    limit: int = 50,
    department_id: Optional[UUID] = None,
    division_id: Optional[UUID] = None,
    assignee_id: Optional[UUID] = None,
    status: Optional[models.TaskStatus] = None,
    task_type: Optional[models.TaskType] = None,
) -> tuple[list[models.Task], int]:
    """
    Get tasks with filtering, ordered for the board.

    Returns:
        Tuple of (tasks list, total count)
    """
    query = db.query(models.Task)

    if department_id:
        query = query.filter(models.Task.department_id == department_id)
    if division_id:
        query = query.filter(models.Task.division_id == division_id)
    if assignee_id:
        query = query.filter(models.Task.assignee_id == assignee_id)
    if status:
        query = query.filter(models.Task.status == status)
    if task_type:
        query = query.filter(models.Task.task_type == task_type)

    total = query.count()
    tasks = query.order_by(
        _status_sort_expression(),
        models.Task.created_at.desc(),
    ).offset(skip).limit(limit).all()
    return tasks, total


def get_open_auction_ids(db: Session) -> list[UUID]:
    """IDs of tasks whose auction has not closed yet."""
    rows = db.query(models.Task.id).filter(
        models.Task.task_type != models.TaskType.INDIVIDUAL,
        models.Task.status == models.TaskStatus.BACKLOG,
        models.Task.auction_start_at.isnot(None),
        models.Task.auction_end_at.is_(None),
    ).order_by(models.Task.auction_planned_end_at.asc()).all()
    return [row[0] for row in rows]


def get_visible_auctions(db: Session, user: models.User) -> list[models.Task]:
    """Open auctions the user is allowed to see."""
    if user.role == models.Role.ADMIN or user.department_id is None:
        return []

    candidates = db.query(models.Task).filter(
        models.Task.department_id == user.department_id,
        models.Task.task_type != models.TaskType.INDIVIDUAL,
        models.Task.status == models.TaskStatus.BACKLOG,
        models.Task.auction_end_at.is_(None),
    ).order_by(models.Task.auction_planned_end_at.asc()).all()
    return [task for task in candidates if is_auction_visible_to_user(task, user)]


# =============================================================================
# Bids
# =============================================================================

def get_task_bids(db: Session, task_id: UUID, include_admin_bids: bool = False) -> list[models.AuctionBid]:
    """
    Bids for a task in creation order.

    Bids placed by administrators are excluded unless requested.
    """
    query = db.query(models.AuctionBid).filter(models.AuctionBid.task_id == task_id)
    if not include_admin_bids:
        admin_ids = select(models.User.id).where(models.User.role == models.Role.ADMIN)
        query = query.filter(models.AuctionBid.bidder_id.notin_(admin_ids))
    return query.order_by(models.AuctionBid.created_at.asc()).all()


def get_latest_bid_at(db: Session, task_id: UUID) -> Optional[datetime]:
    """Creation time of the most recent bid on a task."""
    return db.query(func.max(models.AuctionBid.created_at)).filter(
        models.AuctionBid.task_id == task_id
    ).scalar()


# =============================================================================
# History
# =============================================================================

def add_history_entry(
    db: Session,
    task: models.Task,
    change_type: models.TaskChangeType,
    field_name: Optional[str] = None,
    old_value: Optional[str] = None,
    new_value: Optional[str] = None,
    changed_by: Optional[UUID] = None,
    comment: Optional[str] = None,
    changed_at: Optional[datetime] = None,
) -> models.TaskHistory:
    """Stage a history entry for a task (committed by the caller)."""
    entry = models.TaskHistory(
        task_id=task.id,
        change_type=change_type,
        field_name=field_name,
        old_value=old_value,
        new_value=new_value,
        changed_by=changed_by,
        comment=comment,
        changed_at=changed_at or datetime.utcnow(),
    )
    db.add(entry)
    return entry


def get_task_history(db: Session, task_id: UUID) -> list[models.TaskHistory]:
    """History entries for a task, oldest first."""
    return db.query(models.TaskHistory).filter(
        models.TaskHistory.task_id == task_id
    ).order_by(models.TaskHistory.changed_at.asc()).all()
