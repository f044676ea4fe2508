"""SQLAlchemy database models."""
from datetime import datetime
from uuid import uuid4
import enum

from sqlalchemy import (
    Column,
    String,
    Text,
    Integer,
    Numeric,
    DateTime,
    ForeignKey,
    Enum,
    CheckConstraint,
    Boolean,
    Uuid,
)
from sqlalchemy.orm import declarative_base, relationship

# Base class for all models
Base = declarative_base()


def _enum_values(obj):
    return [e.value for e in obj]


class Role(str, enum.Enum):
    """Organizational role of a user."""

    ADMIN = "admin"
    DIRECTOR = "director"
    MANAGER = "manager"
    SENIOR = "senior"
    EMPLOYEE = "employee"


class Grade(str, enum.Enum):
    """Competency tier, ordered D < C < B < A."""

    D = "D"
    C = "C"
    B = "B"
    A = "A"


class TaskType(str, enum.Enum):
    """Who may compete for a task.

    - INDIVIDUAL: directly assigned, never auctioned
    - UNIT: auctioned inside the task's division
    - DEPARTMENT: auctioned inside the task's department
    """

    INDIVIDUAL = "INDIVIDUAL"
    UNIT = "UNIT"
    DEPARTMENT = "DEPARTMENT"


class AuctionMode(str, enum.Enum):
    """What bidders compete on."""

    MONEY = "MONEY"  # Higher completion price wins
    TIME = "TIME"  # Lower completion time wins


class TaskStatus(str, enum.Enum):
    """Kanban status of a task.

    OVERDUE is not stored here; it is derived for display by
    ``state_machine.display_status``.
    """

    BACKLOG = "backlog"
    IN_PROGRESS = "in_progress"
    UNDER_REVIEW = "under_review"
    DONE = "done"


class PointTransactionType(str, enum.Enum):
    """Origin of a point ledger entry."""

    TASK_COMPLETION = "task_completion"
    OVERDUE_PENALTY = "overdue_penalty"
    POSITION_ASSIGNED = "position_assigned"


class TaskChangeType(str, enum.Enum):
    """Task history change type enum."""

    CREATED = "created"
    STATUS_CHANGED = "status_changed"
    AUCTION_OPENED = "auction_opened"
    AUCTION_EXTENDED = "auction_extended"
    AUCTION_CLOSED = "auction_closed"


# =============================================================================
# Organization structure (read-only inputs to the engine)
# =============================================================================

class Department(Base):
    """Top level of the organization chart."""

    __tablename__ = "departments"

    id = Column(Uuid, primary_key=True, default=uuid4)
    name = Column(String(255), nullable=False)
    leader_id = Column(Uuid, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    managements = relationship("Management", back_populates="department", cascade="all, delete-orphan")

    def __repr__(self) -> str:
        return f"<Department {self.name}>"


class Management(Base):
    """Middle level of the organization chart."""

    __tablename__ = "managements"

    id = Column(Uuid, primary_key=True, default=uuid4)
    name = Column(String(255), nullable=False)
    department_id = Column(Uuid, ForeignKey("departments.id", ondelete="CASCADE"), nullable=False, index=True)
    leader_id = Column(Uuid, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    department = relationship("Department", back_populates="managements")
    divisions = relationship("Division", back_populates="management", cascade="all, delete-orphan")

    def __repr__(self) -> str:
        return f"<Management {self.name}>"


class Division(Base):
    """Lowest level of the organization chart (a unit)."""

    __tablename__ = "divisions"

    id = Column(Uuid, primary_key=True, default=uuid4)
    name = Column(String(255), nullable=False)
    management_id = Column(Uuid, ForeignKey("managements.id", ondelete="CASCADE"), nullable=False, index=True)
    department_id = Column(Uuid, ForeignKey("departments.id", ondelete="CASCADE"), nullable=False, index=True)
    leader_id = Column(Uuid, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    management = relationship("Management", back_populates="divisions")

    def __repr__(self) -> str:
        return f"<Division {self.name}>"


class User(Base):
    """
    Employee taking part in task allocation.

    ``grade`` is an explicit override; when it is NULL the effective grade
    falls back to the grade implied by ``role`` (see ``grades.resolve_user_grade``).
    ``points`` is the running sum of the user's point transactions.
    """

    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid4)
    username = Column(String(100), nullable=False, unique=True, index=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)
    role = Column(Enum(Role, values_callable=_enum_values), nullable=False, default=Role.EMPLOYEE)

    department_id = Column(Uuid, ForeignKey("departments.id", ondelete="SET NULL"), nullable=True, index=True)
    management_id = Column(Uuid, ForeignKey("managements.id", ondelete="SET NULL"), nullable=True)
    division_id = Column(Uuid, ForeignKey("divisions.id", ondelete="SET NULL"), nullable=True, index=True)

    grade = Column(Enum(Grade, values_callable=_enum_values), nullable=True)
    points = Column(Integer, nullable=False, default=0)
    rating = Column(Numeric(3, 2), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    point_transactions = relationship("PointTransaction", back_populates="user", cascade="all, delete-orphan")

    def __repr__(self) -> str:
        return f"<User {self.username} ({self.role.value if self.role else None})>"


# =============================================================================
# Tasks and auctions
# =============================================================================

class Task(Base):
    """Unit of work, optionally allocated through an auction.

    While ``status`` is BACKLOG and ``auction_end_at`` is NULL the auction is
    open. ``auction_leader_*`` tracks the provisional winner; the final winner
    is copied into ``auction_winner_*`` only when the auction closes.
    """

    __tablename__ = "tasks"

    id = Column(Uuid, primary_key=True, default=uuid4)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)

    task_type = Column(Enum(TaskType, values_callable=_enum_values), nullable=False)
    mode = Column(Enum(AuctionMode, values_callable=_enum_values), nullable=False, default=AuctionMode.MONEY)
    status = Column(Enum(TaskStatus, values_callable=_enum_values), nullable=False, default=TaskStatus.BACKLOG, index=True)

    # Organizational placement
    department_id = Column(Uuid, ForeignKey("departments.id", ondelete="CASCADE"), nullable=False, index=True)
    management_id = Column(Uuid, ForeignKey("managements.id", ondelete="SET NULL"), nullable=True)
    division_id = Column(Uuid, ForeignKey("divisions.id", ondelete="SET NULL"), nullable=True)

    creator_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    creator_name = Column(String(255), nullable=False)
    assignee_id = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    assignee_name = Column(String(255), nullable=True)

    minimum_grade = Column(Enum(Grade, values_callable=_enum_values), nullable=False, default=Grade.D)
    deadline = Column(DateTime, nullable=True, index=True)
    done_at = Column(DateTime, nullable=True)

    # Auction timing
    auction_start_at = Column(DateTime, nullable=True)
    auction_planned_end_at = Column(DateTime, nullable=True, index=True)
    auction_end_at = Column(DateTime, nullable=True)
    auction_extended_from_at = Column(DateTime, nullable=True)  # Stall anchor of the last extension

    # Auction values
    base_price = Column(Numeric(14, 2), nullable=True)
    current_price = Column(Numeric(14, 2), nullable=True)
    base_time_minutes = Column(Integer, nullable=True)
    current_time_minutes = Column(Integer, nullable=True)
    auction_has_bids = Column(Boolean, nullable=False, default=False)

    # Provisional and final winner
    auction_leader_id = Column(Uuid, nullable=True)
    auction_leader_name = Column(String(255), nullable=True)
    auction_winner_id = Column(Uuid, nullable=True)
    auction_winner_name = Column(String(255), nullable=True)

    # Optimistic concurrency
    version = Column(Integer, nullable=False, default=1)

    # Audit fields
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    bids = relationship(
        "AuctionBid",
        back_populates="task",
        cascade="all, delete-orphan",
        order_by="AuctionBid.created_at",
    )
    history = relationship("TaskHistory", back_populates="task", cascade="all, delete-orphan")

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint("base_price IS NULL OR base_price > 0", name="positive_base_price"),
        CheckConstraint("base_time_minutes IS NULL OR base_time_minutes > 0", name="positive_base_time"),
    )

    def __repr__(self) -> str:
        return f"<Task {self.id}: {self.title[:30]}>"


class AuctionBid(Base):
    """Immutable record of one competing offer.

    Exactly one of ``value_money`` / ``value_time_minutes`` is set, matching
    the task's mode. Bidder grade, rating and points are captured at bid time.
    """

    __tablename__ = "auction_bids"

    id = Column(Uuid, primary_key=True, default=uuid4)
    task_id = Column(Uuid, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    bidder_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    bidder_name = Column(String(255), nullable=False)
    bidder_grade = Column(Enum(Grade, values_callable=_enum_values), nullable=False)
    bidder_rating = Column(Numeric(3, 2), nullable=True)
    bidder_points = Column(Integer, nullable=False, default=0)

    value_money = Column(Numeric(14, 2), nullable=True)
    value_time_minutes = Column(Integer, nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)

    task = relationship("Task", back_populates="bids")

    __table_args__ = (
        CheckConstraint(
            "(value_money IS NOT NULL AND value_time_minutes IS NULL) OR "
            "(value_money IS NULL AND value_time_minutes IS NOT NULL)",
            name="exactly_one_bid_value",
        ),
    )

    def __repr__(self) -> str:
        value = self.value_money if self.value_money is not None else self.value_time_minutes
        return f"<AuctionBid {self.task_id}: {self.bidder_name}={value}>"


class PointTransaction(Base):
    """Append-only point ledger entry; the running sum is ``User.points``."""

    __tablename__ = "point_transactions"

    id = Column(Uuid, primary_key=True, default=uuid4)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    amount = Column(Integer, nullable=False)
    type = Column(Enum(PointTransactionType, values_callable=_enum_values), nullable=False)
    task_id = Column(Uuid, ForeignKey("tasks.id", ondelete="SET NULL"), nullable=True)
    task_title = Column(String(200), nullable=True)
    comment = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)

    user = relationship("User", back_populates="point_transactions")

    def __repr__(self) -> str:
        return f"<PointTransaction {self.user_id}: {self.amount:+d} ({self.type.value})>"


class TaskHistory(Base):
    """Task change history for audit trail.

    Records status changes and auction lifecycle events.
    """

    __tablename__ = "task_history"

    id = Column(Uuid, primary_key=True, default=uuid4)
    task_id = Column(Uuid, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)

    change_type = Column(Enum(TaskChangeType, values_callable=_enum_values), nullable=False)
    field_name = Column(String(50), nullable=True)
    old_value = Column(Text, nullable=True)
    new_value = Column(Text, nullable=True)
    comment = Column(Text, nullable=True)

    changed_by = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    changed_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)

    task = relationship("Task", back_populates="history")

    def __repr__(self) -> str:
        return f"<TaskHistory {self.task_id}: {self.change_type.value}>"
