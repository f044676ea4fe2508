"""Pydantic schemas for request/response validation."""
from datetime import datetime
from decimal import Decimal
from typing import Optional, Union
from uuid import UUID

from pydantic import BaseModel, Field, ConfigDict, model_validator

from .models import (
    AuctionMode,
    Grade,
    PointTransactionType,
    Role,
    TaskChangeType,
    TaskStatus,
    TaskType,
)


# Organization Schemas

class DepartmentResponse(BaseModel):
    """Schema for department response."""

    id: UUID
    name: str
    leader_id: Optional[UUID] = None

    model_config = ConfigDict(from_attributes=True)


class ManagementResponse(BaseModel):
    """Schema for management response."""

    id: UUID
    name: str
    department_id: UUID
    leader_id: Optional[UUID] = None

    model_config = ConfigDict(from_attributes=True)


class DivisionResponse(BaseModel):
    """Schema for division response."""

    id: UUID
    name: str
    department_id: UUID
    management_id: UUID
    leader_id: Optional[UUID] = None

    model_config = ConfigDict(from_attributes=True)


# User Schemas

class UserCreate(BaseModel):
    """Schema for registering a user record with the engine."""

    username: str = Field(..., min_length=1, max_length=100)
    name: str = Field(..., min_length=1, max_length=255)
    email: Optional[str] = None
    role: Role = Role.EMPLOYEE
    department_id: Optional[UUID] = None
    management_id: Optional[UUID] = None
    division_id: Optional[UUID] = None
    grade: Optional[Grade] = Field(None, description="Explicit grade override")


class UserResponse(BaseModel):
    """Schema for user response."""

    id: UUID
    username: str
    name: str
    role: Role
    department_id: Optional[UUID] = None
    management_id: Optional[UUID] = None
    division_id: Optional[UUID] = None
    grade: Optional[Grade] = None
    points: int

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class GradeProgressResponse(BaseModel):
    """Schema for a user's grade and progress to the next grade."""

    user_id: UUID
    points: int
    grade: Grade
    effective_grade: Grade = Field(description="Grade used for bid eligibility")
    next_grade: Optional[Grade] = None
    points_to_next: Optional[float] = None


# Point Ledger Schemas

class PointTransactionCreate(BaseModel):
    """Schema for appending a point ledger entry."""

    amount: int
    type: PointTransactionType
    task_id: Optional[UUID] = None
    task_title: Optional[str] = Field(None, max_length=200)
    comment: Optional[str] = None


class PointTransactionResponse(BaseModel):
    """Schema for point ledger entry response."""

    id: UUID
    user_id: UUID
    amount: int
    type: PointTransactionType
    task_id: Optional[UUID] = None
    task_title: Optional[str] = None
    comment: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


# Task Schemas

class TaskCreate(BaseModel):
    """Schema for creating a new task.

    Auctioned tasks (UNIT, DEPARTMENT) need the base value for their mode:
    ``base_price`` for MONEY, ``base_time_minutes`` for TIME. INDIVIDUAL
    tasks are directly assigned and need ``assignee_id``.
    """

    title: str = Field(..., min_length=1, max_length=200, description="Task title")
    description: Optional[str] = Field(None, description="Task description")
    task_type: TaskType = Field(TaskType.DEPARTMENT, description="INDIVIDUAL, UNIT or DEPARTMENT")
    mode: AuctionMode = Field(AuctionMode.MONEY, description="MONEY or TIME")
    department_id: UUID = Field(..., description="Department UUID")
    management_id: Optional[UUID] = None
    division_id: Optional[UUID] = None
    minimum_grade: Grade = Field(Grade.D, description="Lowest grade allowed to bid")
    deadline: Optional[datetime] = None
    base_price: Optional[Decimal] = Field(None, gt=0, max_digits=14, decimal_places=2)
    base_time_minutes: Optional[int] = Field(None, gt=0, le=2_147_483_647)
    assignee_id: Optional[UUID] = Field(None, description="Assignee for INDIVIDUAL tasks")

    @model_validator(mode="after")
    def check_base_value(self):
        if self.task_type == TaskType.INDIVIDUAL:
            if self.assignee_id is None:
                raise ValueError("assignee_id is required for INDIVIDUAL tasks")
            return self
        if self.mode == AuctionMode.MONEY and self.base_price is None:
            raise ValueError("base_price is required for MONEY auctions")
        if self.mode == AuctionMode.TIME and self.base_time_minutes is None:
            raise ValueError("base_time_minutes is required for TIME auctions")
        return self


class TaskStatusUpdate(BaseModel):
    """Schema for moving a task along the board."""

    status: TaskStatus
    comment: Optional[str] = None


class TaskResponse(BaseModel):
    """Schema for full task response."""

    id: UUID
    title: str
    description: Optional[str] = None
    task_type: TaskType
    mode: AuctionMode
    status: TaskStatus
    display_status: str
    department_id: UUID
    management_id: Optional[UUID] = None
    division_id: Optional[UUID] = None
    creator_id: UUID
    creator_name: str
    assignee_id: Optional[UUID] = None
    assignee_name: Optional[str] = None
    minimum_grade: Grade
    deadline: Optional[datetime] = None
    done_at: Optional[datetime] = None
    # Auction
    auction_start_at: Optional[datetime] = None
    auction_planned_end_at: Optional[datetime] = None
    auction_end_at: Optional[datetime] = None
    base_price: Optional[Decimal] = None
    current_price: Optional[Decimal] = None
    base_time_minutes: Optional[int] = None
    current_time_minutes: Optional[int] = None
    auction_has_bids: bool = False
    auction_leader_id: Optional[UUID] = None
    auction_leader_name: Optional[str] = None
    auction_winner_id: Optional[UUID] = None
    auction_winner_name: Optional[str] = None
    # Audit
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class TaskListItem(BaseModel):
    """Schema for task list items (lightweight)."""

    id: UUID
    title: str
    task_type: TaskType
    mode: AuctionMode
    status: TaskStatus
    display_status: str
    is_overdue: bool
    department_id: UUID
    division_id: Optional[UUID] = None
    minimum_grade: Grade
    assignee_name: Optional[str] = None
    deadline: Optional[datetime] = None
    auction_planned_end_at: Optional[datetime] = None
    current_value_display: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class TaskListResponse(BaseModel):
    """Schema for paginated task list response."""

    items: list[TaskListItem]
    total: int
    page: int
    page_size: int
    total_pages: int


# Auction Schemas

class BidCreate(BaseModel):
    """Schema for placing a bid.

    Values are accepted raw (numbers or formatted strings) and normalized
    by the bid ratchet, so malformed input surfaces as a bid validation
    error rather than a schema error.
    """

    value_money: Optional[Union[Decimal, int, float, str]] = Field(None, description="Offer for MONEY auctions, e.g. '1 250 000'")
    value_time_minutes: Optional[Union[int, float, str]] = Field(None, description="Offer for TIME auctions, in whole minutes")


class BidResponse(BaseModel):
    """Schema for auction bid response."""

    id: UUID
    task_id: UUID
    bidder_id: UUID
    bidder_name: str
    bidder_grade: Grade
    bidder_rating: Optional[Decimal] = None
    bidder_points: int
    value_money: Optional[Decimal] = None
    value_time_minutes: Optional[int] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class VisibilityResponse(BaseModel):
    """Schema for auction visibility decision."""

    task_id: UUID
    visible: bool
    reason: Optional[str] = None


class BidEligibilityResponse(BaseModel):
    """Schema for bid eligibility decision."""

    task_id: UUID
    allowed: bool
    reason: Optional[str] = None
    user_grade: Optional[Grade] = None
    minimum_grade: Optional[Grade] = None


class SweepReportResponse(BaseModel):
    """Schema for a sweep run summary."""

    checked: int
    extended: list[UUID]
    closed: list[UUID]


# History Schemas

class TaskHistoryResponse(BaseModel):
    """Schema for a task history entry."""

    id: UUID
    task_id: UUID
    change_type: TaskChangeType
    field_name: Optional[str] = None
    old_value: Optional[str] = None
    new_value: Optional[str] = None
    comment: Optional[str] = None
    changed_by: Optional[UUID] = None
    changed_at: datetime

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)
