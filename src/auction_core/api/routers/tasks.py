"""Task board endpoints: creation, listing and status transitions."""
import logging
from datetime import datetime
from math import ceil
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from auction_core import auction_lifecycle, crud, models, schemas
from auction_core.api.dependencies import get_current_user, unwrap
from auction_core.config import get_settings
from auction_core.database import get_db
from auction_core.formatters import format_bid_value
from auction_core.state_machine import display_status, is_overdue

logger = logging.getLogger("auction-core.tasks")

router = APIRouter(tags=["tasks"])


def _task_to_response(task: models.Task, now: Optional[datetime] = None) -> schemas.TaskResponse:
    """Convert Task model to TaskResponse schema."""
    return schemas.TaskResponse(
        id=task.id,
        title=task.title,
        description=task.description,
        task_type=task.task_type,
        mode=task.mode,
        status=task.status,
        display_status=display_status(task, now),
        department_id=task.department_id,
        management_id=task.management_id,
        division_id=task.division_id,
        creator_id=task.creator_id,
        creator_name=task.creator_name,
        assignee_id=task.assignee_id,
        assignee_name=task.assignee_name,
        minimum_grade=task.minimum_grade,
        deadline=task.deadline,
        done_at=task.done_at,
        auction_start_at=task.auction_start_at,
        auction_planned_end_at=task.auction_planned_end_at,
        auction_end_at=task.auction_end_at,
        base_price=task.base_price,
        current_price=task.current_price,
        base_time_minutes=task.base_time_minutes,
        current_time_minutes=task.current_time_minutes,
        auction_has_bids=bool(task.auction_has_bids),
        auction_leader_id=task.auction_leader_id,
        auction_leader_name=task.auction_leader_name,
        auction_winner_id=task.auction_winner_id,
        auction_winner_name=task.auction_winner_name,
        created_at=task.created_at,
        updated_at=task.updated_at,
    )


def _task_to_list_item(task: models.Task, now: Optional[datetime] = None) -> schemas.TaskListItem:
    """Convert Task model to TaskListItem schema."""
    now = now or datetime.utcnow()
    return schemas.TaskListItem(
        id=task.id,
        title=task.title,
        task_type=task.task_type,
        mode=task.mode,
        status=task.status,
        display_status=display_status(task, now),
        is_overdue=is_overdue(task, now),
        department_id=task.department_id,
        division_id=task.division_id,
        minimum_grade=task.minimum_grade,
        assignee_name=task.assignee_name,
        deadline=task.deadline,
        auction_planned_end_at=task.auction_planned_end_at,
        current_value_display=format_bid_value(task, get_settings().currency_suffix),
        created_at=task.created_at,
    )


@router.post("/", response_model=schemas.TaskResponse, status_code=201)
def create_task(
    task_data: schemas.TaskCreate,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Create a task. UNIT and DEPARTMENT tasks open an auction immediately.

    - **task_type**: INDIVIDUAL (directly assigned), UNIT or DEPARTMENT
    - **mode**: MONEY (highest price wins) or TIME (fewest minutes wins)
    - **minimum_grade**: Lowest grade allowed to bid
    """
    task = unwrap(auction_lifecycle.create_task(db, task_data, current_user.id))
    return _task_to_response(task)


@router.get("/", response_model=schemas.TaskListResponse)
def list_tasks(
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(50, ge=1, le=100, description="Items per page"),
    department_id: Optional[UUID] = Query(None, description="Filter by department"),
    division_id: Optional[UUID] = Query(None, description="Filter by division"),
    assignee_id: Optional[UUID] = Query(None, description="Filter by assignee"),
    status: Optional[models.TaskStatus] = Query(None, description="Filter by status"),
    task_type: Optional[models.TaskType] = Query(None, description="Filter by task type"),
    db: Session = Depends(get_db),
):
    """
    List tasks in board order: in progress, under review, backlog, done.
    """
    skip = (page - 1) * page_size

    tasks, total = crud.get_tasks(
        db=db,
        skip=skip,
        limit=page_size,
        department_id=department_id,
        division_id=division_id,
        assignee_id=assignee_id,
        status=status,
        task_type=task_type,
    )

    now = datetime.utcnow()
    return schemas.TaskListResponse(
        items=[_task_to_list_item(t, now) for t in tasks],
        total=total,
        page=page,
        page_size=page_size,
        total_pages=ceil(total / page_size) if total > 0 else 0,
    )


@router.get("/{task_id}", response_model=schemas.TaskResponse)
def get_task(task_id: UUID, db: Session = Depends(get_db)):
    """Get a task by ID."""
    task = crud.get_task(db, task_id)
    if not task:
        raise HTTPException(status_code=404, detail=f"Task not found: {task_id}")
    return _task_to_response(task)


@router.patch("/{task_id}/status", response_model=schemas.TaskResponse)
def update_task_status(
    task_id: UUID,
    status_update: schemas.TaskStatusUpdate,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Move a task along the board.

    Allowed: backlog → in_progress, in_progress → under_review | backlog,
    under_review → done | in_progress. Anything else returns 409.

    The caller must be allowed to make the move (403 otherwise): the assignee
    submits for review, the department director or an admin accepts or
    returns work, and returning work requires a comment (422).
    """
    task = unwrap(auction_lifecycle.transition_status(
        db,
        task_id,
        models.TaskStatus(status_update.status),
        actor_id=current_user.id,
        comment=status_update.comment,
    ))
    return _task_to_response(task)


@router.get("/{task_id}/history", response_model=list[schemas.TaskHistoryResponse])
def get_task_history(task_id: UUID, db: Session = Depends(get_db)):
    """Audit trail of a task, oldest first."""
    task = crud.get_task(db, task_id)
    if not task:
        raise HTTPException(status_code=404, detail=f"Task not found: {task_id}")
    return crud.get_task_history(db, task.id)
