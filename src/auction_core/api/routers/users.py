"""User grade and point ledger endpoints."""
import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from auction_core import crud, models, schemas
from auction_core.api.dependencies import require_roles
from auction_core.database import get_db
from auction_core.grades import grade_progress, resolve_user_grade

logger = logging.getLogger("auction-core.users")

router = APIRouter(tags=["users"])


def _get_user_or_404(db: Session, user_id: UUID) -> models.User:
    user = crud.get_user(db, user_id)
    if not user:
        raise HTTPException(status_code=404, detail=f"User not found: {user_id}")
    return user


@router.post("/", response_model=schemas.UserResponse, status_code=201)
def create_user(
    user_data: schemas.UserCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_roles(models.Role.ADMIN)),
):
    """
    Register a user record. Admins only.

    The opening point balance depends on the role and is written to the
    point ledger.
    """
    try:
        return crud.create_user(db, user_data)
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=409, detail=f"Username already exists: {user_data.username}")


@router.get("/{user_id}", response_model=schemas.UserResponse)
def get_user(user_id: UUID, db: Session = Depends(get_db)):
    """Get a user by ID."""
    return _get_user_or_404(db, user_id)


@router.get("/{user_id}/grade", response_model=schemas.GradeProgressResponse)
def get_grade(user_id: UUID, db: Session = Depends(get_db)):
    """Grade derived from points, plus distance to the next grade."""
    user = _get_user_or_404(db, user_id)
    progress = grade_progress(user.points)
    return schemas.GradeProgressResponse(
        user_id=user.id,
        points=user.points or 0,
        grade=progress.grade,
        effective_grade=resolve_user_grade(user),
        next_grade=progress.next_grade,
        points_to_next=progress.points_to_next,
    )


@router.get("/{user_id}/points", response_model=list[schemas.PointTransactionResponse])
def get_point_history(user_id: UUID, db: Session = Depends(get_db)):
    """Point ledger entries, newest first."""
    user = _get_user_or_404(db, user_id)
    return crud.get_point_history(db, user.id)


@router.post("/{user_id}/points", response_model=schemas.PointTransactionResponse, status_code=201)
def add_points(
    user_id: UUID,
    transaction: schemas.PointTransactionCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_roles(models.Role.DIRECTOR, models.Role.ADMIN)),
):
    """
    Append a point ledger entry and update the balance.

    Admins may adjust anyone; directors only users of their own department.

    - **amount**: Positive to award, negative to penalize
    - **type**: task_completion, overdue_penalty or position_assigned
    """
    user = _get_user_or_404(db, user_id)
    if current_user.role != models.Role.ADMIN and user.department_id != current_user.department_id:
        raise HTTPException(status_code=403, detail="Directors may only adjust points in their own department")
    return crud.record_point_transaction(db, user, transaction)
