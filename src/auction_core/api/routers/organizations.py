"""Organization lookup endpoints (read-only)."""
import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from auction_core import crud, schemas
from auction_core.database import get_db

logger = logging.getLogger("auction-core.organizations")

router = APIRouter(tags=["organizations"])


@router.get("/departments", response_model=list[schemas.DepartmentResponse])
def list_departments(db: Session = Depends(get_db)):
    """List all departments."""
    return crud.get_departments(db)


@router.get("/departments/{department_id}", response_model=schemas.DepartmentResponse)
def get_department(department_id: UUID, db: Session = Depends(get_db)):
    """Get a department by ID."""
    department = crud.get_department(db, department_id)
    if not department:
        raise HTTPException(status_code=404, detail=f"Department not found: {department_id}")
    return department


@router.get("/managements", response_model=list[schemas.ManagementResponse])
def list_managements(
    department_id: Optional[UUID] = Query(None, description="Filter by department"),
    db: Session = Depends(get_db),
):
    """List managements, optionally within one department."""
    return crud.get_managements(db, department_id)


@router.get("/managements/{management_id}", response_model=schemas.ManagementResponse)
def get_management(management_id: UUID, db: Session = Depends(get_db)):
    """Get a management by ID."""
    management = crud.get_management(db, management_id)
    if not management:
        raise HTTPException(status_code=404, detail=f"Management not found: {management_id}")
    return management


@router.get("/divisions", response_model=list[schemas.DivisionResponse])
def list_divisions(
    department_id: Optional[UUID] = Query(None, description="Filter by department"),
    management_id: Optional[UUID] = Query(None, description="Filter by management"),
    db: Session = Depends(get_db),
):
    """List divisions, optionally filtered by department or management."""
    return crud.get_divisions(db, department_id, management_id)


@router.get("/divisions/{division_id}", response_model=schemas.DivisionResponse)
def get_division(division_id: UUID, db: Session = Depends(get_db)):
    """Get a division by ID."""
    division = crud.get_division(db, division_id)
    if not division:
        raise HTTPException(status_code=404, detail=f"Division not found: {division_id}")
    return division
