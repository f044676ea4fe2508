"""Auction endpoints: listing, eligibility, bidding and close."""
import logging
from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from auction_core import auction_lifecycle, crud, models, schemas
from auction_core.api.dependencies import get_current_user, unwrap
from auction_core.api.routers.tasks import _task_to_list_item, _task_to_response
from auction_core.database import get_db

logger = logging.getLogger("auction-core.auctions")

router = APIRouter(tags=["auctions"])


@router.get("/", response_model=list[schemas.TaskListItem])
def list_visible_auctions(
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Open auctions the caller may see, soonest-ending first."""
    now = datetime.utcnow()
    return [_task_to_list_item(t, now) for t in crud.get_visible_auctions(db, current_user)]


@router.post("/sweep", response_model=schemas.SweepReportResponse)
def run_sweep(db: Session = Depends(get_db)):
    """Extend stalled auctions and close expired ones now."""
    report = auction_lifecycle.sweep_extensions_and_closes(db)
    return schemas.SweepReportResponse(
        checked=report.checked,
        extended=report.extended,
        closed=report.closed,
    )


@router.get("/{task_id}/visibility", response_model=schemas.VisibilityResponse)
def get_visibility(
    task_id: UUID,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Whether the caller may see this auction, and why not."""
    decision = unwrap(auction_lifecycle.check_visibility(db, task_id, current_user.id))
    return schemas.VisibilityResponse(task_id=task_id, visible=decision.visible, reason=decision.reason)


@router.get("/{task_id}/eligibility", response_model=schemas.BidEligibilityResponse)
def get_bid_eligibility(
    task_id: UUID,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Whether the caller may bid on this auction, with both grades."""
    eligibility = unwrap(auction_lifecycle.check_bid_eligibility(db, task_id, current_user.id))
    return schemas.BidEligibilityResponse(
        task_id=task_id,
        allowed=eligibility.allowed,
        reason=eligibility.reason,
        user_grade=eligibility.user_grade,
        minimum_grade=eligibility.minimum_grade,
    )


@router.get("/{task_id}/bids", response_model=list[schemas.BidResponse])
def list_bids(task_id: UUID, db: Session = Depends(get_db)):
    """Bids on a task in the order they were placed."""
    task = crud.get_task(db, task_id)
    if not task:
        raise HTTPException(status_code=404, detail=f"Task not found: {task_id}")
    return crud.get_task_bids(db, task.id)


@router.post("/{task_id}/bids", response_model=schemas.BidResponse, status_code=201)
def place_bid(
    task_id: UUID,
    bid: schemas.BidCreate,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Place a bid.

    - **value_money**: For MONEY auctions; must exceed the current price
    - **value_time_minutes**: For TIME auctions; must be below the current time

    Returns 403 when the caller may not bid, 422 for a malformed value and
    409 when the auction is closed or the bid does not improve the offer.
    """
    return unwrap(auction_lifecycle.submit_bid(
        db,
        task_id,
        current_user.id,
        value_money=bid.value_money,
        value_time_minutes=bid.value_time_minutes,
    ))


@router.post("/{task_id}/close", response_model=schemas.TaskResponse)
def close_auction(
    task_id: UUID,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Close an auction whose planned end has passed; the leading bidder becomes
    the assignee. Earlier requests return 409.
    """
    task = unwrap(auction_lifecycle.close_auction(db, task_id))
    logger.info(f"Auction {task_id} closed on request of {current_user.username}")
    return _task_to_response(task)
