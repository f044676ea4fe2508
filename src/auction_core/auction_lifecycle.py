"""Auction lifecycle controller.

Owns task creation (auction opening), bid submission, anti-stall
extension, auction close and board status transitions. All mutations of a
task's auction state run inside a per-task critical section: an in-process
striped lock, a row lock (``SELECT ... FOR UPDATE`` where supported) and the
task's optimistic version column.

Every operation returns an ``Outcome``; storage errors propagate.
"""
import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from . import crud, models, schemas
from .auction_access import (
    BidEligibility,
    VisibilityDecision,
    evaluate_bid_eligibility,
    evaluate_visibility,
)
from .bid_ratchet import (
    REASON_NO_IMPROVEMENT,
    BidValidationError,
    apply_bid,
    check_improvement,
    closed_reason,
    current_best,
    extract_bid_value,
    is_auction_open,
)
from .config import Settings, get_settings
from .grades import has_grade_access, resolve_user_grade
from .locks import KeyedLock
from .outcomes import Outcome
from .state_machine import StateTransitionError, validate_transition

logger = logging.getLogger("auction-core.auction_lifecycle")

_task_locks = KeyedLock(get_settings().lock_stripes)

REASON_CLOSE_BEFORE_END = "Auction cannot close before its planned end"
REASON_REWORK_COMMENT = "A comment is required when returning a task for rework"


class SweepAction(str, enum.Enum):
    """What the sweep should do with an auction."""

    NONE = "none"
    EXTEND = "extend"
    CLOSE = "close"


@dataclass(frozen=True)
class SweepDecision:
    """Result of evaluating one auction at a point in time."""

    action: SweepAction
    planned_end_at: Optional[datetime] = None
    anchor_at: Optional[datetime] = None


@dataclass
class SweepReport:
    """Summary of one sweep over all open auctions."""

    checked: int = 0
    extended: list[UUID] = field(default_factory=list)
    closed: list[UUID] = field(default_factory=list)


def _resolve(settings: Optional[Settings], now: Optional[datetime]) -> tuple[Settings, datetime]:
    return settings or get_settings(), now or datetime.utcnow()


def _load_task_for_update(db: Session, task_id: UUID) -> Optional[models.Task]:
    """Load a task with a row lock, discarding any stale identity-map state."""
    return db.query(models.Task).filter(
        models.Task.id == task_id
    ).populate_existing().with_for_update().first()


# =============================================================================
# Opening
# =============================================================================

def open_auction(
    task: models.Task,
    now: Optional[datetime] = None,
    settings: Optional[Settings] = None,
) -> bool:
    """
    Start the auction window on a task.

    INDIVIDUAL tasks are never auctioned and are left untouched.

    Returns:
        True if an auction was opened
    """
    settings, now = _resolve(settings, now)
    if task.task_type == models.TaskType.INDIVIDUAL:
        return False

    task.auction_start_at = now
    task.auction_planned_end_at = now + timedelta(hours=settings.auction_duration_hours)
    task.auction_end_at = None
    task.auction_extended_from_at = None
    task.auction_has_bids = False
    task.current_price = None
    task.current_time_minutes = None
    task.auction_leader_id = None
    task.auction_leader_name = None
    return True


def create_task(
    db: Session,
    task_data: schemas.TaskCreate,
    creator_id: UUID,
    now: Optional[datetime] = None,
    settings: Optional[Settings] = None,
) -> Outcome[models.Task]:
    """
    Create a task and open its auction.

    Args:
        db: Database session
        task_data: Task creation data
        creator_id: UUID of the creating user
        now: Clock override

    Returns:
        Outcome carrying the created Task
    """
    settings, now = _resolve(settings, now)

    creator = crud.get_user(db, creator_id)
    if not creator:
        return Outcome.not_found(f"User not found: {creator_id}")

    if not crud.get_department(db, task_data.department_id):
        return Outcome.not_found(f"Department not found: {task_data.department_id}")

    if task_data.division_id:
        division = crud.get_division(db, task_data.division_id)
        if not division:
            return Outcome.not_found(f"Division not found: {task_data.division_id}")
        if division.department_id != task_data.department_id:
            return Outcome.invalid("Division does not belong to the task's department")

    task = models.Task(
        title=task_data.title,
        description=task_data.description,
        task_type=task_data.task_type,
        mode=task_data.mode,
        status=models.TaskStatus.BACKLOG,
        department_id=task_data.department_id,
        management_id=task_data.management_id,
        division_id=task_data.division_id,
        creator_id=creator.id,
        creator_name=creator.name,
        minimum_grade=task_data.minimum_grade,
        deadline=task_data.deadline,
        base_price=task_data.base_price if task_data.mode == models.AuctionMode.MONEY else None,
        base_time_minutes=task_data.base_time_minutes if task_data.mode == models.AuctionMode.TIME else None,
        created_at=now,
        updated_at=now,
    )

    if task_data.task_type == models.TaskType.INDIVIDUAL:
        assignee = crud.get_user(db, task_data.assignee_id)
        if not assignee or assignee.department_id != task_data.department_id:
            return Outcome.invalid("Assignee not found or belongs to another department")
        if not has_grade_access(resolve_user_grade(assignee), task_data.minimum_grade):
            return Outcome.invalid("Assignee grade is below the task's minimum grade")
        task.assignee_id = assignee.id
        task.assignee_name = assignee.name

    opened = open_auction(task, now, settings)
    db.add(task)
    db.flush()

    crud.add_history_entry(db, task, models.TaskChangeType.CREATED, new_value=task.title,
                           changed_by=creator.id, changed_at=now)
    if opened:
        crud.add_history_entry(db, task, models.TaskChangeType.AUCTION_OPENED,
                               field_name="auction_planned_end_at",
                               new_value=task.auction_planned_end_at.isoformat(),
                               changed_by=creator.id, changed_at=now)

    db.commit()
    db.refresh(task)
    logger.info(f"Created task {task.id} ({task.task_type.value}, {task.mode.value}): {task.title}")
    return Outcome.success(task)


# =============================================================================
# Visibility and eligibility
# =============================================================================

def check_visibility(db: Session, task_id: UUID, user_id: UUID) -> Outcome[VisibilityDecision]:
    """Visibility decision for a task/user pair looked up by id."""
    task = crud.get_task(db, task_id)
    if not task:
        return Outcome.not_found(f"Task not found: {task_id}")
    user = crud.get_user(db, user_id)
    if not user:
        return Outcome.not_found(f"User not found: {user_id}")
    return Outcome.success(evaluate_visibility(task, user))


def check_bid_eligibility(db: Session, task_id: UUID, user_id: UUID) -> Outcome[BidEligibility]:
    """Bid eligibility decision for a task/user pair looked up by id."""
    task = crud.get_task(db, task_id)
    if not task:
        return Outcome.not_found(f"Task not found: {task_id}")
    user = crud.get_user(db, user_id)
    if not user:
        return Outcome.not_found(f"User not found: {user_id}")
    return Outcome.success(evaluate_bid_eligibility(task, user))


# =============================================================================
# Bidding
# =============================================================================

def _submit_bid_locked(
    db: Session,
    task_id: UUID,
    user_id: UUID,
    value_money,
    value_time_minutes,
    now: datetime,
) -> Outcome[models.AuctionBid]:
    task = _load_task_for_update(db, task_id)
    if not task:
        return Outcome.not_found(f"Task not found: {task_id}")

    user = crud.get_user(db, user_id)
    if not user:
        return Outcome.not_found(f"User not found: {user_id}")

    eligibility = evaluate_bid_eligibility(task, user)
    if not eligibility.allowed:
        return Outcome.denied(
            eligibility.reason,
            user_grade=eligibility.user_grade,
            minimum_grade=eligibility.minimum_grade,
        )

    reason = closed_reason(task)
    if reason:
        return Outcome.conflict(reason)

    try:
        candidate = extract_bid_value(task.mode, value_money, value_time_minutes)
    except BidValidationError as e:
        return Outcome.invalid(str(e))

    reason = check_improvement(task, candidate)
    if reason:
        return Outcome.conflict(reason, current_best=current_best(task))

    bid = apply_bid(task, user, eligibility.user_grade, candidate, now)
    task.updated_at = now
    db.add(bid)
    db.commit()
    db.refresh(bid)

    logger.info(f"Accepted bid {candidate} on task {task.id} from {user.username}")
    return Outcome.success(bid)


def submit_bid(
    db: Session,
    task_id: UUID,
    user_id: UUID,
    value_money=None,
    value_time_minutes=None,
    now: Optional[datetime] = None,
) -> Outcome[models.AuctionBid]:
    """
    Validate and apply a bid.

    Checks, in order: bid eligibility, auction still open, value present and
    matching the auction mode, strict improvement over the current best.
    The comparison and the write happen in the same critical section, so a
    bid that loses a race is re-evaluated against the winner's value.

    Args:
        db: Database session
        task_id: Task being bid on
        user_id: Bidder
        value_money: Offer for MONEY auctions (number or formatted string)
        value_time_minutes: Offer for TIME auctions (whole minutes)
        now: Clock override

    Returns:
        Outcome carrying the accepted AuctionBid
    """
    now = now or datetime.utcnow()
    with _task_locks.hold(task_id):
        try:
            outcome = _submit_bid_locked(db, task_id, user_id, value_money, value_time_minutes, now)
        except StaleDataError:
            db.rollback()
            logger.info(f"Bid on task {task_id} lost a concurrent update")
            return Outcome.conflict(REASON_NO_IMPROVEMENT)
        except Exception:
            db.rollback()
            raise

        if not outcome.ok:
            db.rollback()
            logger.debug(f"Bid on task {task_id} by {user_id} refused: {outcome.kind.value}: {outcome.reason}")
        return outcome


# =============================================================================
# Extension and close
# =============================================================================

def plan_sweep(
    task: models.Task,
    last_bid_at: Optional[datetime],
    now: datetime,
    stall_window: timedelta,
) -> SweepDecision:
    """
    Decide whether an open auction should be extended, closed, or left alone.

    Pure function of the observed state. An auction whose planned end has
    passed is closed. Before that, if no bid arrived within the stall window
    (measured from the latest bid, or the auction start when there are no
    bids), the planned end moves forward by one stall window. Each stall
    anchor extends the auction at most once, so repeated sweeps over the same
    state are no-ops.
    """
    if not is_auction_open(task) or task.auction_planned_end_at is None:
        return SweepDecision(SweepAction.NONE)

    if now >= task.auction_planned_end_at:
        return SweepDecision(SweepAction.CLOSE)

    anchor = last_bid_at or task.auction_start_at
    if anchor is None:
        return SweepDecision(SweepAction.NONE)

    if now - anchor > stall_window and task.auction_extended_from_at != anchor:
        return SweepDecision(
            SweepAction.EXTEND,
            planned_end_at=task.auction_planned_end_at + stall_window,
            anchor_at=anchor,
        )
    return SweepDecision(SweepAction.NONE)


def _apply_extension(db: Session, task: models.Task, decision: SweepDecision, now: datetime) -> None:
    old_end = task.auction_planned_end_at
    task.auction_planned_end_at = decision.planned_end_at
    task.auction_extended_from_at = decision.anchor_at
    task.updated_at = now
    crud.add_history_entry(
        db, task, models.TaskChangeType.AUCTION_EXTENDED,
        field_name="auction_planned_end_at",
        old_value=old_end.isoformat(),
        new_value=decision.planned_end_at.isoformat(),
        changed_at=now,
    )
    logger.info(f"Extended auction {task.id} to {decision.planned_end_at.isoformat()}")


def _apply_close(db: Session, task: models.Task, now: datetime) -> None:
    task.auction_end_at = now
    task.updated_at = now

    if task.auction_has_bids and task.auction_leader_id is not None:
        validate_transition(task.status, models.TaskStatus.IN_PROGRESS)
        old_status = task.status
        task.auction_winner_id = task.auction_leader_id
        task.auction_winner_name = task.auction_leader_name
        task.assignee_id = task.auction_leader_id
        task.assignee_name = task.auction_leader_name
        task.status = models.TaskStatus.IN_PROGRESS
        crud.add_history_entry(
            db, task, models.TaskChangeType.STATUS_CHANGED,
            field_name="status",
            old_value=old_status.value,
            new_value=task.status.value,
            changed_at=now,
        )
        crud.add_history_entry(
            db, task, models.TaskChangeType.AUCTION_CLOSED,
            field_name="auction_winner_id",
            new_value=str(task.auction_winner_id),
            comment=f"Won by {task.auction_winner_name}",
            changed_at=now,
        )
        logger.info(f"Closed auction {task.id}, winner: {task.auction_winner_name}")
    else:
        crud.add_history_entry(
            db, task, models.TaskChangeType.AUCTION_CLOSED,
            comment="Closed without bids",
            changed_at=now,
        )
        logger.info(f"Closed auction {task.id} without bids; task stays in backlog")


def reconcile_auction(
    db: Session,
    task_id: UUID,
    now: Optional[datetime] = None,
    settings: Optional[Settings] = None,
) -> Outcome[SweepDecision]:
    """
    Re-evaluate one auction under its lock and apply the sweep decision.

    Safe to call redundantly and from several workers.
    """
    settings, now = _resolve(settings, now)
    stall_window = timedelta(hours=settings.stall_window_hours)

    with _task_locks.hold(task_id):
        try:
            task = _load_task_for_update(db, task_id)
            if not task:
                return Outcome.not_found(f"Task not found: {task_id}")

            decision = plan_sweep(task, crud.get_latest_bid_at(db, task.id), now, stall_window)
            if decision.action == SweepAction.EXTEND:
                _apply_extension(db, task, decision, now)
            elif decision.action == SweepAction.CLOSE:
                _apply_close(db, task, now)
            else:
                db.rollback()
                return Outcome.success(decision)

            db.commit()
            return Outcome.success(decision)
        except StaleDataError:
            db.rollback()
            logger.info(f"Auction {task_id} changed concurrently; skipping this pass")
            return Outcome.conflict("Auction state changed concurrently")
        except SQLAlchemyError:
            db.rollback()
            raise


def close_auction(
    db: Session,
    task_id: UUID,
    now: Optional[datetime] = None,
) -> Outcome[models.Task]:
    """
    Close an auction whose planned end has passed.

    Closing an already-closed auction is a no-op. Before the planned end the
    close is refused; the sweep extends or closes the auction on schedule. With bids, the provisional
    winner becomes the assignee and the task moves to in_progress; without
    bids the task stays in the backlog.
    """
    now = now or datetime.utcnow()
    with _task_locks.hold(task_id):
        try:
            task = _load_task_for_update(db, task_id)
            if not task:
                return Outcome.not_found(f"Task not found: {task_id}")
            if task.task_type == models.TaskType.INDIVIDUAL:
                db.rollback()
                return Outcome.conflict("Task is assigned directly, not auctioned")
            if task.auction_end_at is not None:
                db.rollback()
                return Outcome.success(task)
            if task.status != models.TaskStatus.BACKLOG:
                db.rollback()
                return Outcome.conflict(f"Auction cannot close while task is {task.status.value}")
            if task.auction_planned_end_at is not None and now < task.auction_planned_end_at:
                db.rollback()
                return Outcome.conflict(
                    REASON_CLOSE_BEFORE_END,
                    planned_end_at=task.auction_planned_end_at,
                )

            _apply_close(db, task, now)
            db.commit()
            db.refresh(task)
            return Outcome.success(task)
        except StaleDataError:
            db.rollback()
            return Outcome.conflict("Auction state changed concurrently")
        except SQLAlchemyError:
            db.rollback()
            raise


def sweep_extensions_and_closes(
    db: Session,
    now: Optional[datetime] = None,
    settings: Optional[Settings] = None,
) -> SweepReport:
    """
    Reconcile every open auction at ``now``.

    Args:
        db: Database session
        now: Clock override
        settings: Settings override (stall window)

    Returns:
        SweepReport listing extended and closed auctions
    """
    settings, now = _resolve(settings, now)
    report = SweepReport()

    for task_id in crud.get_open_auction_ids(db):
        report.checked += 1
        outcome = reconcile_auction(db, task_id, now, settings)
        if not outcome.ok:
            continue
        if outcome.value.action == SweepAction.EXTEND:
            report.extended.append(task_id)
        elif outcome.value.action == SweepAction.CLOSE:
            report.closed.append(task_id)

    if report.extended or report.closed:
        logger.info(
            f"Sweep checked {report.checked} auctions: "
            f"{len(report.extended)} extended, {len(report.closed)} closed"
        )
    return report


# =============================================================================
# Board transitions
# =============================================================================

def _authorize_transition(
    task: models.Task,
    actor: models.User,
    new_status: models.TaskStatus,
    comment: Optional[str],
) -> Optional[Outcome]:
    """
    Check that ``actor`` may move ``task`` to ``new_status``.

    Admins may make any move. A director acts on tasks of their own
    department. Starting work and withdrawing are open to the assignee and
    the director; submitting for review is the assignee's; accepting and
    returning for rework are the director's, and rework needs a comment.

    Returns:
        None when allowed, otherwise a denied or validation Outcome
    """
    is_admin = actor.role == models.Role.ADMIN
    is_director = (
        actor.role == models.Role.DIRECTOR
        and actor.department_id is not None
        and actor.department_id == task.department_id
    )
    is_assignee = task.assignee_id is not None and task.assignee_id == actor.id

    if new_status == models.TaskStatus.UNDER_REVIEW:
        allowed = is_assignee or is_admin
    elif new_status == models.TaskStatus.DONE:
        allowed = is_director or is_admin
    elif new_status == models.TaskStatus.IN_PROGRESS and task.status == models.TaskStatus.UNDER_REVIEW:
        allowed = is_director or is_admin
    else:
        allowed = is_assignee or is_director or is_admin

    if not allowed:
        return Outcome.denied(
            f"User may not move this task to {new_status.value}",
            current_status=task.status,
        )

    if (
        task.status == models.TaskStatus.UNDER_REVIEW
        and new_status == models.TaskStatus.IN_PROGRESS
        and not (comment or "").strip()
    ):
        return Outcome.invalid(REASON_REWORK_COMMENT)
    return None


def transition_status(
    db: Session,
    task_id: UUID,
    new_status: models.TaskStatus,
    actor_id: UUID,
    comment: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Outcome[models.Task]:
    """
    Move a task along the board on behalf of ``actor_id``.

    Leaving the backlog requires an assignee and a closed auction.
    Withdrawing to the backlog clears the assignee; the auction stays closed.
    See ``_authorize_transition`` for who may make each move.

    Returns:
        Outcome carrying the updated Task; invalid edges are conflicts
    """
    now = now or datetime.utcnow()
    with _task_locks.hold(task_id):
        try:
            task = _load_task_for_update(db, task_id)
            if not task:
                return Outcome.not_found(f"Task not found: {task_id}")
            actor = crud.get_user(db, actor_id)
            if not actor:
                db.rollback()
                return Outcome.not_found(f"User not found: {actor_id}")

            try:
                validate_transition(task.status, new_status)
            except StateTransitionError as e:
                db.rollback()
                return Outcome.conflict(
                    str(e),
                    current_status=e.current_status,
                    allowed_transitions=e.allowed_transitions,
                )

            if task.status == models.TaskStatus.BACKLOG:
                if is_auction_open(task):
                    db.rollback()
                    return Outcome.conflict("Auction is still open; close it to assign a winner")
                if task.assignee_id is None:
                    db.rollback()
                    return Outcome.conflict("Task has no assignee")

            denial = _authorize_transition(task, actor, new_status, comment)
            if denial is not None:
                db.rollback()
                return denial

            old_status = task.status
            task.status = new_status
            task.updated_at = now
            if new_status == models.TaskStatus.BACKLOG:
                task.assignee_id = None
                task.assignee_name = None
            elif new_status == models.TaskStatus.DONE:
                task.done_at = now

            crud.add_history_entry(
                db, task, models.TaskChangeType.STATUS_CHANGED,
                field_name="status",
                old_value=old_status.value,
                new_value=new_status.value,
                changed_by=actor_id,
                comment=comment,
                changed_at=now,
            )
            db.commit()
            db.refresh(task)
            logger.info(f"Task {task.id}: {old_status.value} → {new_status.value}")
            return Outcome.success(task)
        except StaleDataError:
            db.rollback()
            return Outcome.conflict("Task changed concurrently; reload and retry")
        except SQLAlchemyError:
            db.rollback()
            raise
