"""Tests for the auction lifecycle controller."""
from datetime import timedelta
from decimal import Decimal
from types import SimpleNamespace
from uuid import uuid4

import pytest

from auction_core import auction_lifecycle, crud, models
from auction_core.auction_lifecycle import SweepAction, plan_sweep
from auction_core.bid_ratchet import (
    REASON_AUCTION_CLOSED,
    REASON_NO_IMPROVEMENT,
    REASON_NOT_AUCTIONED,
)
from auction_core.auction_access import REASON_ADMIN_CANNOT_BID, REASON_CREATOR_CANNOT_BID
from auction_core.outcomes import OutcomeKind

STALL = timedelta(hours=4)
CLOSE_AFTER = timedelta(hours=24)


def _history_types(db, task):
    return [entry.change_type for entry in crud.get_task_history(db, task.id)]


class TestOpenAuction:
    """Test task creation and auction opening."""

    def test_department_task_opens_auction(self, db, make_task, now):
        task = make_task()
        assert task.status == models.TaskStatus.BACKLOG
        assert task.auction_start_at == now
        assert task.auction_planned_end_at == now + timedelta(hours=24)
        assert task.auction_end_at is None
        assert not task.auction_has_bids
        assert _history_types(db, task) == [
            models.TaskChangeType.CREATED,
            models.TaskChangeType.AUCTION_OPENED,
        ]

    def test_individual_task_is_not_auctioned(self, db, make_task, make_user):
        assignee = make_user()
        task = make_task(task_type=models.TaskType.INDIVIDUAL, assignee_id=assignee.id)
        assert task.auction_start_at is None
        assert task.auction_planned_end_at is None
        assert task.assignee_id == assignee.id
        assert _history_types(db, task) == [models.TaskChangeType.CREATED]

    def test_individual_assignee_needs_minimum_grade(self, db, org, creator, make_user, settings):
        assignee = make_user(grade=models.Grade.D)
        data = SimpleNamespace(
            title="Audit", description=None,
            task_type=models.TaskType.INDIVIDUAL, mode=models.AuctionMode.MONEY,
            department_id=org["department"].id, management_id=None, division_id=None,
            minimum_grade=models.Grade.B, deadline=None,
            base_price=Decimal("1000"), base_time_minutes=None,
            assignee_id=assignee.id,
        )
        outcome = auction_lifecycle.create_task(db, data, creator.id, settings=settings)
        assert outcome.kind == OutcomeKind.VALIDATION

    def test_unknown_creator(self, db, org, settings):
        data = SimpleNamespace(department_id=org["department"].id)
        outcome = auction_lifecycle.create_task(db, data, uuid4(), settings=settings)
        assert outcome.kind == OutcomeKind.NOT_FOUND

    def test_division_from_other_department(self, db, org, creator, settings):
        data = SimpleNamespace(
            department_id=org["other_department"].id,
            division_id=org["division"].id,
        )
        outcome = auction_lifecycle.create_task(db, data, creator.id, settings=settings)
        assert outcome.kind == OutcomeKind.VALIDATION


class TestSubmitBid:
    """Test bid submission and its ordered checks."""

    def test_money_scenario(self, db, make_task, make_user, now):
        """Test base 900 000: 950 000 and 1 000 000 accepted, 999 000 refused."""
        task = make_task()
        first, second = make_user(name="First"), make_user(name="Second")

        outcome = auction_lifecycle.submit_bid(db, task.id, first.id, value_money=900_000, now=now)
        assert outcome.reason == REASON_NO_IMPROVEMENT

        outcome = auction_lifecycle.submit_bid(db, task.id, first.id, value_money="950 000", now=now)
        assert outcome.ok
        assert outcome.value.value_money == Decimal("950000.00")

        outcome = auction_lifecycle.submit_bid(db, task.id, second.id, value_money=950_000, now=now)
        assert outcome.reason == REASON_NO_IMPROVEMENT

        outcome = auction_lifecycle.submit_bid(db, task.id, second.id, value_money=1_000_000, now=now)
        assert outcome.ok

        outcome = auction_lifecycle.submit_bid(db, task.id, first.id, value_money="999 000", now=now)
        assert outcome.kind == OutcomeKind.CONFLICT
        assert outcome.reason == REASON_NO_IMPROVEMENT

        db.refresh(task)
        assert task.current_price == Decimal("1000000.00")
        assert task.auction_leader_id == second.id
        assert task.auction_has_bids
        assert len(crud.get_task_bids(db, task.id)) == 2

    def test_time_scenario(self, db, make_task, make_user, now):
        task = make_task(mode=models.AuctionMode.TIME, base_time_minutes=600)
        bidder = make_user()

        assert auction_lifecycle.submit_bid(db, task.id, bidder.id, value_time_minutes=600, now=now).reason == REASON_NO_IMPROVEMENT
        assert auction_lifecycle.submit_bid(db, task.id, bidder.id, value_time_minutes="480", now=now).ok

        db.refresh(task)
        assert task.current_time_minutes == 480

    def test_admin_denied(self, db, make_task, make_user, now):
        task = make_task()
        admin = make_user(role=models.Role.ADMIN)
        outcome = auction_lifecycle.submit_bid(db, task.id, admin.id, value_money=1_000_000, now=now)
        assert outcome.kind == OutcomeKind.DENIED
        assert outcome.reason == REASON_ADMIN_CANNOT_BID

    def test_creator_denied(self, db, make_task, creator, now):
        task = make_task()
        outcome = auction_lifecycle.submit_bid(db, task.id, creator.id, value_money=1_000_000, now=now)
        assert outcome.kind == OutcomeKind.DENIED
        assert outcome.reason == REASON_CREATOR_CANNOT_BID

    def test_grade_denial_carries_grades(self, db, make_task, make_user, now):
        task = make_task(minimum_grade=models.Grade.B)
        bidder = make_user(grade=models.Grade.C)
        outcome = auction_lifecycle.submit_bid(db, task.id, bidder.id, value_money=1_000_000, now=now)
        assert outcome.kind == OutcomeKind.DENIED
        assert outcome.details["user_grade"] == models.Grade.C
        assert outcome.details["minimum_grade"] == models.Grade.B

    def test_eligibility_checked_before_value(self, db, org, make_task, make_user, now):
        """Test that an ineligible bidder is denied even with a malformed value."""
        task = make_task()
        outsider = make_user(department=org["other_department"])
        outcome = auction_lifecycle.submit_bid(db, task.id, outsider.id, value_money="abc", now=now)
        assert outcome.kind == OutcomeKind.DENIED

    def test_malformed_value(self, db, make_task, make_user, now):
        task = make_task()
        bidder = make_user()
        outcome = auction_lifecycle.submit_bid(db, task.id, bidder.id, value_money="abc", now=now)
        assert outcome.kind == OutcomeKind.VALIDATION

    def test_wrong_mode_value(self, db, make_task, make_user, now):
        task = make_task()
        bidder = make_user()
        outcome = auction_lifecycle.submit_bid(db, task.id, bidder.id, value_time_minutes=60, now=now)
        assert outcome.kind == OutcomeKind.VALIDATION

    def test_closed_checked_before_value(self, db, make_task, make_user, now):
        """Test that a closed auction refuses even malformed bids as closed."""
        task = make_task()
        bidder = make_user()
        auction_lifecycle.close_auction(db, task.id, now=now + CLOSE_AFTER)
        outcome = auction_lifecycle.submit_bid(db, task.id, bidder.id, value_money="abc", now=now)
        assert outcome.kind == OutcomeKind.CONFLICT
        assert outcome.reason == REASON_AUCTION_CLOSED

    def test_individual_task_refuses_bids(self, db, make_task, make_user, now):
        assignee, bidder = make_user(), make_user()
        task = make_task(task_type=models.TaskType.INDIVIDUAL, assignee_id=assignee.id)
        outcome = auction_lifecycle.submit_bid(db, task.id, bidder.id, value_money=1_000_000, now=now)
        assert outcome.kind == OutcomeKind.CONFLICT
        assert outcome.reason == REASON_NOT_AUCTIONED

    def test_missing_task_and_user(self, db, make_task, make_user, now):
        task = make_task()
        bidder = make_user()
        assert auction_lifecycle.submit_bid(db, uuid4(), bidder.id, value_money=1, now=now).kind == OutcomeKind.NOT_FOUND
        assert auction_lifecycle.submit_bid(db, task.id, uuid4(), value_money=1, now=now).kind == OutcomeKind.NOT_FOUND

    def test_out_of_range_money_is_validation(self, db, make_task, make_user, now):
        """Test that oversized or sub-cent offers are refused without touching storage."""
        task = make_task()
        bidder = make_user()
        for value in (10 ** 27, "1000000000000", "950000.006"):
            outcome = auction_lifecycle.submit_bid(db, task.id, bidder.id, value_money=value, now=now)
            assert outcome.kind == OutcomeKind.VALIDATION, value

        assert auction_lifecycle.submit_bid(db, task.id, bidder.id, value_money="950000.01", now=now).ok
        db.refresh(task)
        assert task.current_price == Decimal("950000.01")

    def test_refused_bid_leaves_task_unchanged(self, db, make_task, make_user, now):
        task = make_task()
        bidder = make_user()
        version = task.version
        auction_lifecycle.submit_bid(db, task.id, bidder.id, value_money=100, now=now)
        db.refresh(task)
        assert task.version == version
        assert task.current_price is None
        assert crud.get_task_bids(db, task.id) == []


class TestPlanSweep:
    """Test the pure extension/close decision."""

    def _task(self, now, **overrides):
        fields = dict(
            task_type=models.TaskType.DEPARTMENT,
            status=models.TaskStatus.BACKLOG,
            auction_end_at=None,
            auction_start_at=now,
            auction_planned_end_at=now + timedelta(hours=24),
            auction_extended_from_at=None,
        )
        fields.update(overrides)
        return SimpleNamespace(**fields)

    def test_recent_activity_does_nothing(self, now):
        task = self._task(now)
        decision = plan_sweep(task, None, now + timedelta(hours=3), STALL)
        assert decision.action == SweepAction.NONE

    def test_stalled_auction_extends(self, now):
        task = self._task(now)
        decision = plan_sweep(task, None, now + timedelta(hours=5), STALL)
        assert decision.action == SweepAction.EXTEND
        assert decision.planned_end_at == now + timedelta(hours=28)
        assert decision.anchor_at == now

    def test_stall_measured_from_latest_bid(self, now):
        task = self._task(now)
        last_bid = now + timedelta(hours=3)
        assert plan_sweep(task, last_bid, now + timedelta(hours=6), STALL).action == SweepAction.NONE
        assert plan_sweep(task, last_bid, now + timedelta(hours=8), STALL).action == SweepAction.EXTEND

    def test_one_extension_per_anchor(self, now):
        """Test that an already-extended stall does not extend again."""
        task = self._task(now, auction_extended_from_at=now)
        decision = plan_sweep(task, None, now + timedelta(hours=9), STALL)
        assert decision.action == SweepAction.NONE

    def test_close_after_planned_end(self, now):
        task = self._task(now)
        assert plan_sweep(task, None, now + timedelta(hours=24), STALL).action == SweepAction.CLOSE

    def test_closed_auction_is_ignored(self, now):
        task = self._task(now, auction_end_at=now)
        assert plan_sweep(task, None, now + timedelta(hours=30), STALL).action == SweepAction.NONE


class TestSweepAndClose:
    """Test extension and close against the database."""

    def test_full_auction_lifecycle(self, db, make_task, make_user, now, settings):
        """Test extend on stall, extend again after a new bid, then close with a winner."""
        task = make_task()
        bidder = make_user(name="Winner")

        report = auction_lifecycle.sweep_extensions_and_closes(db, now + timedelta(hours=5), settings)
        assert report.extended == [task.id]
        db.refresh(task)
        assert task.auction_planned_end_at == now + timedelta(hours=28)

        report = auction_lifecycle.sweep_extensions_and_closes(db, now + timedelta(hours=5, minutes=10), settings)
        assert report.extended == []
        assert report.closed == []

        bid_at = now + timedelta(hours=6)
        assert auction_lifecycle.submit_bid(db, task.id, bidder.id, value_money=950_000, now=bid_at).ok

        report = auction_lifecycle.sweep_extensions_and_closes(db, now + timedelta(hours=11), settings)
        assert report.extended == [task.id]
        db.refresh(task)
        assert task.auction_planned_end_at == now + timedelta(hours=32)
        assert task.auction_extended_from_at == bid_at

        report = auction_lifecycle.sweep_extensions_and_closes(db, now + timedelta(hours=32), settings)
        assert report.closed == [task.id]
        db.refresh(task)
        assert task.status == models.TaskStatus.IN_PROGRESS
        assert task.auction_end_at == now + timedelta(hours=32)
        assert task.auction_winner_id == bidder.id
        assert task.assignee_id == bidder.id
        assert task.assignee_name == "Winner"

        report = auction_lifecycle.sweep_extensions_and_closes(db, now + timedelta(hours=40), settings)
        assert report.checked == 0

    def test_close_without_bids_stays_in_backlog(self, db, make_task, make_user, now):
        task = make_task()
        outcome = auction_lifecycle.close_auction(db, task.id, now=now + CLOSE_AFTER)
        assert outcome.ok
        task = outcome.value
        assert task.status == models.TaskStatus.BACKLOG
        assert task.auction_end_at == now + CLOSE_AFTER
        assert task.assignee_id is None
        assert task.auction_winner_id is None

        bidder = make_user()
        outcome = auction_lifecycle.submit_bid(db, task.id, bidder.id, value_money=1_000_000, now=now + CLOSE_AFTER)
        assert outcome.reason == REASON_AUCTION_CLOSED

    def test_close_is_idempotent(self, db, make_task, make_user, now):
        task = make_task()
        bidder = make_user()
        auction_lifecycle.submit_bid(db, task.id, bidder.id, value_money=950_000, now=now)

        first = auction_lifecycle.close_auction(db, task.id, now=now + CLOSE_AFTER)
        second = auction_lifecycle.close_auction(db, task.id, now=now + CLOSE_AFTER + timedelta(hours=1))
        assert first.ok and second.ok
        assert second.value.auction_end_at == now + CLOSE_AFTER
        assert second.value.auction_winner_id == bidder.id
        assert _history_types(db, task).count(models.TaskChangeType.AUCTION_CLOSED) == 1

    def test_close_before_planned_end_refused(self, db, make_task, make_user, now):
        """Test that an early close leaves the auction open and unassigned."""
        task = make_task()
        bidder = make_user()
        assert auction_lifecycle.submit_bid(db, task.id, bidder.id, value_money=950_000, now=now).ok

        outcome = auction_lifecycle.close_auction(db, task.id, now=now + timedelta(hours=1))
        assert outcome.kind == OutcomeKind.CONFLICT
        assert outcome.reason == auction_lifecycle.REASON_CLOSE_BEFORE_END
        assert outcome.details["planned_end_at"] == now + CLOSE_AFTER

        db.refresh(task)
        assert task.auction_end_at is None
        assert task.assignee_id is None
        assert task.status == models.TaskStatus.BACKLOG
        assert models.TaskChangeType.AUCTION_CLOSED not in _history_types(db, task)

        rival = make_user()
        assert auction_lifecycle.submit_bid(db, task.id, rival.id, value_money=960_000, now=now + timedelta(hours=2)).ok

    def test_close_individual_task(self, db, make_task, make_user, now):
        task = make_task(task_type=models.TaskType.INDIVIDUAL, assignee_id=make_user().id)
        assert auction_lifecycle.close_auction(db, task.id, now=now).kind == OutcomeKind.CONFLICT

    def test_reconcile_missing_task(self, db, settings, now):
        assert auction_lifecycle.reconcile_auction(db, uuid4(), now, settings).kind == OutcomeKind.NOT_FOUND


class TestTransitions:
    """Test board transitions through the controller."""

    @staticmethod
    def _won_task(db, make_task, make_user, now):
        task = make_task()
        winner = make_user()
        auction_lifecycle.submit_bid(db, task.id, winner.id, value_money=950_000, now=now)
        closed = auction_lifecycle.close_auction(db, task.id, now=now + CLOSE_AFTER).value
        return closed, winner

    @pytest.fixture
    def director(self, make_user):
        return make_user(role=models.Role.DIRECTOR, name="Director")

    def test_review_and_done(self, db, make_task, make_user, director, now):
        task, winner = self._won_task(db, make_task, make_user, now)
        done_at = now + timedelta(days=2)

        assert auction_lifecycle.transition_status(
            db, task.id, models.TaskStatus.UNDER_REVIEW, winner.id, now=now
        ).ok
        outcome = auction_lifecycle.transition_status(db, task.id, models.TaskStatus.DONE, director.id, now=done_at)
        assert outcome.ok
        assert outcome.value.done_at == done_at

        outcome = auction_lifecycle.transition_status(
            db, task.id, models.TaskStatus.IN_PROGRESS, director.id, comment="Reopen", now=done_at
        )
        assert outcome.kind == OutcomeKind.CONFLICT
        assert "immutable" in outcome.reason.lower()

    def test_invalid_edge_reports_allowed(self, db, make_task, make_user, director, now):
        task, _ = self._won_task(db, make_task, make_user, now)
        outcome = auction_lifecycle.transition_status(db, task.id, models.TaskStatus.DONE, director.id)
        assert outcome.kind == OutcomeKind.CONFLICT
        assert outcome.reason.startswith("Invalid transition:")
        assert set(outcome.details["allowed_transitions"]) == {
            models.TaskStatus.UNDER_REVIEW, models.TaskStatus.BACKLOG,
        }

    def test_withdraw_to_backlog_clears_assignee(self, db, make_task, make_user, director, now):
        task, _ = self._won_task(db, make_task, make_user, now)
        outcome = auction_lifecycle.transition_status(db, task.id, models.TaskStatus.BACKLOG, director.id)
        assert outcome.ok
        assert outcome.value.assignee_id is None
        assert outcome.value.auction_end_at is not None

        outcome = auction_lifecycle.transition_status(db, task.id, models.TaskStatus.IN_PROGRESS, director.id)
        assert outcome.kind == OutcomeKind.CONFLICT
        assert outcome.reason == "Task has no assignee"

    def test_cannot_start_open_auction(self, db, make_task, director):
        task = make_task()
        outcome = auction_lifecycle.transition_status(db, task.id, models.TaskStatus.IN_PROGRESS, director.id)
        assert outcome.kind == OutcomeKind.CONFLICT
        assert "still open" in outcome.reason

    def test_status_history_recorded(self, db, make_task, make_user, now):
        task, winner = self._won_task(db, make_task, make_user, now)
        auction_lifecycle.transition_status(
            db, task.id, models.TaskStatus.UNDER_REVIEW, winner.id, comment="Ready", now=now
        )
        last = crud.get_task_history(db, task.id)[-1]
        assert last.change_type == models.TaskChangeType.STATUS_CHANGED
        assert last.old_value == "in_progress"
        assert last.new_value == "under_review"
        assert last.comment == "Ready"
        assert last.changed_by == winner.id

    def test_missing_task(self, db, director):
        outcome = auction_lifecycle.transition_status(db, uuid4(), models.TaskStatus.DONE, director.id)
        assert outcome.kind == OutcomeKind.NOT_FOUND

    def test_missing_actor(self, db, make_task, make_user, now):
        task, _ = self._won_task(db, make_task, make_user, now)
        outcome = auction_lifecycle.transition_status(db, task.id, models.TaskStatus.UNDER_REVIEW, uuid4())
        assert outcome.kind == OutcomeKind.NOT_FOUND


class TestTransitionPermissions:
    """Test who may move a task to each status."""

    @pytest.fixture
    def won(self, db, make_task, make_user, now):
        return TestTransitions._won_task(db, make_task, make_user, now)

    def _move(self, db, task, status, actor, comment=None):
        return auction_lifecycle.transition_status(db, task.id, status, actor.id, comment=comment)

    def test_only_assignee_submits_for_review(self, db, won, make_user):
        task, winner = won
        colleague = make_user()
        outcome = self._move(db, task, models.TaskStatus.UNDER_REVIEW, colleague)
        assert outcome.kind == OutcomeKind.DENIED
        db.refresh(task)
        assert task.status == models.TaskStatus.IN_PROGRESS

        assert self._move(db, task, models.TaskStatus.UNDER_REVIEW, winner).ok

    def test_assignee_cannot_accept_own_work(self, db, won):
        task, winner = won
        assert self._move(db, task, models.TaskStatus.UNDER_REVIEW, winner).ok
        outcome = self._move(db, task, models.TaskStatus.DONE, winner)
        assert outcome.kind == OutcomeKind.DENIED
        db.refresh(task)
        assert task.status == models.TaskStatus.UNDER_REVIEW
        assert task.done_at is None

    def test_director_of_other_department_denied(self, db, org, won, make_user):
        task, winner = won
        outsider = make_user(role=models.Role.DIRECTOR, department=org["other_department"])
        assert self._move(db, task, models.TaskStatus.UNDER_REVIEW, winner).ok
        assert self._move(db, task, models.TaskStatus.DONE, outsider).kind == OutcomeKind.DENIED

    def test_manager_cannot_accept(self, db, won, creator):
        task, winner = won
        assert self._move(db, task, models.TaskStatus.UNDER_REVIEW, winner).ok
        assert self._move(db, task, models.TaskStatus.DONE, creator).kind == OutcomeKind.DENIED

    def test_rework_requires_comment(self, db, won, make_user):
        task, winner = won
        director = make_user(role=models.Role.DIRECTOR)
        assert self._move(db, task, models.TaskStatus.UNDER_REVIEW, winner).ok

        outcome = self._move(db, task, models.TaskStatus.IN_PROGRESS, director, comment="  ")
        assert outcome.kind == OutcomeKind.VALIDATION
        assert outcome.reason == auction_lifecycle.REASON_REWORK_COMMENT

        outcome = self._move(db, task, models.TaskStatus.IN_PROGRESS, director, comment="Add totals")
        assert outcome.ok
        assert crud.get_task_history(db, task.id)[-1].comment == "Add totals"

    def test_assignee_cannot_send_back_for_rework(self, db, won):
        task, winner = won
        assert self._move(db, task, models.TaskStatus.UNDER_REVIEW, winner).ok
        outcome = self._move(db, task, models.TaskStatus.IN_PROGRESS, winner, comment="Oops")
        assert outcome.kind == OutcomeKind.DENIED

    def test_admin_may_make_any_move(self, db, won, make_user):
        task, _ = won
        admin = make_user(role=models.Role.ADMIN)
        assert self._move(db, task, models.TaskStatus.UNDER_REVIEW, admin).ok
        assert self._move(db, task, models.TaskStatus.DONE, admin).ok

    def test_assignee_may_withdraw(self, db, won):
        task, winner = won
        outcome = self._move(db, task, models.TaskStatus.BACKLOG, winner)
        assert outcome.ok
        assert outcome.value.assignee_id is None
