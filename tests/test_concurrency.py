"""Tests for per-task serialization of bids."""
import threading
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from auction_core import auction_lifecycle, crud, models, schemas
from auction_core.bid_ratchet import REASON_NO_IMPROVEMENT
from auction_core.locks import KeyedLock
from auction_core.outcomes import OutcomeKind

BIDDERS = 8


@pytest.fixture
def file_session_factory(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'auction.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    models.Base.metadata.create_all(engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def auction(file_session_factory, settings, now):
    """An open MONEY auction with BIDDERS eligible employees."""
    db = file_session_factory()
    try:
        department = models.Department(name="Sales")
        db.add(department)
        db.commit()

        creator = models.User(username="creator", name="Creator", role=models.Role.MANAGER,
                              department_id=department.id, points=70)
        bidders = [
            models.User(username=f"bidder{i}", name=f"Bidder {i}", department_id=department.id, points=40)
            for i in range(BIDDERS)
        ]
        db.add_all([creator, *bidders])
        db.commit()

        outcome = auction_lifecycle.create_task(db, schemas.TaskCreate(
            title="Shared task", department_id=department.id, base_price=Decimal("900000"),
        ), creator.id, now=now, settings=settings)
        return outcome.value.id, [b.id for b in bidders]
    finally:
        db.close()


def _bid_concurrently(session_factory, task_id, offers, now):
    barrier = threading.Barrier(len(offers))
    results = [None] * len(offers)

    def worker(index, user_id, value):
        db = session_factory()
        try:
            barrier.wait()
            results[index] = auction_lifecycle.submit_bid(db, task_id, user_id, value_money=value, now=now)
        finally:
            db.close()

    threads = [
        threading.Thread(target=worker, args=(i, user_id, value))
        for i, (user_id, value) in enumerate(offers)
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    return results


class TestConcurrentBids:
    """Test that concurrent bids on one task never both win."""

    def test_identical_offers_accept_exactly_one(self, file_session_factory, auction, now):
        task_id, bidder_ids = auction
        offers = [(user_id, 950_000) for user_id in bidder_ids]

        results = _bid_concurrently(file_session_factory, task_id, offers, now)

        accepted = [r for r in results if r.ok]
        assert len(accepted) == 1
        for refused in (r for r in results if not r.ok):
            assert refused.kind == OutcomeKind.CONFLICT
            assert refused.reason == REASON_NO_IMPROVEMENT

        db = file_session_factory()
        try:
            assert len(crud.get_task_bids(db, task_id)) == 1
            task = crud.get_task(db, task_id)
            assert task.current_price == Decimal("950000.00")
            assert task.auction_leader_id == accepted[0].value.bidder_id
        finally:
            db.close()

    def test_best_offer_always_wins(self, file_session_factory, auction, now):
        task_id, bidder_ids = auction
        offers = [(user_id, 950_000 + 10_000 * i) for i, user_id in enumerate(bidder_ids)]

        results = _bid_concurrently(file_session_factory, task_id, offers, now)

        assert any(r.ok for r in results)
        db = file_session_factory()
        try:
            task = crud.get_task(db, task_id)
            assert task.current_price == Decimal(950_000 + 10_000 * (BIDDERS - 1))
            assert task.auction_leader_id == bidder_ids[-1]
            accepted_values = [b.value_money for b in crud.get_task_bids(db, task_id)]
            assert len(accepted_values) == sum(1 for r in results if r.ok)
        finally:
            db.close()


class TestKeyedLock:
    """Test the striped lock."""

    def test_same_key_same_lock(self):
        locks = KeyedLock(stripes=4)
        assert locks._lock_for("task-1") is locks._lock_for("task-1")
        assert len(locks) == 4

    def test_reentrant(self):
        locks = KeyedLock(stripes=1)
        with locks.hold("a"):
            with locks.hold("b"):
                pass

    def test_serializes_holders(self):
        locks = KeyedLock(stripes=2)
        counter = {"value": 0, "max_inside": 0, "inside": 0}

        def worker():
            for _ in range(200):
                with locks.hold("task"):
                    counter["inside"] += 1
                    counter["max_inside"] = max(counter["max_inside"], counter["inside"])
                    counter["value"] += 1
                    counter["inside"] -= 1

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert counter["value"] == 800
        assert counter["max_inside"] == 1

    def test_rejects_zero_stripes(self):
        with pytest.raises(ValueError):
            KeyedLock(stripes=0)
