"""Shared fixtures: in-memory database, organization chart, users and tasks."""
from datetime import datetime
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from auction_core import auction_lifecycle, models, schemas
from auction_core.config import Settings

NOW = datetime(2026, 3, 2, 9, 0)


@pytest.fixture
def settings():
    return Settings(
        auction_duration_hours=24,
        stall_window_hours=4,
        sweep_enabled=False,
    )


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    models.Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def org(db):
    """Two departments; the first has one management with two divisions."""
    sales = models.Department(name="Sales")
    finance = models.Department(name="Finance")
    db.add_all([sales, finance])
    db.flush()

    management = models.Management(name="Retail", department_id=sales.id)
    db.add(management)
    db.flush()

    north = models.Division(name="North", department_id=sales.id, management_id=management.id)
    south = models.Division(name="South", department_id=sales.id, management_id=management.id)
    db.add_all([north, south])
    db.commit()

    return {
        "department": sales,
        "other_department": finance,
        "management": management,
        "division": north,
        "other_division": south,
    }


@pytest.fixture
def make_user(db, org):
    counter = {"n": 0}

    def _make_user(
        role=models.Role.EMPLOYEE,
        grade=None,
        points=40,
        department=None,
        division=None,
        name=None,
    ):
        counter["n"] += 1
        department = department if department is not None else org["department"]
        user = models.User(
            username=f"user{counter['n']}",
            name=name or f"User {counter['n']}",
            role=role,
            grade=grade,
            points=points,
            department_id=department.id if department else None,
            management_id=org["management"].id if department is org["department"] else None,
            division_id=division.id if division else None,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make_user


@pytest.fixture
def creator(make_user):
    return make_user(role=models.Role.MANAGER, name="Creator")


@pytest.fixture
def make_task(db, org, creator, settings):
    def _make_task(
        task_type=models.TaskType.DEPARTMENT,
        mode=models.AuctionMode.MONEY,
        base_price=Decimal("900000"),
        base_time_minutes=None,
        minimum_grade=models.Grade.D,
        division=None,
        assignee_id=None,
        created_by=None,
        now=NOW,
    ):
        if mode == models.AuctionMode.TIME and base_time_minutes is None:
            base_time_minutes = 600
        data = schemas.TaskCreate(
            title="Prepare quarterly report",
            task_type=task_type,
            mode=mode,
            department_id=org["department"].id,
            division_id=division.id if division else None,
            minimum_grade=minimum_grade,
            base_price=base_price if mode == models.AuctionMode.MONEY else None,
            base_time_minutes=base_time_minutes,
            assignee_id=assignee_id,
        )
        outcome = auction_lifecycle.create_task(
            db, data, (created_by or creator).id, now=now, settings=settings
        )
        assert outcome.ok, outcome.reason
        return outcome.value

    return _make_task


@pytest.fixture
def now():
    return NOW
