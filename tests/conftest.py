"""Pytest configuration and shared fixtures for the branch queue service."""

from contextlib import nullcontext
from datetime import datetime
from typing import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from branchqueue.api.v1.scheduler import get_no_show_scheduler
from branchqueue.core.clock import get_clock
from branchqueue.db.base import get_db
from branchqueue.db.models import Base, Branch, Service, ServicePoint
from branchqueue.db.schemas import NoShowSchedulerConfig
from branchqueue.main import app
from branchqueue.services.no_show_scheduler import NoShowScheduler
from tests.utils.test_data import FakeClock

# One in-memory database shared by every connection, including scheduler threads
TEST_ENGINE = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(
    bind=TEST_ENGINE,
    autocommit=False,
    autoflush=False,
    expire_on_commit=False,
)

NOW = datetime(2025, 3, 10, 9, 0, 0)


@pytest.fixture(scope="function")
def temp_db() -> Generator[Session, None, None]:
    """Create a fresh schema and session for each test function."""
    Base.metadata.create_all(bind=TEST_ENGINE)
    db = TestingSessionLocal()

    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=TEST_ENGINE)


@pytest.fixture
def clock() -> FakeClock:
    """A clock frozen at Monday 2025-03-10 09:00 UTC."""
    return FakeClock(NOW)


@pytest.fixture
def branch(temp_db: Session) -> Branch:
    branch = Branch(name="Downtown")
    temp_db.add(branch)
    temp_db.commit()
    return branch


@pytest.fixture
def other_branch(temp_db: Session) -> Branch:
    branch = Branch(name="Uptown")
    temp_db.add(branch)
    temp_db.commit()
    return branch


@pytest.fixture
def service(temp_db: Session) -> Service:
    service = Service(name="Deposits", duration_minutes=15)
    temp_db.add(service)
    temp_db.commit()
    return service


@pytest.fixture
def other_service(temp_db: Session) -> Service:
    service = Service(name="Loans", duration_minutes=30)
    temp_db.add(service)
    temp_db.commit()
    return service


@pytest.fixture
def service_point(temp_db: Session, branch: Branch) -> ServicePoint:
    point = ServicePoint(branch_id=branch.id, name="Window 1")
    temp_db.add(point)
    temp_db.commit()
    return point


@pytest.fixture
def scheduler(temp_db: Session, clock: FakeClock) -> Generator[NoShowScheduler, None, None]:
    """Scheduler running its ticks on the test session with a 15 minute grace time."""
    scheduler = NoShowScheduler(
        session_scope=lambda: nullcontext(temp_db),
        config=NoShowSchedulerConfig(interval_minutes=5, grace_time_minutes=15),
        clock=clock,
    )
    yield scheduler
    scheduler.stop()


@pytest.fixture
def client(temp_db: Session, clock: FakeClock, scheduler: NoShowScheduler) -> Generator[TestClient, None, None]:
    """Test client wired to the test session, clock and scheduler."""
    def override_get_db():
        yield temp_db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_no_show_scheduler] = lambda: scheduler

    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
