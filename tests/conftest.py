"""Pytest fixtures for the task sync tests.

Provides:
- An isolated SQLite file database per test
- A FastAPI TestClient wired to that database
- Seeded premium and free users with bearer tokens
- A controllable clock for service-level tests
"""

from __future__ import annotations

import os

# Settings are read at import time, so configure before importing tasksync.
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("AUTH_SECRET", "test-secret")
os.environ.setdefault("SYNC_REQUIRES_PREMIUM", "true")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.engine import Engine
from sqlmodel import Session

from tasksync.db.config import build_engine, get_session
from tasksync.db.init import init_db
from tasksync.main import app
from tasksync.middleware.auth import create_access_token
from tasksync.middleware.rate_limit import SlidingWindowRateLimiter
from tasksync.models.task import Task
from tasksync.models.user import PLAN_FREE, PLAN_PREMIUM, User
from tasksync.services.versioning import new_task
from tasksync.utils.metrics import metrics_collector

T0 = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Clock that only moves when told to."""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def engine(tmp_path: Path) -> Generator[Engine, None, None]:
    """Fresh SQLite database file with all tables created."""
    test_engine = build_engine(f"sqlite:///{tmp_path / 'tasksync-test.db'}")
    init_db(bind=test_engine)
    yield test_engine
    test_engine.dispose()


@pytest.fixture
def session(engine: Engine) -> Generator[Session, None, None]:
    with Session(engine) as db_session:
        yield db_session


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture(autouse=True)
def reset_metrics() -> Generator[None, None, None]:
    metrics_collector.reset()
    yield
    metrics_collector.reset()


def make_user(session: Session, email: str, plan: str = PLAN_PREMIUM) -> User:
    user = User(email=email, name=email.split("@")[0], plan=plan)
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


def make_task(
    session: Session,
    owner: User,
    now: datetime = T0,
    **fields,
) -> Task:
    fields.setdefault("title", "Task")
    task = new_task(owner.id, fields, now)
    session.add(task)
    session.commit()
    session.refresh(task)
    return task


@pytest.fixture
def user(session: Session) -> User:
    return make_user(session, "alice@example.com")


@pytest.fixture
def other_user(session: Session) -> User:
    return make_user(session, "bob@example.com")


@pytest.fixture
def free_user(session: Session) -> User:
    return make_user(session, "carol@example.com", plan=PLAN_FREE)


def auth_headers(owner: User) -> Dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(owner.id, owner.email)}"}


@pytest.fixture
def rate_limiter() -> SlidingWindowRateLimiter:
    return SlidingWindowRateLimiter(limit=1000, window_seconds=60)


@pytest.fixture
def client(engine: Engine, rate_limiter: SlidingWindowRateLimiter) -> Generator[TestClient, None, None]:
    """TestClient bound to the per-test database.

    The lifespan is not entered, so the module-level engine is never touched.
    """

    def override_get_session() -> Generator[Session, None, None]:
        with Session(engine) as db_session:
            yield db_session

    previous_limiter = app.state.rate_limiter
    app.dependency_overrides[get_session] = override_get_session
    app.state.rate_limiter = rate_limiter
    yield TestClient(app)
    app.dependency_overrides.clear()
    app.state.rate_limiter = previous_limiter

