# travelmate/conftest.py
import os
from datetime import date, datetime, timedelta, timezone

import pytest

# The app validates env at import; tests run without production config
os.environ.setdefault("SKIP_ENV_VALIDATION", "1")


class FakeClock:
    """Deterministic clock; advance() moves time forward."""

    def __init__(self, start: datetime = datetime(2025, 6, 1, 9, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sink():
    from travelmate.features.notifications.sink import InMemoryNotificationSink
    return InMemoryNotificationSink()


@pytest.fixture
def directory():
    """User directory seeded with four travellers and one admin."""
    from travelmate.features.users.directory import InMemoryUserDirectory
    from travelmate.models.user import UserRole, UserSummary

    users = InMemoryUserDirectory()
    users.add(UserSummary(user_id="alice", display_name="Alice", email="alice@example.com"))
    users.add(UserSummary(user_id="bob", display_name="Bob", email="bob@example.com"))
    users.add(UserSummary(user_id="carol", display_name="Carol"))
    users.add(UserSummary(user_id="dave"))
    users.add(UserSummary(user_id="admin", display_name="Admin", role=UserRole.ADMIN))
    return users


@pytest.fixture
def repository():
    from travelmate.features.matching.repository import InMemoryMatchingRepository
    return InMemoryMatchingRepository()


@pytest.fixture
def make_plan():
    """Build a TravelPlanSnapshot with sensible defaults (Seoul, 3 nights, group of 4)."""
    from travelmate.models.plan import TravelPlanSnapshot

    def _make(plan_id, owner_id, **overrides):
        fields = dict(
            plan_id=plan_id,
            owner_id=owner_id,
            destination="Seoul",
            start_date=date(2025, 7, 1),
            end_date=date(2025, 7, 4),
            target_size=4,
            current_size=1,
            recruiting=True,
            style_tags={"food", "culture"},
            created_at=datetime(2025, 5, 1, tzinfo=timezone.utc),
        )
        fields.update(overrides)
        return TravelPlanSnapshot(**fields)

    return _make


@pytest.fixture
def engine(repository, directory, sink, clock):
    from travelmate.features.matching.service import MatchingEngine
    return MatchingEngine(repository, directory, sink, min_score=60, clock=clock)


@pytest.fixture
def seeded(repository, make_plan):
    """alice, bob and carol each own one compatible Seoul plan."""
    repository.plans.add(make_plan("plan-alice", "alice"))
    repository.plans.add(make_plan("plan-bob", "bob"))
    repository.plans.add(make_plan("plan-carol", "carol", style_tags={"food"}))
    return repository


@pytest.fixture
def api_client(engine):
    from fastapi.testclient import TestClient

    from travelmate.features.matching.service import get_matching_engine
    from travelmate.main import app

    app.dependency_overrides[get_matching_engine] = lambda: engine
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.pop(get_matching_engine, None)


@pytest.fixture
def sql_session_factory(tmp_path):
    """Fresh SQLite file with all tables; yields a session factory."""
    from sqlalchemy import create_engine
    from sqlalchemy.orm import sessionmaker

    from travelmate.core.database import metadata

    db_engine = create_engine(f"sqlite:///{tmp_path / 'travelmate.db'}")
    metadata.create_all(db_engine)
    try:
        yield sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    finally:
        db_engine.dispose()
