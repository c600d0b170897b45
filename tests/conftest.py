"""
Shared pytest fixtures for quota engine tests.

Unit tests run against an in-memory SQLite database shared across threads
through StaticPool; time is injected through FrozenClock.
"""

import json
from datetime import datetime, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from application_quota.alerts import reset_deny_counts
from application_quota.cache import SnapshotCache
from application_quota.catalog import PlanCatalog
from application_quota.db import create_schema
from application_quota.service import EntitlementService

JAN_1 = datetime(2025, 1, 1, tzinfo=timezone.utc)


class FrozenClock:
    """Callable clock for EntitlementService(clock=...)."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def set(self, now: datetime) -> None:
        self.now = now


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    create_schema(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(engine):
    Session = sessionmaker(bind=engine)
    session = Session()
    yield session
    session.close()


@pytest.fixture
def catalog():
    """Bundled plan catalog (free / standard / premium / institution)."""
    return PlanCatalog()


@pytest.fixture
def custom_catalog(tmp_path):
    """Catalog with edge-case plans: zero limit, lifetime limit."""
    plans_file = tmp_path / "plans.json"
    plans_file.write_text(json.dumps({
        "default_plan": "free",
        "plans": {
            "free": {
                "display_name": "Free",
                "can_submit_application": False,
                "applications_per_window": 0,
                "window_length_days": None,
            },
            "frozen": {
                "display_name": "Frozen",
                "can_submit_application": True,
                "applications_per_window": 0,
                "window_length_days": 30,
            },
            "trial": {
                "display_name": "Trial",
                "can_submit_application": True,
                "applications_per_window": 2,
                "window_length_days": None,
            },
            "standard": {
                "display_name": "Standard",
                "can_submit_application": True,
                "applications_per_window": 3,
                "window_length_days": 30,
            },
        },
    }), encoding="utf-8")
    return PlanCatalog(plans_file)


@pytest.fixture
def cache():
    return SnapshotCache(redis_url="")


@pytest.fixture
def clock():
    return FrozenClock(JAN_1)


@pytest.fixture
def service(db_session, catalog, cache, clock):
    return EntitlementService(db_session, catalog=catalog, cache=cache, clock=clock)


@pytest.fixture(autouse=True)
def _reset_alert_counters():
    reset_deny_counts()
    yield
    reset_deny_counts()
