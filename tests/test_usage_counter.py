"""
Usage counter: peek, atomic consume, best-effort unlimited recording,
idempotent release and concurrent consumption.
"""

from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker

from application_quota.db import build_engine, create_schema
from application_quota.models import ConsumeOutcome
from application_quota.tables import UsageCounterRecord, UsageReservationRecord
from application_quota.usage import UsageCounter

WINDOW = datetime(2025, 1, 1, tzinfo=timezone.utc)
NOW = WINDOW + timedelta(days=2)


@pytest.fixture
def counter(db_session):
    return UsageCounter(db_session)


def _row_count(db_session) -> int:
    return db_session.execute(select(func.count()).select_from(UsageCounterRecord)).scalar_one()


def test_peek_without_record_is_zero_and_creates_nothing(counter, db_session):
    assert counter.peek("user-1", WINDOW) == 0
    assert _row_count(db_session) == 0


def test_consume_until_limit_then_reject(counter):
    results = [counter.try_consume("user-1", WINDOW, 3, NOW) for _ in range(3)]
    assert [r.outcome for r in results] == [ConsumeOutcome.CONSUMED] * 3
    assert [r.count for r in results] == [1, 2, 3]
    assert all(r.reservation_id for r in results)

    rejected = counter.try_consume("user-1", WINDOW, 3, NOW)
    assert rejected.outcome == ConsumeOutcome.REJECTED
    assert rejected.count == 3
    assert rejected.reservation_id is None
    assert counter.peek("user-1", WINDOW) == 3


def test_zero_limit_always_rejects(counter, db_session):
    result = counter.try_consume("user-1", WINDOW, 0, NOW)
    assert result.consumed is False
    assert _row_count(db_session) == 0


def test_windows_and_principals_are_independent(counter):
    counter.try_consume("user-1", WINDOW, 1, NOW)
    next_window = WINDOW + timedelta(days=30)

    assert counter.try_consume("user-1", next_window, 1, next_window).consumed is True
    assert counter.try_consume("user-2", WINDOW, 1, NOW).consumed is True
    assert counter.peek("user-1", WINDOW) == 1


def test_record_unlimited_has_no_ceiling(counter):
    for _ in range(5):
        assert counter.record_unlimited("user-1", WINDOW, NOW) is not None
    assert counter.peek("user-1", WINDOW) == 5


def test_record_unlimited_swallows_store_errors(counter, monkeypatch):
    def _boom(*args, **kwargs):
        raise OperationalError("UPDATE usage_counters", {}, Exception("database is locked"))

    monkeypatch.setattr(counter.db, "execute", _boom)
    assert counter.record_unlimited("user-1", WINDOW, NOW) is None


def test_consume_propagates_store_errors(counter, monkeypatch):
    def _boom(*args, **kwargs):
        raise OperationalError("UPDATE usage_counters", {}, Exception("database is locked"))

    monkeypatch.setattr(counter.db, "execute", _boom)
    with pytest.raises(OperationalError):
        counter.try_consume("user-1", WINDOW, 3, NOW)


# ----- Release -----

def test_release_restores_one_unit(counter, db_session):
    first = counter.try_consume("user-1", WINDOW, 3, NOW)
    counter.try_consume("user-1", WINDOW, 3, NOW)

    assert counter.release("user-1", first.reservation_id, NOW) is True
    assert counter.peek("user-1", WINDOW) == 1

    reservation = db_session.get(UsageReservationRecord, first.reservation_id)
    assert reservation.released_at is not None


def test_release_twice_is_idempotent(counter):
    first = counter.try_consume("user-1", WINDOW, 3, NOW)
    counter.try_consume("user-1", WINDOW, 3, NOW)

    assert counter.release("user-1", first.reservation_id, NOW) is True
    assert counter.release("user-1", first.reservation_id, NOW) is False
    # the second, unreleased reservation is still counted
    assert counter.peek("user-1", WINDOW) == 1


def test_release_never_goes_below_zero(counter):
    only = counter.try_consume("user-1", WINDOW, 3, NOW)
    counter.release("user-1", only.reservation_id, NOW)
    counter.release("user-1", only.reservation_id, NOW)
    assert counter.peek("user-1", WINDOW) == 0


def test_release_unknown_or_foreign_reservation(counter):
    owned = counter.try_consume("user-1", WINDOW, 3, NOW)

    assert counter.release("user-1", "no-such-reservation", NOW) is False
    assert counter.release("user-2", owned.reservation_id, NOW) is False
    assert counter.peek("user-1", WINDOW) == 1


def test_release_requires_reservation_id(counter):
    with pytest.raises(ValueError, match="reservation_id is required"):
        counter.release("user-1", " ", NOW)


def test_released_slot_can_be_consumed_again(counter):
    results = [counter.try_consume("user-1", WINDOW, 2, NOW) for _ in range(2)]
    assert counter.try_consume("user-1", WINDOW, 2, NOW).consumed is False

    counter.release("user-1", results[0].reservation_id, NOW)
    assert counter.try_consume("user-1", WINDOW, 2, NOW).consumed is True
    assert counter.peek("user-1", WINDOW) == 2


# ----- Concurrency -----

def test_concurrent_consume_never_exceeds_limit(tmp_path):
    """limit + K concurrent consumers on one window: exactly `limit` succeed."""
    engine = build_engine(f"sqlite:///{tmp_path / 'quota.db'}", connect_args={"timeout": 30})
    create_schema(engine)
    Session = sessionmaker(bind=engine)
    limit, extra = 3, 7

    def _consume(_):
        with Session() as session:
            return UsageCounter(session).try_consume("user-1", WINDOW, limit, NOW)

    try:
        with ThreadPoolExecutor(max_workers=limit + extra) as pool:
            results = list(pool.map(_consume, range(limit + extra)))

        consumed = [r for r in results if r.consumed]
        assert len(consumed) == limit
        assert len(results) - len(consumed) == extra
        assert len({r.reservation_id for r in consumed}) == limit

        with Session() as session:
            assert UsageCounter(session).peek("user-1", WINDOW) == limit
    finally:
        engine.dispose()
