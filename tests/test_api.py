"""
Entitlement API: wire shape, status codes and principal handling.
"""

from datetime import datetime, timezone

import pytest
from fastapi import Request
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from application_quota.api import create_app
from application_quota.api.routes import get_entitlement_service, get_principal_id
from application_quota.cache import SnapshotCache
from application_quota.db import get_db_session
from application_quota.models import SubscriptionSnapshot, SubscriptionStatus
from application_quota.tables import SubscriptionSnapshotRecord


def _principal_from_header(request: Request) -> str:
    return request.headers.get("X-Principal-Id", "")


@pytest.fixture
def app(service):
    app = create_app(snapshot_cache=service.cache)
    app.dependency_overrides[get_principal_id] = _principal_from_header
    app.dependency_overrides[get_entitlement_service] = lambda: service
    return app


@pytest.fixture
def client(app):
    return TestClient(app)


HEADERS = {"X-Principal-Id": "user-1"}


class TestStatus:

    def test_status_uses_camel_case(self, client, service):
        service.handle_billing_event("user-1", "standard", "active")

        response = client.get("/entitlement/status", headers=HEADERS)

        assert response.status_code == 200
        data = response.json()
        assert data["allowed"] is True
        assert data["reasonCode"] == "ALLOWED"
        assert data["planName"] == "Standard"
        assert data["used"] == 0
        assert data["limit"] == 3
        assert data["remaining"] == 3
        assert data["windowStart"].startswith("2025-01-01")
        assert data["daysUntilReset"] == 30
        assert data["resetAt"].startswith("2025-01-31")
        assert data["reservationId"] is None

    def test_free_plan_denial_is_200(self, client):
        response = client.get("/entitlement/status", headers=HEADERS)

        assert response.status_code == 200
        assert response.json()["allowed"] is False
        assert response.json()["reasonCode"] == "PLAN_FORBIDS_ACTION"

    def test_unlimited_plan_has_null_limits(self, client, service):
        service.handle_billing_event("user-1", "premium", "active")

        data = client.get("/entitlement/status", headers=HEADERS).json()

        assert data["allowed"] is True
        assert data["limit"] is None
        assert data["remaining"] is None
        assert data["resetAt"] is None


class TestReserveAndRelease:

    def test_limit_reached_is_200(self, client, service):
        service.handle_billing_event("user-1", "standard", "active")
        for _ in range(3):
            assert client.post("/entitlement/reserve", headers=HEADERS).json()["allowed"] is True

        response = client.post("/entitlement/reserve", headers=HEADERS)

        assert response.status_code == 200
        assert response.json()["reasonCode"] == "LIMIT_REACHED"
        assert response.json()["remaining"] == 0

    def test_release_round_trip(self, client, service):
        service.handle_billing_event("user-1", "standard", "active")
        reservation_id = client.post("/entitlement/reserve", headers=HEADERS).json()["reservationId"]
        assert reservation_id

        first = client.post(
            "/entitlement/release", headers=HEADERS, json={"reservationId": reservation_id}
        )
        second = client.post(
            "/entitlement/release", headers=HEADERS, json={"reservationId": reservation_id}
        )

        assert first.json() == {"released": True}
        assert second.json() == {"released": False}
        assert client.get("/entitlement/status", headers=HEADERS).json()["used"] == 0

    def test_release_requires_reservation_id(self, client):
        response = client.post("/entitlement/release", headers=HEADERS, json={})
        assert response.status_code == 422

    def test_blank_reservation_id_is_422(self, client):
        response = client.post(
            "/entitlement/release", headers=HEADERS, json={"reservationId": "   "}
        )
        assert response.status_code == 422


class TestFailures:

    def test_evaluation_failure_is_503(self, client, service, monkeypatch):
        def _boom(*args, **kwargs):
            raise OperationalError("SELECT", {}, Exception("connection reset"))

        monkeypatch.setattr(service.snapshots, "get_active_snapshot", _boom)

        response = client.post("/entitlement/reserve", headers=HEADERS)

        assert response.status_code == 503
        assert response.json()["allowed"] is False
        assert response.json()["reasonCode"] == "EVALUATION_FAILED"

    def test_unknown_plan_is_500_without_plan_id(self, client, db_session):
        db_session.add(SubscriptionSnapshotRecord(
            principal_id="user-1",
            plan_id="legacy_gold",
            status="ACTIVE",
            subscribed_at=datetime(2025, 1, 1, tzinfo=timezone.utc),
        ))
        db_session.commit()

        response = client.get("/entitlement/status", headers=HEADERS)

        assert response.status_code == 500
        assert response.json()["error"] == "UNKNOWN_PLAN"
        assert "legacy_gold" not in response.text

    def test_missing_principal_is_401(self, service):
        app = create_app(snapshot_cache=service.cache)
        app.dependency_overrides[get_entitlement_service] = lambda: service

        response = TestClient(app).get("/entitlement/status")

        assert response.status_code == 401


class TestSnapshotCacheWiring:

    def test_create_app_owns_a_cache(self, monkeypatch):
        monkeypatch.delenv("REDIS_URL", raising=False)

        app = create_app()

        assert isinstance(app.state.snapshot_cache, SnapshotCache)

    def test_requests_share_the_app_cache(self, db_session, cache):
        app = create_app(snapshot_cache=cache)
        app.dependency_overrides[get_principal_id] = _principal_from_header
        app.dependency_overrides[get_db_session] = lambda: db_session
        # present only in the app cache, not in the database
        cache.set(SubscriptionSnapshot(
            principal_id="user-1",
            plan_id="premium",
            status=SubscriptionStatus.ACTIVE,
            subscribed_at=datetime(2025, 1, 1, tzinfo=timezone.utc),
        ))

        client = TestClient(app)
        first = client.get("/entitlement/status", headers=HEADERS).json()
        second = client.get("/entitlement/status", headers=HEADERS).json()

        assert first["planName"] == "Premium"
        assert second["planName"] == "Premium"
