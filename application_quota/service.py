"""
Entitlement facade: the single entry point for the application action.

Usage:
    service = EntitlementService(db_session, cache=snapshot_cache)
    result = service.reserve(principal_id)
    if not result.allowed:
        ...  # show upgrade prompt / "resets in N days"
    try:
        create_application(...)
    except Exception:
        service.release(principal_id, result.reservation_id)
        raise
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from sqlalchemy.orm import Session

from .cache import SnapshotCache
from .catalog import PlanCatalog, get_default_catalog
from .errors import EvaluationFailedError
from .evaluator import EligibilityEvaluator
from .models import EligibilityResult, SubscriptionSnapshot
from .snapshots import SubscriptionSnapshotRepository
from .usage import UsageCounter

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EntitlementService:
    """Per-request facade over the eligibility evaluator and usage counter."""

    def __init__(
        self,
        db_session: Session,
        *,
        cache: SnapshotCache,
        catalog: Optional[PlanCatalog] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.db = db_session
        self.catalog = catalog or get_default_catalog()
        self.cache = cache
        self._clock = clock or _utcnow
        self.snapshots = SubscriptionSnapshotRepository(db_session, self.cache, self.catalog)
        self.counter = UsageCounter(db_session)
        self.evaluator = EligibilityEvaluator(self.catalog, self.snapshots, self.counter)

    def reserve(self, principal_id: str) -> EligibilityResult:
        """Reserve one application slot. Call immediately before performing the action."""
        result = self.evaluator.reserve(principal_id, self._clock())
        logger.info(
            "Application quota reserve",
            extra={
                "principal_id": principal_id,
                "allowed": result.allowed,
                "reason_code": result.reason_code.value,
                "used": result.used,
                "limit": result.limit,
            },
        )
        return result

    def status(self, principal_id: str) -> EligibilityResult:
        """Read-only eligibility for display; never consumes quota."""
        return self.evaluator.evaluate(principal_id, self._clock())

    def release(self, principal_id: str, reservation_id: str) -> bool:
        """
        Compensate a reservation whose action failed.

        Idempotent: returns False when the reservation is unknown or was
        already released.
        """
        return self.counter.release(principal_id, reservation_id, self._clock())

    def has_feature(self, principal_id: str, feature_key: str) -> bool:
        """Non-quota plan capability check (e.g. matching scores). False on store errors."""
        try:
            _, feature_set = self.evaluator.resolve_plan(principal_id)
        except EvaluationFailedError:
            logger.exception("Feature check failed for principal %s", principal_id)
            return False
        return feature_set.has_feature(feature_key)

    def handle_billing_event(
        self,
        principal_id: str,
        plan_id: str,
        provider_status: str,
        *,
        cancel_at_period_end: bool = False,
        current_period_end: Optional[datetime] = None,
    ) -> SubscriptionSnapshot:
        """Apply a verified billing-provider fact; eligibility recomputes on next read."""
        return self.snapshots.apply_billing_fact(
            principal_id,
            plan_id,
            provider_status,
            self._clock(),
            cancel_at_period_end=cancel_at_period_end,
            current_period_end=current_period_end,
        )
