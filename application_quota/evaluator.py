"""
Eligibility evaluation: can this principal submit an application now?

Order of checks:
1. Snapshot: absent or not ACTIVE -> configured default plan
2. Plan forbids the action -> PLAN_FORBIDS_ACTION
3. Unlimited plan -> allowed (reserve records usage best-effort)
4. Window + counter -> allowed while used < limit, else LIMIT_REACHED

Fails closed: if the snapshot or counter cannot be read, the result is
denied with EVALUATION_FAILED. UnknownPlanError propagates, since it is
a data-integrity fault rather than a decision.
"""

import logging
from datetime import datetime
from typing import Optional, Tuple

from .alerts import emit_evaluation_failure, emit_unknown_plan, record_limit_denial
from .catalog import PlanCatalog
from .errors import EvaluationFailedError, UnknownPlanError
from .models import (
    EligibilityResult,
    FeatureSet,
    ReasonCode,
    SubscriptionSnapshot,
)
from .snapshots import SubscriptionSnapshotRepository
from .usage import UsageCounter
from .windows import EPOCH, current_window, days_until_reset

logger = logging.getLogger(__name__)


class EligibilityEvaluator:
    """Combines plan catalog, snapshots, windows and counters into a decision."""

    def __init__(
        self,
        catalog: PlanCatalog,
        snapshots: SubscriptionSnapshotRepository,
        counter: UsageCounter,
    ):
        self.catalog = catalog
        self.snapshots = snapshots
        self.counter = counter

    def evaluate(self, principal_id: str, now: datetime) -> EligibilityResult:
        """Read-only check; never changes usage."""
        return self._evaluate(principal_id, now, consume=False)

    def reserve(self, principal_id: str, now: datetime) -> EligibilityResult:
        """Check and, if allowed, consume one unit of quota atomically."""
        return self._evaluate(principal_id, now, consume=True)

    def resolve_plan(
        self, principal_id: str
    ) -> Tuple[Optional[SubscriptionSnapshot], FeatureSet]:
        """
        Return (active snapshot or None, feature set in force).

        Raises:
            EvaluationFailedError: the snapshot could not be read
            UnknownPlanError: the snapshot names a plan missing from the catalog
        """
        try:
            snapshot = self.snapshots.get_active_snapshot(principal_id)
        except Exception as exc:
            raise EvaluationFailedError(
                principal_id, "Subscription snapshot unavailable", cause=exc
            ) from exc

        if snapshot is None or not snapshot.is_active:
            return None, self.catalog.get_default_feature_set()

        try:
            return snapshot, self.catalog.get_feature_set(snapshot.plan_id)
        except UnknownPlanError:
            emit_unknown_plan(snapshot.plan_id, principal_id)
            raise

    def _evaluate(self, principal_id: str, now: datetime, *, consume: bool) -> EligibilityResult:
        principal_id = str(principal_id).strip()
        if not principal_id:
            raise ValueError("principal_id is required")
        if now.tzinfo is None:
            raise ValueError("now must be timezone-aware")

        try:
            snapshot, feature_set = self.resolve_plan(principal_id)
            return self._decide(principal_id, snapshot, feature_set, now, consume=consume)
        except EvaluationFailedError as exc:
            logger.exception("Entitlement evaluation failed for principal %s", principal_id)
            emit_evaluation_failure(principal_id, str(exc.cause or exc))
            return EligibilityResult.evaluation_failed()

    def _decide(
        self,
        principal_id: str,
        snapshot: Optional[SubscriptionSnapshot],
        feature_set: FeatureSet,
        now: datetime,
        *,
        consume: bool,
    ) -> EligibilityResult:
        if not feature_set.can_perform_action:
            return EligibilityResult(
                allowed=False,
                reason_code=ReasonCode.PLAN_FORBIDS_ACTION,
                plan_id=feature_set.plan_id,
                plan_name=feature_set.display_name,
                used=0,
                limit=feature_set.action_limit_per_window,
                remaining=0 if feature_set.action_limit_per_window is not None else None,
            )

        window = current_window(snapshot, feature_set, now)
        if window is not None:
            bucket_start = window.start
        else:
            # no periodic reset: one bucket since the anchor
            bucket_start = snapshot.subscribed_at if snapshot is not None else EPOCH

        if feature_set.is_unlimited:
            reservation_id = None
            if consume:
                reservation_id = self.counter.record_unlimited(principal_id, bucket_start, now)
            return EligibilityResult(
                allowed=True,
                reason_code=ReasonCode.ALLOWED,
                plan_id=feature_set.plan_id,
                plan_name=feature_set.display_name,
                reservation_id=reservation_id,
            )

        limit = feature_set.action_limit_per_window
        reservation_id = None
        try:
            if consume:
                consumed = self.counter.try_consume(principal_id, bucket_start, limit, now)
                used = consumed.count
                allowed = consumed.consumed
                reservation_id = consumed.reservation_id
            else:
                used = self.counter.peek(principal_id, bucket_start)
                allowed = used < limit
        except Exception as exc:
            raise EvaluationFailedError(principal_id, "Usage counter unavailable", cause=exc) from exc

        if not allowed:
            record_limit_denial(principal_id, feature_set.plan_id)

        return EligibilityResult(
            allowed=allowed,
            reason_code=ReasonCode.ALLOWED if allowed else ReasonCode.LIMIT_REACHED,
            plan_id=feature_set.plan_id,
            plan_name=feature_set.display_name,
            used=used,
            limit=limit,
            remaining=max(0, limit - used),
            window_start=bucket_start,
            window_end=window.end if window is not None else None,
            days_until_reset=days_until_reset(window, now),
            reservation_id=reservation_id,
        )
