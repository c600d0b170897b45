"""
Subscription snapshot repository.

Reads the current subscription of a principal (cache first, then the
database) and translates billing-provider facts into snapshots.

Anchor rule: subscribed_at is set when the snapshot is created and reset
only when the plan id changes. Renewals, status changes and cancellation
flags keep the existing anchor.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from .cache import SnapshotCache
from .catalog import PlanCatalog
from .models import SubscriptionSnapshot, SubscriptionStatus, as_utc
from .tables import SubscriptionSnapshotRecord

logger = logging.getLogger(__name__)

# Billing provider status -> snapshot status
PROVIDER_STATUS_MAP = {
    "active": SubscriptionStatus.ACTIVE,
    "trialing": SubscriptionStatus.ACTIVE,
    "past_due": SubscriptionStatus.INACTIVE,
    "unpaid": SubscriptionStatus.INACTIVE,
    "canceled": SubscriptionStatus.CANCELLED,
    "cancelled": SubscriptionStatus.CANCELLED,
    "incomplete_expired": SubscriptionStatus.EXPIRED,
    "incomplete": SubscriptionStatus.PENDING,
}


def convert_provider_status(provider_status: str) -> SubscriptionStatus:
    """
    Map a billing-provider status to a snapshot status.

    Internal values (e.g. "ACTIVE") pass through unchanged; anything
    unrecognized is INACTIVE so it never grants access.
    """
    raw = str(provider_status or "").strip()
    try:
        return SubscriptionStatus(raw)
    except ValueError:
        pass
    status = PROVIDER_STATUS_MAP.get(raw.lower())
    if status is None:
        logger.warning("Unknown billing provider status %r, treating as INACTIVE", raw)
        return SubscriptionStatus.INACTIVE
    return status


def _to_snapshot(record: SubscriptionSnapshotRecord) -> SubscriptionSnapshot:
    return SubscriptionSnapshot(
        principal_id=record.principal_id,
        plan_id=record.plan_id,
        status=SubscriptionStatus(record.status),
        subscribed_at=as_utc(record.subscribed_at),
        cancel_at_period_end=bool(record.cancel_at_period_end),
        current_period_end=(
            as_utc(record.current_period_end) if record.current_period_end else None
        ),
    )


class SubscriptionSnapshotRepository:
    """Read-mostly access to subscription snapshots."""

    def __init__(self, db_session: Session, cache: SnapshotCache, catalog: PlanCatalog):
        self.db = db_session
        self.cache = cache
        self.catalog = catalog

    def get_active_snapshot(self, principal_id: str) -> Optional[SubscriptionSnapshot]:
        """
        Return the principal's current snapshot, or None if it has none.

        Absence is a normal state: callers resolve the default plan. Store
        errors propagate to the caller.
        """
        principal_id = str(principal_id).strip()
        if not principal_id:
            raise ValueError("principal_id is required")

        cached = self.cache.get(principal_id)
        if cached is not None:
            return cached

        record = self.db.get(SubscriptionSnapshotRecord, principal_id)
        if record is None:
            return None

        snapshot = _to_snapshot(record)
        self.cache.set(snapshot)
        return snapshot

    def apply_billing_fact(
        self,
        principal_id: str,
        plan_id: str,
        provider_status: str,
        now: datetime,
        *,
        cancel_at_period_end: bool = False,
        current_period_end: Optional[datetime] = None,
    ) -> SubscriptionSnapshot:
        """
        Create or update the snapshot from a billing-provider fact.

        Raises:
            UnknownPlanError: plan_id is not in the catalog (nothing is written)
        """
        principal_id = str(principal_id).strip()
        if not principal_id:
            raise ValueError("principal_id is required")
        if now.tzinfo is None:
            raise ValueError("now must be timezone-aware")

        feature_set = self.catalog.get_feature_set(plan_id)
        status = convert_provider_status(provider_status)
        now = as_utc(now)

        record = self.db.get(SubscriptionSnapshotRecord, principal_id)
        if record is None:
            record = SubscriptionSnapshotRecord(
                principal_id=principal_id,
                plan_id=feature_set.plan_id,
                subscribed_at=now,
            )
            self.db.add(record)
            logger.info(
                "Created subscription snapshot",
                extra={"principal_id": principal_id, "plan_id": feature_set.plan_id},
            )
        elif record.plan_id != feature_set.plan_id:
            logger.info(
                "Plan changed, resetting quota anchor",
                extra={
                    "principal_id": principal_id,
                    "from_plan_id": record.plan_id,
                    "to_plan_id": feature_set.plan_id,
                },
            )
            record.plan_id = feature_set.plan_id
            record.subscribed_at = now

        record.status = status.value
        record.cancel_at_period_end = bool(cancel_at_period_end)
        record.current_period_end = as_utc(current_period_end) if current_period_end else None

        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        finally:
            self.invalidate(principal_id)

        return _to_snapshot(record)

    def invalidate(self, principal_id: str) -> None:
        """Drop the cached snapshot; the next read goes to the store."""
        self.cache.invalidate(principal_id)
