"""
ORM models for subscription snapshots and usage counters.

- subscription_snapshots: one row per principal, written by billing intake
- usage_counters: one row per (principal, window start); rows for past
  windows are never updated again and serve as the usage audit trail
- usage_reservations: one row per consumed unit, so a release can be
  applied at most once
"""

import uuid

from sqlalchemy import (
    Boolean, Column, DateTime, Index, Integer, String,
    UniqueConstraint, func,
)

from .db import Base


def generate_uuid() -> str:
    return str(uuid.uuid4())


class SubscriptionSnapshotRecord(Base):
    """
    Current subscription of a principal.

    Attributes:
        principal_id: Identity-provider user id
        plan_id: Normalized plan catalog id
        status: ACTIVE | INACTIVE | EXPIRED | CANCELLED | PENDING
        subscribed_at: Window anchor; reset only when plan_id changes
        cancel_at_period_end: Billing provider will cancel at period end
        current_period_end: Billing period end (informational)
    """
    __tablename__ = "subscription_snapshots"

    principal_id = Column(String(255), primary_key=True)
    plan_id = Column(String(64), nullable=False)
    status = Column(String(16), nullable=False)
    subscribed_at = Column(DateTime(timezone=True), nullable=False)
    cancel_at_period_end = Column(Boolean, nullable=False, default=False)
    current_period_end = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    def __repr__(self) -> str:
        return f"<SubscriptionSnapshotRecord(principal_id={self.principal_id}, plan_id={self.plan_id})>"


class UsageCounterRecord(Base):
    """Actions consumed by a principal within one window."""
    __tablename__ = "usage_counters"

    id = Column(String(255), primary_key=True, default=generate_uuid)
    principal_id = Column(String(255), nullable=False)
    window_start = Column(DateTime(timezone=True), nullable=False)
    count = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        # The conditional increment relies on exactly one row per window
        UniqueConstraint(
            "principal_id", "window_start",
            name="uq_usage_counters_principal_window",
        ),
    )

    def __repr__(self) -> str:
        return f"<UsageCounterRecord(principal_id={self.principal_id}, count={self.count})>"


class UsageReservationRecord(Base):
    """A single consumed unit of quota, released at most once."""
    __tablename__ = "usage_reservations"

    id = Column(String(255), primary_key=True, default=generate_uuid)
    principal_id = Column(String(255), nullable=False)
    window_start = Column(DateTime(timezone=True), nullable=False)
    reserved_at = Column(DateTime(timezone=True), nullable=False)
    released_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_usage_reservations_principal_window", "principal_id", "window_start"),
    )
