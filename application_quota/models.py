from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import FrozenSet, Optional


def as_utc(value: datetime) -> datetime:
    """Return `value` in UTC; naive values (e.g. read back from SQLite) are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class SubscriptionStatus(str, Enum):
    """Subscription status values stored on a snapshot."""
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"
    PENDING = "PENDING"


class ReasonCode(str, Enum):
    ALLOWED = "ALLOWED"
    PLAN_FORBIDS_ACTION = "PLAN_FORBIDS_ACTION"
    LIMIT_REACHED = "LIMIT_REACHED"
    EVALUATION_FAILED = "EVALUATION_FAILED"


class ConsumeOutcome(str, Enum):
    CONSUMED = "CONSUMED"
    REJECTED = "REJECTED"


@dataclass(frozen=True)
class FeatureSet:
    """Capabilities and action quota attached to one plan."""

    plan_id: str
    display_name: str
    can_perform_action: bool
    action_limit_per_window: Optional[int] = None
    window_length_days: Optional[int] = None
    features: FrozenSet[str] = field(default_factory=frozenset)

    def __post_init__(self) -> None:
        plan_id = self.plan_id.strip()
        if not plan_id:
            raise ValueError("plan_id is required")
        if self.action_limit_per_window is not None and self.action_limit_per_window < 0:
            raise ValueError(f"plan '{plan_id}' action limit must be >= 0")
        if self.window_length_days is not None and self.window_length_days <= 0:
            raise ValueError(f"plan '{plan_id}' window length must be > 0")
        object.__setattr__(self, "plan_id", plan_id)
        object.__setattr__(self, "features", frozenset(self.features))

    @property
    def is_unlimited(self) -> bool:
        return self.action_limit_per_window is None

    @property
    def has_window(self) -> bool:
        # a window only matters when there is a finite limit to reset
        return not self.is_unlimited and self.window_length_days is not None

    def has_feature(self, feature_key: str) -> bool:
        normalized_key = str(feature_key).strip()
        if not normalized_key:
            return False
        return normalized_key in self.features


@dataclass(frozen=True)
class SubscriptionSnapshot:
    """Current subscription record for a principal."""

    principal_id: str
    plan_id: str
    status: SubscriptionStatus
    subscribed_at: datetime
    cancel_at_period_end: bool = False
    current_period_end: Optional[datetime] = None

    def __post_init__(self) -> None:
        principal_id = str(self.principal_id).strip()
        if not principal_id:
            raise ValueError("principal_id is required")
        if self.subscribed_at.tzinfo is None:
            raise ValueError("subscribed_at must be timezone-aware")
        object.__setattr__(self, "principal_id", principal_id)
        object.__setattr__(self, "status", SubscriptionStatus(self.status))

    @property
    def is_active(self) -> bool:
        return self.status == SubscriptionStatus.ACTIVE


@dataclass(frozen=True)
class UsageWindow:
    """Half-open usage interval [start, end)."""

    start: datetime
    end: datetime

    def contains(self, instant: datetime) -> bool:
        return self.start <= instant < self.end


@dataclass(frozen=True)
class ConsumeResult:
    outcome: ConsumeOutcome
    count: int
    reservation_id: Optional[str] = None

    @property
    def consumed(self) -> bool:
        return self.outcome == ConsumeOutcome.CONSUMED


@dataclass(frozen=True)
class EligibilityResult:
    """
    Outcome of an eligibility check. Not persisted.

    Attributes:
        allowed:          Whether the action may be performed now.
        reason_code:      ALLOWED or the denial reason.
        plan_id:          Plan the decision was made under.
        plan_name:        Display name of that plan.
        used:             Actions consumed in the current window.
        limit:            Per-window limit, None when unlimited.
        remaining:        max(0, limit - used), None when unlimited.
        window_start:     Start of the counted bucket, if any.
        window_end:       When the quota resets, None without a window.
        days_until_reset: Whole days until window_end, rounded up.
        reservation_id:   Set on a successful reserve; pass it to release.
    """

    allowed: bool
    reason_code: ReasonCode
    plan_id: Optional[str]
    plan_name: str
    used: int = 0
    limit: Optional[int] = None
    remaining: Optional[int] = None
    window_start: Optional[datetime] = None
    window_end: Optional[datetime] = None
    days_until_reset: Optional[int] = None
    reservation_id: Optional[str] = None

    @classmethod
    def evaluation_failed(cls) -> "EligibilityResult":
        return cls(
            allowed=False,
            reason_code=ReasonCode.EVALUATION_FAILED,
            plan_id=None,
            plan_name="Unknown",
            used=0,
            limit=0,
            remaining=0,
        )
