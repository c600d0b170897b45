"""
Plan-based entitlement and application-quota engine.

This module provides:
- PlanCatalog: plan -> feature set registry loaded from plans.json
- SubscriptionSnapshotRepository: current subscription per principal
- SnapshotCache: Redis-backed snapshot cache with TTL and invalidation
- current_window / days_until_reset: quota window calculation
- UsageCounter: atomic per-window usage counters with idempotent release
- EligibilityEvaluator: allow/deny decision, fail-closed on store errors
- EntitlementService: reserve / status / release facade
"""

from application_quota.cache import SnapshotCache
from application_quota.catalog import PlanCatalog, get_default_catalog, normalize_plan_id
from application_quota.errors import EntitlementError, EvaluationFailedError, UnknownPlanError
from application_quota.evaluator import EligibilityEvaluator
from application_quota.models import (
    ConsumeOutcome,
    ConsumeResult,
    EligibilityResult,
    FeatureSet,
    ReasonCode,
    SubscriptionSnapshot,
    SubscriptionStatus,
    UsageWindow,
)
from application_quota.service import EntitlementService
from application_quota.snapshots import SubscriptionSnapshotRepository, convert_provider_status
from application_quota.usage import UsageCounter
from application_quota.windows import current_window, days_until_reset

__all__ = [
    # Catalog
    "PlanCatalog",
    "get_default_catalog",
    "normalize_plan_id",
    # Snapshots
    "SnapshotCache",
    "SubscriptionSnapshotRepository",
    "convert_provider_status",
    # Windows
    "current_window",
    "days_until_reset",
    # Usage
    "UsageCounter",
    # Evaluation
    "EligibilityEvaluator",
    "EntitlementService",
    # Models
    "ConsumeOutcome",
    "ConsumeResult",
    "EligibilityResult",
    "FeatureSet",
    "ReasonCode",
    "SubscriptionSnapshot",
    "SubscriptionStatus",
    "UsageWindow",
    # Errors
    "EntitlementError",
    "EvaluationFailedError",
    "UnknownPlanError",
]
