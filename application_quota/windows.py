"""
Quota window calculation.

Windows are successive, non-overlapping [start, end) intervals of
window_length_days anchored at the subscription's subscribed_at. Pure
functions of (snapshot, feature set, now); no I/O.
"""

import math
from datetime import datetime, timedelta, timezone
from typing import Optional

from .models import FeatureSet, SubscriptionSnapshot, UsageWindow

# Anchor for principals without an active subscription on a limited plan
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

SECONDS_PER_DAY = 86400


def _require_aware(now: datetime) -> None:
    if now.tzinfo is None:
        raise ValueError("now must be timezone-aware")


def window_for_anchor(anchor: datetime, window_length_days: int, now: datetime) -> UsageWindow:
    """Return the window containing `now` for windows anchored at `anchor`."""
    _require_aware(now)
    length = timedelta(days=window_length_days)
    elapsed = now - anchor
    # clock skew / future-dated subscription: stay in the first window
    k = max(0, elapsed // length)
    start = anchor + k * length
    return UsageWindow(start=start, end=start + length)


def current_window(
    snapshot: Optional[SubscriptionSnapshot],
    feature_set: FeatureSet,
    now: datetime,
) -> Optional[UsageWindow]:
    """
    Compute the active usage window.

    Returns None when the plan has no periodic reset (unlimited plans, or a
    lifetime limit with window_length_days unset). Without a snapshot the
    windows are anchored at the Unix epoch.
    """
    _require_aware(now)
    if not feature_set.has_window:
        return None
    anchor = snapshot.subscribed_at if snapshot is not None else EPOCH
    return window_for_anchor(anchor, feature_set.window_length_days, now)


def days_until_reset(window: Optional[UsageWindow], now: datetime) -> Optional[int]:
    """Whole days until the window ends, rounded up; None without a window."""
    if window is None:
        return None
    _require_aware(now)
    remaining_seconds = (window.end - now).total_seconds()
    return max(0, math.ceil(remaining_seconds / SECONDS_PER_DAY))
