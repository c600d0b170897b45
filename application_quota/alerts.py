"""
Alerts for entitlement evaluation failures, unknown plans and repeated
quota denials.
"""

import logging
import time
from threading import Lock
from typing import Dict, List, Optional

from .config import get_deny_alert_threshold

logger = logging.getLogger(__name__)

DENY_WINDOW_SECONDS = 60

_deny_counts: Dict[str, List[float]] = {}
_deny_lock = Lock()
_last_sweep = 0.0


def emit_evaluation_failure(principal_id: str, error_message: str) -> None:
    """Operator alert: the action was denied because evaluation failed (fail-closed)."""
    logger.error(
        "Entitlement evaluation failure",
        extra={"principal_id": principal_id, "error": error_message},
    )


def emit_unknown_plan(plan_id: str, principal_id: Optional[str] = None) -> None:
    """Data-integrity alert: a snapshot or billing event names a plan the catalog lacks."""
    logger.critical(
        "Unknown plan id in subscription data",
        extra={"principal_id": principal_id, "plan_id": plan_id},
    )


def _sweep_expired(cutoff: float) -> None:
    # principals with no denial inside the window no longer need an entry
    for key in [k for k, times in _deny_counts.items() if not times or times[-1] <= cutoff]:
        del _deny_counts[key]


def _record_deny(principal_id: str) -> int:
    global _last_sweep
    now = time.time()
    cutoff = now - DENY_WINDOW_SECONDS
    with _deny_lock:
        if now - _last_sweep >= DENY_WINDOW_SECONDS:
            _sweep_expired(cutoff)
            _last_sweep = now
        recent = [t for t in _deny_counts.get(principal_id, ()) if t > cutoff]
        recent.append(now)
        _deny_counts[principal_id] = recent
        return len(recent)


def record_limit_denial(principal_id: str, plan_id: str) -> None:
    """Record a quota denial; warn when a principal is denied repeatedly within a minute."""
    count = _record_deny(principal_id)
    if count >= get_deny_alert_threshold():
        logger.warning(
            "Repeated application quota denials",
            extra={"principal_id": principal_id, "plan_id": plan_id, "count_per_min": count},
        )


def reset_deny_counts() -> None:
    global _last_sweep
    with _deny_lock:
        _deny_counts.clear()
        _last_sweep = 0.0
