"""
Runtime configuration for the application quota engine.

All values come from environment variables and are read on each call so
tests and process restarts can change them without reloading modules.

Configuration (environment variables):
- QUOTA_DATABASE_URL:                 SQLAlchemy URL (default: local SQLite file)
- REDIS_URL:                          Snapshot cache backend (unset: in-memory cache)
- QUOTA_PLANS_PATH:                   Plan catalog JSON (default: bundled plans.json)
- QUOTA_SNAPSHOT_CACHE_TTL_SECONDS:   Snapshot cache TTL (default: "300")
- QUOTA_STORE_TIMEOUT_SECONDS:        Bound on every store access (default: "2")
- QUOTA_DENY_ALERT_THRESHOLD_PER_MIN: Repeated quota denials before alerting (default: "10")
"""

import os
from pathlib import Path
from typing import Optional

DEFAULT_PLANS_PATH = Path(__file__).parent / "plans.json"
DEFAULT_DATABASE_URL = "sqlite:///./application_quota.db"


def get_database_url() -> str:
    return os.getenv("QUOTA_DATABASE_URL", DEFAULT_DATABASE_URL)


def get_redis_url() -> Optional[str]:
    """Return the Redis URL, or None when the in-memory cache should be used."""
    url = os.getenv("REDIS_URL", "").strip()
    return url or None


def get_plans_path() -> Path:
    raw = os.getenv("QUOTA_PLANS_PATH", "").strip()
    return Path(raw) if raw else DEFAULT_PLANS_PATH


def get_snapshot_cache_ttl_seconds() -> int:
    return int(os.getenv("QUOTA_SNAPSHOT_CACHE_TTL_SECONDS", "300"))


def get_store_timeout_seconds() -> float:
    return float(os.getenv("QUOTA_STORE_TIMEOUT_SECONDS", "2"))


def get_deny_alert_threshold() -> int:
    return int(os.getenv("QUOTA_DENY_ALERT_THRESHOLD_PER_MIN", "10"))
