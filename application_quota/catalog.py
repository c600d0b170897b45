from __future__ import annotations

import json
import logging
from pathlib import Path
from threading import RLock
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Union

from .config import get_plans_path
from .errors import UnknownPlanError
from .models import FeatureSet

logger = logging.getLogger(__name__)

_PLAN_ID_PREFIX = "plan_"


def normalize_plan_id(plan_id: str) -> str:
    """Normalize billing-provider plan ids: 'plan_Standard ' -> 'standard'."""
    normalized = str(plan_id).strip().lower()
    if normalized.startswith(_PLAN_ID_PREFIX):
        return normalized[len(_PLAN_ID_PREFIX) :]
    return normalized


class PlanCatalog:
    """Loads plan-to-feature-set mappings from plans.json with reload support."""

    def __init__(self, config_path: Optional[Union[str, Path]] = None) -> None:
        self._config_path = Path(config_path) if config_path else get_plans_path()
        self._lock = RLock()
        self._plans: Mapping[str, FeatureSet]
        self._default_plan_id: str
        self.reload()

    @property
    def default_plan_id(self) -> str:
        with self._lock:
            return self._default_plan_id

    def plan_ids(self) -> List[str]:
        with self._lock:
            return sorted(self._plans)

    def reload(self) -> None:
        """Reload config from disk (for safe process restart workflows)."""
        raw = self._read_config_file()
        plans, default_plan_id = self._parse_config(raw)
        with self._lock:
            self._plans = plans
            self._default_plan_id = default_plan_id
        logger.info(
            "Loaded plan catalog",
            extra={"path": str(self._config_path), "plans": sorted(plans)},
        )

    def get_feature_set(self, plan_id: str) -> FeatureSet:
        if not str(plan_id or "").strip():
            raise ValueError("plan_id is required")
        normalized = normalize_plan_id(plan_id)
        with self._lock:
            feature_set = self._plans.get(normalized)
        if feature_set is None:
            raise UnknownPlanError(plan_id)
        return feature_set

    def get_default_feature_set(self) -> FeatureSet:
        return self.get_feature_set(self.default_plan_id)

    def _read_config_file(self) -> dict:
        with self._config_path.open("r", encoding="utf-8") as handle:
            raw = json.load(handle)
        if not isinstance(raw, dict):
            raise ValueError("plans.json must contain a top-level object")
        return raw

    @staticmethod
    def _parse_config(raw: dict) -> tuple[Mapping[str, FeatureSet], str]:
        plans_raw = raw.get("plans")
        if not isinstance(plans_raw, dict):
            raise ValueError("plans.json must include an object field named 'plans'")

        plans: Dict[str, FeatureSet] = {}
        for plan_key, plan_data in plans_raw.items():
            if not isinstance(plan_key, str) or not plan_key.strip():
                raise ValueError("each plan key must be a non-empty string")
            if not isinstance(plan_data, dict):
                raise ValueError(f"plan '{plan_key}' must be an object")

            plan_id = normalize_plan_id(plan_key)
            if plan_id in plans:
                raise ValueError(f"plan '{plan_key}' is defined more than once")

            can_act = plan_data.get("can_submit_application")
            if not isinstance(can_act, bool):
                raise ValueError(f"plan '{plan_key}' can_submit_application must be a boolean")

            limit = _optional_int(plan_key, plan_data, "applications_per_window")
            window_days = _optional_int(plan_key, plan_data, "window_length_days")

            features = plan_data.get("features", [])
            if not isinstance(features, list):
                raise ValueError(f"plan '{plan_key}' features must be a list of feature keys")
            normalized_features: List[str] = []
            for feature_key in features:
                if not isinstance(feature_key, str) or not feature_key.strip():
                    raise ValueError(f"plan '{plan_key}' has invalid feature key: {feature_key!r}")
                normalized_features.append(feature_key.strip())

            plans[plan_id] = FeatureSet(
                plan_id=plan_id,
                display_name=str(plan_data.get("display_name") or plan_id.title()),
                can_perform_action=can_act,
                action_limit_per_window=limit,
                window_length_days=window_days,
                features=frozenset(normalized_features),
            )

        if not plans:
            raise ValueError("plans.json must define at least one plan")

        default_plan_id = normalize_plan_id(raw.get("default_plan", "free"))
        if default_plan_id not in plans:
            raise ValueError(f"default_plan '{default_plan_id}' is not a defined plan")

        return MappingProxyType(plans), default_plan_id


def _optional_int(plan_key: str, plan_data: dict, field_name: str) -> Optional[int]:
    value = plan_data.get(field_name)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"plan '{plan_key}' {field_name} must be an integer or null")
    return value


_default_catalog: Optional[PlanCatalog] = None
_default_catalog_lock = RLock()


def get_default_catalog() -> PlanCatalog:
    """Process-wide catalog; immutable after load so it is safe to share."""
    global _default_catalog
    with _default_catalog_lock:
        if _default_catalog is None:
            _default_catalog = PlanCatalog()
        return _default_catalog
