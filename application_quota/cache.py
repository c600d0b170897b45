from __future__ import annotations

import json
import logging
import time
from datetime import datetime
from threading import RLock
from typing import Dict, Optional

import redis

from .config import get_redis_url, get_snapshot_cache_ttl_seconds, get_store_timeout_seconds
from .models import SubscriptionSnapshot, SubscriptionStatus

logger = logging.getLogger(__name__)

CACHE_SCHEMA_VERSION = 1


class SnapshotCache:
    """Redis-backed subscription snapshot cache with in-memory fallback."""

    def __init__(self, redis_url: Optional[str] = None, ttl_seconds: Optional[int] = None) -> None:
        self._ttl_seconds = ttl_seconds if ttl_seconds is not None else get_snapshot_cache_ttl_seconds()
        self._redis: Optional[redis.Redis] = None
        self._mem: Dict[str, tuple[float, dict]] = {}
        self._mem_lock = RLock()
        redis_url = get_redis_url() if redis_url is None else redis_url

        if redis_url:
            timeout = get_store_timeout_seconds()
            try:
                client = redis.from_url(
                    redis_url,
                    decode_responses=True,
                    socket_connect_timeout=timeout,
                    socket_timeout=timeout,
                )
                client.ping()
                self._redis = client
            except redis.RedisError as exc:
                logger.warning("Redis unavailable, using in-memory snapshot cache: %s", exc)

    @property
    def ttl_seconds(self) -> int:
        return self._ttl_seconds

    @staticmethod
    def _require_principal_id(principal_id: str) -> str:
        normalized = str(principal_id).strip()
        if not normalized:
            raise ValueError("principal_id is required")
        return normalized

    @staticmethod
    def _key(principal_id: str) -> str:
        return f"quota:snapshot:v{CACHE_SCHEMA_VERSION}:{principal_id}"

    def get(self, principal_id: str) -> Optional[SubscriptionSnapshot]:
        key = self._key(self._require_principal_id(principal_id))

        if self._redis is not None:
            try:
                raw = self._redis.get(key)
            except redis.RedisError as exc:
                logger.warning("Snapshot cache get failed: %s", exc)
                return None
            if not raw:
                return None
            snapshot = _load_entry(raw, json.loads)
            if snapshot is None:
                self._discard(key)
            return snapshot

        with self._mem_lock:
            data = self._mem.get(key)
            if not data:
                return None
            cached_at, payload = data
            if time.monotonic() - cached_at > self._ttl_seconds:
                self._mem.pop(key, None)
                return None
        snapshot = _load_entry(payload, dict)
        if snapshot is None:
            self._discard(key)
        return snapshot

    def set(self, snapshot: SubscriptionSnapshot) -> None:
        key = self._key(self._require_principal_id(snapshot.principal_id))
        payload = _encode_snapshot(snapshot)

        if self._redis is not None:
            try:
                self._redis.setex(key, self._ttl_seconds, json.dumps(payload))
            except redis.RedisError as exc:
                logger.warning("Snapshot cache set failed: %s", exc)
            return

        with self._mem_lock:
            self._mem[key] = (time.monotonic(), payload)

    def invalidate(self, principal_id: str) -> None:
        self._discard(self._key(self._require_principal_id(principal_id)))

    def _discard(self, key: str) -> None:
        if self._redis is not None:
            try:
                self._redis.delete(key)
            except redis.RedisError as exc:
                # a stale entry still expires after the TTL
                logger.warning("Snapshot cache delete failed: %s", exc)
        with self._mem_lock:
            self._mem.pop(key, None)


def _encode_snapshot(snapshot: SubscriptionSnapshot) -> dict:
    return {
        "schema_version": CACHE_SCHEMA_VERSION,
        "principal_id": snapshot.principal_id,
        "plan_id": snapshot.plan_id,
        "status": snapshot.status.value,
        "subscribed_at": snapshot.subscribed_at.isoformat(),
        "cancel_at_period_end": snapshot.cancel_at_period_end,
        "current_period_end": (
            snapshot.current_period_end.isoformat() if snapshot.current_period_end else None
        ),
    }


def _load_entry(raw, parse) -> Optional[SubscriptionSnapshot]:
    """Decode a stored entry; unreadable entries count as a miss."""
    try:
        return _decode_snapshot(parse(raw))
    except (ValueError, KeyError, TypeError, AttributeError) as exc:
        logger.warning("Discarding unreadable snapshot cache entry: %s", exc)
        return None


def _decode_snapshot(raw: dict) -> Optional[SubscriptionSnapshot]:
    if int(raw.get("schema_version", 0)) != CACHE_SCHEMA_VERSION:
        logger.info("Ignoring snapshot cache entry with old schema version")
        return None

    period_end = raw.get("current_period_end")
    return SubscriptionSnapshot(
        principal_id=raw["principal_id"],
        plan_id=raw["plan_id"],
        status=SubscriptionStatus(raw["status"]),
        subscribed_at=datetime.fromisoformat(raw["subscribed_at"]),
        cancel_at_period_end=bool(raw.get("cancel_at_period_end", False)),
        current_period_end=datetime.fromisoformat(period_end) if period_end else None,
    )
