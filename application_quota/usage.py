"""
Durable, concurrency-safe usage counters.

Consumption is a single conditional UPDATE (count = count + 1 WHERE
count < limit), so concurrent requests from the same principal can never
push a window past its limit. The first consume in a window inserts the
row; a concurrent insert loses on the unique constraint and retries the
conditional update.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from .models import ConsumeOutcome, ConsumeResult, as_utc
from .tables import UsageCounterRecord, UsageReservationRecord, generate_uuid

logger = logging.getLogger(__name__)

MAX_INSERT_ATTEMPTS = 3


class UsageCounter:
    """Per-(principal, window) action counter backed by the database."""

    def __init__(self, db_session: Session):
        self.db = db_session

    def peek(self, principal_id: str, window_start: datetime) -> int:
        """Current count for the window; 0 if nothing was consumed. Never writes."""
        count = self._read_count(_require_principal_id(principal_id), as_utc(window_start))
        return count or 0

    def try_consume(
        self,
        principal_id: str,
        window_start: datetime,
        limit: int,
        now: datetime,
    ) -> ConsumeResult:
        """
        Atomically consume one unit if the window is below `limit`.

        Returns CONSUMED with the new count and a reservation id, or REJECTED
        with the unchanged count.
        """
        principal_id = _require_principal_id(principal_id)
        window_start = as_utc(window_start)
        if limit <= 0:
            return ConsumeResult(ConsumeOutcome.REJECTED, count=self.peek(principal_id, window_start))
        return self._increment(principal_id, window_start, limit, now)

    def record_unlimited(
        self,
        principal_id: str,
        window_start: datetime,
        now: datetime,
    ) -> Optional[str]:
        """
        Best-effort analytics increment for unlimited plans.

        Store failures are logged and swallowed: an unlimited action is never
        denied because its usage could not be recorded.
        """
        try:
            result = self._increment(
                _require_principal_id(principal_id), as_utc(window_start), None, now
            )
        except (SQLAlchemyError, RuntimeError) as exc:
            logger.warning(
                "Failed to record unlimited usage",
                extra={"principal_id": principal_id, "error": str(exc)},
            )
            return None
        return result.reservation_id

    def release(self, principal_id: str, reservation_id: str, now: datetime) -> bool:
        """
        Undo one reservation.

        The reservation is marked released with a conditional update, and the
        counter is decremented only if that update matched, never below zero.
        Releasing the same reservation again is a no-op returning False.
        """
        principal_id = _require_principal_id(principal_id)
        if not str(reservation_id or "").strip():
            raise ValueError("reservation_id is required")

        try:
            marked = self.db.execute(
                update(UsageReservationRecord)
                .where(
                    UsageReservationRecord.id == reservation_id,
                    UsageReservationRecord.principal_id == principal_id,
                    UsageReservationRecord.released_at.is_(None),
                )
                .values(released_at=as_utc(now))
                .execution_options(synchronize_session=False)
            )
            if marked.rowcount != 1:
                self.db.rollback()
                logger.info(
                    "Release ignored: reservation unknown or already released",
                    extra={"principal_id": principal_id, "reservation_id": reservation_id},
                )
                return False

            window_start = self.db.execute(
                select(UsageReservationRecord.window_start).where(
                    UsageReservationRecord.id == reservation_id
                )
            ).scalar_one()
            self.db.execute(
                update(UsageCounterRecord)
                .where(
                    UsageCounterRecord.principal_id == principal_id,
                    UsageCounterRecord.window_start == as_utc(window_start),
                    UsageCounterRecord.count > 0,
                )
                .values(count=UsageCounterRecord.count - 1)
                .execution_options(synchronize_session=False)
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            "Released usage reservation",
            extra={"principal_id": principal_id, "reservation_id": reservation_id},
        )
        return True

    def _increment(
        self,
        principal_id: str,
        window_start: datetime,
        limit: Optional[int],
        now: datetime,
    ) -> ConsumeResult:
        for attempt in range(1, MAX_INSERT_ATTEMPTS + 1):
            try:
                stmt = update(UsageCounterRecord).where(
                    UsageCounterRecord.principal_id == principal_id,
                    UsageCounterRecord.window_start == window_start,
                )
                if limit is not None:
                    stmt = stmt.where(UsageCounterRecord.count < limit)
                updated = self.db.execute(
                    stmt.values(count=UsageCounterRecord.count + 1)
                    .execution_options(synchronize_session=False)
                )

                if updated.rowcount == 1:
                    reservation_id = self._add_reservation(principal_id, window_start, now)
                    count = self._read_count(principal_id, window_start)
                    self.db.commit()
                    return ConsumeResult(ConsumeOutcome.CONSUMED, count=count, reservation_id=reservation_id)

                existing = self._read_count(principal_id, window_start)
                if existing is not None:
                    self.db.rollback()
                    return ConsumeResult(ConsumeOutcome.REJECTED, count=existing)

                # first consume in this window
                self.db.add(UsageCounterRecord(
                    principal_id=principal_id,
                    window_start=window_start,
                    count=1,
                ))
                reservation_id = self._add_reservation(principal_id, window_start, now)
                self.db.commit()
                return ConsumeResult(ConsumeOutcome.CONSUMED, count=1, reservation_id=reservation_id)

            except IntegrityError:
                self.db.rollback()
                logger.debug(
                    "Concurrent counter insert, retrying conditional update",
                    extra={"principal_id": principal_id, "attempt": attempt},
                )
            except Exception:
                self.db.rollback()
                raise

        raise RuntimeError(
            f"Could not create usage counter for {principal_id} after {MAX_INSERT_ATTEMPTS} attempts"
        )

    def _add_reservation(self, principal_id: str, window_start: datetime, now: datetime) -> str:
        reservation_id = generate_uuid()
        self.db.add(UsageReservationRecord(
            id=reservation_id,
            principal_id=principal_id,
            window_start=window_start,
            reserved_at=as_utc(now),
        ))
        return reservation_id

    def _read_count(self, principal_id: str, window_start: datetime) -> Optional[int]:
        return self.db.execute(
            select(UsageCounterRecord.count).where(
                UsageCounterRecord.principal_id == principal_id,
                UsageCounterRecord.window_start == window_start,
            )
        ).scalar_one_or_none()


def _require_principal_id(principal_id: str) -> str:
    normalized = str(principal_id).strip()
    if not normalized:
        raise ValueError("principal_id is required")
    return normalized
