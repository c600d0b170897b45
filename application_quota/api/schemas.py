"""
Pydantic schemas for the entitlement API.

Field names are camelCase on the wire to match the web client.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from application_quota.models import EligibilityResult


class EntitlementResponse(BaseModel):
    """Eligibility of the current principal to submit an application."""

    model_config = ConfigDict(populate_by_name=True)

    allowed: bool = Field(..., description="Whether an application may be submitted now")
    reason_code: str = Field(..., alias="reasonCode", description="ALLOWED or the denial reason")
    plan_name: str = Field(..., alias="planName", description="Display name of the plan in force")
    used: int = Field(..., description="Applications submitted in the current window")
    limit: Optional[int] = Field(None, description="Applications per window, null when unlimited")
    remaining: Optional[int] = Field(None, description="Applications left, null when unlimited")
    window_start: Optional[datetime] = Field(
        None, alias="windowStart", description="Start of the counted usage period"
    )
    reset_at: Optional[datetime] = Field(None, alias="resetAt", description="When the quota resets")
    days_until_reset: Optional[int] = Field(None, alias="daysUntilReset", description="Whole days until reset")
    reservation_id: Optional[str] = Field(
        None, alias="reservationId", description="Set by reserve; pass to release on failure"
    )

    @classmethod
    def from_result(cls, result: EligibilityResult) -> "EntitlementResponse":
        return cls(
            allowed=result.allowed,
            reason_code=result.reason_code.value,
            plan_name=result.plan_name,
            used=result.used,
            limit=result.limit,
            remaining=result.remaining,
            window_start=result.window_start,
            reset_at=result.window_end,
            days_until_reset=result.days_until_reset,
            reservation_id=result.reservation_id,
        )


class ReleaseRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    reservation_id: str = Field(..., alias="reservationId", min_length=1)


class ReleaseResponse(BaseModel):
    released: bool = Field(..., description="False when already released or unknown")
