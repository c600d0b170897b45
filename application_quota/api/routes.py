"""
Entitlement endpoints for the application action.

- GET  /entitlement/status   read-only eligibility for UI display
- POST /entitlement/reserve  consume one application slot
- POST /entitlement/release  compensate a reservation (idempotent)

Denials are routine and return 200 with allowed=false. Only a fail-closed
evaluation failure returns 503.

SECURITY: principal_id comes from request.state, set by the identity
middleware; it is never read from the request body.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from application_quota.api.schemas import EntitlementResponse, ReleaseRequest, ReleaseResponse
from application_quota.cache import SnapshotCache
from application_quota.db import get_db_session
from application_quota.models import EligibilityResult, ReasonCode
from application_quota.service import EntitlementService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/entitlement", tags=["entitlement"])


def get_principal_id(request: Request) -> str:
    principal_id = getattr(request.state, "principal_id", None)
    if principal_id:
        return principal_id
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing principal context")


def get_snapshot_cache(request: Request) -> SnapshotCache:
    """App-owned snapshot cache, created by create_app()."""
    cache = getattr(request.app.state, "snapshot_cache", None)
    if cache is None:
        raise RuntimeError("Snapshot cache is not configured on app.state")
    return cache


def get_entitlement_service(
    db_session: Session = Depends(get_db_session),
    snapshot_cache: SnapshotCache = Depends(get_snapshot_cache),
) -> EntitlementService:
    return EntitlementService(db_session, cache=snapshot_cache)


def _respond(result: EligibilityResult):
    body = EntitlementResponse.from_result(result)
    if result.reason_code == ReasonCode.EVALUATION_FAILED:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=body.model_dump(by_alias=True, mode="json"),
        )
    return body


@router.get("/status", response_model=EntitlementResponse)
def get_status(
    principal_id: str = Depends(get_principal_id),
    service: EntitlementService = Depends(get_entitlement_service),
):
    """Current eligibility, used/remaining counts and reset time."""
    return _respond(service.status(principal_id))


@router.post("/reserve", response_model=EntitlementResponse)
def reserve(
    principal_id: str = Depends(get_principal_id),
    service: EntitlementService = Depends(get_entitlement_service),
):
    """Consume one application slot if the plan and quota allow it."""
    return _respond(service.reserve(principal_id))


@router.post("/release", response_model=ReleaseResponse)
def release(
    payload: ReleaseRequest,
    principal_id: str = Depends(get_principal_id),
    service: EntitlementService = Depends(get_entitlement_service),
) -> ReleaseResponse:
    """Undo a reservation whose application could not be created."""
    released = service.release(principal_id, payload.reservation_id)
    return ReleaseResponse(released=released)
