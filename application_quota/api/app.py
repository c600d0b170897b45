"""FastAPI application factory for the entitlement service."""

import logging
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from application_quota.api.routes import router
from application_quota.cache import SnapshotCache
from application_quota.errors import UnknownPlanError

logger = logging.getLogger(__name__)


async def unknown_plan_handler(request: Request, exc: UnknownPlanError) -> JSONResponse:
    # plan id goes to operators only
    logger.error(
        "Unknown plan during entitlement request",
        extra={"plan_id": exc.plan_id, "path": request.url.path},
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=exc.to_dict(),
    )


def create_app(snapshot_cache: Optional[SnapshotCache] = None) -> FastAPI:
    """Build the app; the snapshot cache is shared by all requests of this app."""
    app = FastAPI(title="Application Quota Engine")
    app.state.snapshot_cache = snapshot_cache if snapshot_cache is not None else SnapshotCache()
    app.add_exception_handler(UnknownPlanError, unknown_plan_handler)
    app.include_router(router)
    return app
