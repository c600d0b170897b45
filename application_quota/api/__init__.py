"""HTTP surface for entitlement status, reserve and release."""

from application_quota.api.app import create_app
from application_quota.api.routes import router

__all__ = ["create_app", "router"]
