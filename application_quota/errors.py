"""
Entitlement error hierarchy.

Provides:
- EntitlementError: base for all entitlement failures
- UnknownPlanError: a plan id missing from the catalog (data integrity)
- EvaluationFailedError: snapshot or counter could not be read (fail-closed)

Routine denials (plan forbids the action, quota reached) are never raised;
they are returned as reason codes on EligibilityResult.
"""

from typing import Optional


class EntitlementError(Exception):
    """Base exception for entitlement-related failures."""

    error_code = "ENTITLEMENT_ERROR"
    # client-facing text; None exposes the internal message
    public_message: Optional[str] = None

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"error": self.error_code, "message": self.public_message or self.message}


class UnknownPlanError(EntitlementError):
    """
    Raised when a plan id is not registered in the plan catalog.

    This is a data-integrity fault that should page an operator. The plan id
    is kept on the exception but left out of to_dict() so it is not echoed to
    end users.
    """

    error_code = "UNKNOWN_PLAN"
    public_message = "Subscription plan is not configured"

    def __init__(self, plan_id: str):
        self.plan_id = plan_id
        super().__init__(f"Unknown plan id: {plan_id!r}")


class EvaluationFailedError(EntitlementError):
    """
    Raised when the subscription snapshot or usage counter cannot be read.

    The evaluator converts this into a denied result with reason
    EVALUATION_FAILED.
    """

    error_code = "EVALUATION_FAILED"

    def __init__(
        self,
        principal_id: str,
        detail: str,
        cause: Optional[Exception] = None,
    ):
        self.principal_id = principal_id
        self.detail = detail
        self.cause = cause
        super().__init__(f"Entitlement evaluation failed for {principal_id}: {detail}")
