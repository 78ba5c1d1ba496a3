"""
Structured error classes for entitlement enforcement.

Entitlement decisions are plain return values; EntitlementDeniedError only
exists so route handlers can stop early via enforce(). It always carries the
machine-readable reason code.
"""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from src.entitlements.models import AccessDecision


class EntitlementError(Exception):
    """Base exception for entitlement errors."""
    pass


class EntitlementDeniedError(EntitlementError):
    """
    Raised by enforce() when a decision is not ALLOW.

    Rendered by the application's exception handler with the decision's
    HTTP status and reason code.
    """

    def __init__(self, decision: "AccessDecision"):
        self.decision = decision
        self.http_status = decision.http_status
        super().__init__(
            f"{decision.action.value} on {decision.resource_type.value} denied: {decision.code}"
        )

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON response."""
        return self.decision.to_error_response()
