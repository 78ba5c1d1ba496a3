"""
Entitlement Audit Logger - log every access denial.

Denials are written to the dedicated "entitlements.audit" logger as
structured records so they can be shipped and queried separately from
application logs. Grants are not logged.
"""

import logging
import uuid
from dataclasses import dataclass, asdict, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from src.entitlements.models import AccessDecision

logger = logging.getLogger(__name__)

# Dedicated audit logger for structured logging
audit_logger = logging.getLogger("entitlements.audit")


@dataclass
class AccessDenialEvent:
    """Structured event for an access denial."""

    action: str
    resource_type: str
    decision: str
    code: str
    resource_id: Optional[str] = None
    user_id: Optional[str] = None
    endpoint: Optional[str] = None
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @classmethod
    def from_decision(
        cls, decision: AccessDecision, endpoint: Optional[str] = None
    ) -> "AccessDenialEvent":
        return cls(
            action=decision.action.value,
            resource_type=decision.resource_type.value,
            decision=decision.decision.value,
            code=decision.code,
            resource_id=decision.resource_id,
            user_id=decision.user_id,
            endpoint=endpoint,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return asdict(self)


class EntitlementAuditLogger:
    """Writes access denials to the audit log."""

    def __init__(self, enabled: bool = True):
        self.enabled = enabled

    def log_denial(self, decision: AccessDecision, endpoint: Optional[str] = None) -> Optional[AccessDenialEvent]:
        """Log a denial. ALLOW decisions are ignored."""
        if not self.enabled or decision.allowed:
            return None

        event = AccessDenialEvent.from_decision(decision, endpoint=endpoint)
        audit_logger.info(
            "Access denied",
            extra={"audit_event": event.to_dict()},
        )
        return event


_audit_logger: Optional[EntitlementAuditLogger] = None


def get_audit_logger() -> EntitlementAuditLogger:
    """Return the process-wide audit logger."""
    global _audit_logger
    if _audit_logger is None:
        _audit_logger = EntitlementAuditLogger()
    return _audit_logger
