"""
Entitlement engine for community resources.

This module provides:
- evaluate_access: pure, ordered access decision over actor/resource state
- EntitlementEngine: loads state from the credential store and decides
- enforce: turn a non-ALLOW decision into EntitlementDeniedError
- EntitlementAuditLogger: log every access denial

Roles: guest, verified member, premium member, admin.
Resource visibility: a single is_premium flag per forum / group.
"""

from src.entitlements.models import (
    ACTION_REQUIREMENTS,
    AccessDecision,
    Action,
    ActionRequirements,
    ActorState,
    Decision,
    ResourceState,
    ResourceType,
)
from src.entitlements.policy import EntitlementEngine, enforce, evaluate_access
from src.entitlements.errors import EntitlementError, EntitlementDeniedError
from src.entitlements.audit import EntitlementAuditLogger, AccessDenialEvent

__all__ = [
    "ACTION_REQUIREMENTS",
    "AccessDecision",
    "Action",
    "ActionRequirements",
    "ActorState",
    "Decision",
    "ResourceState",
    "ResourceType",
    "EntitlementEngine",
    "enforce",
    "evaluate_access",
    "EntitlementError",
    "EntitlementDeniedError",
    "EntitlementAuditLogger",
    "AccessDenialEvent",
]
