"""
Entitlement data types.

- Decision: the seven possible outcomes of an access check
- Action: every gated operation, with its static requirements
- ActorState / ResourceState: the snapshots a decision is computed from
- AccessDecision: a decision plus everything the client needs to render
  the right next step (log in, verify email, upgrade, join group)
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from fastapi import status


class Decision(str, Enum):
    """Outcome of an access check. First matching rule wins."""
    ALLOW = "allow"
    DENY_NOT_FOUND = "deny_not_found"
    DENY_AUTH_REQUIRED = "deny_auth_required"
    DENY_UNVERIFIED = "deny_unverified"
    DENY_PREMIUM_REQUIRED = "deny_premium_required"
    DENY_NOT_MEMBER = "deny_not_member"
    DENY_ADMIN_REQUIRED = "deny_admin_required"


class Action(str, Enum):
    """Operations the engine gates."""
    READ = "read"
    POST = "post"
    JOIN_GROUP = "join_group"
    LEAVE_GROUP = "leave_group"
    VIEW_CALLS = "view_calls"
    SCHEDULE_CALL = "schedule_call"
    JOIN_CALL = "join_call"
    LOGIN = "login"
    VIEW_ACCOUNT = "view_account"
    MANAGE_SUBSCRIPTION = "manage_subscription"
    ADMIN = "admin"


class ResourceType(str, Enum):
    """Kinds of resources an action can target."""
    FORUM = "forum"
    FORUM_POST = "forum_post"
    GROUP = "group"
    ZOOM_CALL = "zoom_call"
    ACCOUNT = "account"
    PLATFORM = "platform"


@dataclass(frozen=True)
class ActionRequirements:
    """Static requirements of an action."""
    requires_auth: bool = False
    tier_gated: bool = False
    group_scoped: bool = False
    admin_only: bool = False
    is_login: bool = False


# Single table of what each action demands. Handlers never re-derive this.
ACTION_REQUIREMENTS: Dict[Action, ActionRequirements] = {
    Action.READ: ActionRequirements(tier_gated=True),
    Action.POST: ActionRequirements(requires_auth=True, tier_gated=True),
    Action.JOIN_GROUP: ActionRequirements(requires_auth=True, tier_gated=True),
    Action.LEAVE_GROUP: ActionRequirements(requires_auth=True),
    Action.VIEW_CALLS: ActionRequirements(requires_auth=True, tier_gated=True, group_scoped=True),
    Action.SCHEDULE_CALL: ActionRequirements(requires_auth=True, tier_gated=True, group_scoped=True),
    Action.JOIN_CALL: ActionRequirements(requires_auth=True, tier_gated=True, group_scoped=True),
    Action.LOGIN: ActionRequirements(is_login=True),
    Action.VIEW_ACCOUNT: ActionRequirements(requires_auth=True),
    Action.MANAGE_SUBSCRIPTION: ActionRequirements(requires_auth=True),
    Action.ADMIN: ActionRequirements(requires_auth=True, admin_only=True),
}


@dataclass(frozen=True)
class ActorState:
    """Entitlement-relevant snapshot of a signed-in user."""
    user_id: str
    is_verified: bool
    is_premium: bool
    is_admin: bool

    @classmethod
    def from_user(cls, user: Any, now: Optional[datetime] = None) -> "ActorState":
        """Snapshot a User row; premium is re-validated against premium_until."""
        return cls(
            user_id=user.id,
            is_verified=bool(user.is_verified),
            is_premium=user.has_active_premium(now),
            is_admin=bool(user.is_admin),
        )


@dataclass(frozen=True)
class ResourceState:
    """Visibility-relevant snapshot of a resource."""
    resource_type: ResourceType
    resource_id: Optional[str] = None
    is_premium: bool = False
    group_id: Optional[str] = None


_NOT_FOUND_LABELS = {
    ResourceType.FORUM: "Forum not found",
    ResourceType.FORUM_POST: "Post not found",
    ResourceType.GROUP: "Group not found",
    ResourceType.ZOOM_CALL: "Zoom call not found",
    ResourceType.ACCOUNT: "User not found",
    ResourceType.PLATFORM: "Not found",
}

_MESSAGES = {
    Decision.ALLOW: "Access granted",
    Decision.DENY_AUTH_REQUIRED: "Authentication required",
    Decision.DENY_UNVERIFIED: "Please verify your email address before logging in",
    Decision.DENY_PREMIUM_REQUIRED: "Premium subscription required",
    Decision.DENY_NOT_MEMBER: "You must be a member of this group",
    Decision.DENY_ADMIN_REQUIRED: "Admin access required",
}

_CODES = {
    Decision.ALLOW: "allowed",
    Decision.DENY_NOT_FOUND: "not_found",
    Decision.DENY_AUTH_REQUIRED: "auth_required",
    Decision.DENY_UNVERIFIED: "email_unverified",
    Decision.DENY_PREMIUM_REQUIRED: "premium_required",
    Decision.DENY_NOT_MEMBER: "not_member",
    Decision.DENY_ADMIN_REQUIRED: "admin_required",
}

_NEXT_ACTIONS = {
    Decision.DENY_AUTH_REQUIRED: "login",
    Decision.DENY_UNVERIFIED: "verify_email",
    Decision.DENY_PREMIUM_REQUIRED: "upgrade",
    Decision.DENY_NOT_MEMBER: "join_group",
}

_HTTP_STATUS = {
    Decision.ALLOW: status.HTTP_200_OK,
    Decision.DENY_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    Decision.DENY_AUTH_REQUIRED: status.HTTP_401_UNAUTHORIZED,
    Decision.DENY_UNVERIFIED: status.HTTP_401_UNAUTHORIZED,
    Decision.DENY_PREMIUM_REQUIRED: status.HTTP_403_FORBIDDEN,
    Decision.DENY_NOT_MEMBER: status.HTTP_403_FORBIDDEN,
    Decision.DENY_ADMIN_REQUIRED: status.HTTP_403_FORBIDDEN,
}


@dataclass(frozen=True)
class AccessDecision:
    """Result of an access check."""
    decision: Decision
    action: Action
    resource_type: ResourceType
    resource_id: Optional[str] = None
    user_id: Optional[str] = None

    @property
    def allowed(self) -> bool:
        return self.decision == Decision.ALLOW

    @property
    def code(self) -> str:
        """Machine-readable reason code."""
        return _CODES[self.decision]

    @property
    def message(self) -> str:
        if self.decision == Decision.DENY_NOT_FOUND:
            return _NOT_FOUND_LABELS[self.resource_type]
        return _MESSAGES[self.decision]

    @property
    def next_action(self) -> Optional[str]:
        return _NEXT_ACTIONS.get(self.decision)

    @property
    def http_status(self) -> int:
        return _HTTP_STATUS[self.decision]

    def to_error_response(self) -> Dict[str, Any]:
        """Convert to API error response format."""
        return {
            "error": self.code,
            "message": self.message,
            "code": self.code,
            "next_action": self.next_action,
            "resource_type": self.resource_type.value,
        }
