"""
Entitlement policy evaluation.

evaluate_access() is the pure, ordered decision function. EntitlementEngine
loads the state it needs from the credential store (resource, tier,
membership) and delegates to it.

Decision order (first match wins):
1. resource missing                         -> DENY_NOT_FOUND
2. action needs auth, actor anonymous       -> DENY_AUTH_REQUIRED
3. login action, account unverified         -> DENY_UNVERIFIED
4. premium resource, actor not premium      -> DENY_PREMIUM_REQUIRED
5. group-scoped action, actor not a member  -> DENY_NOT_MEMBER
6. admin action, actor not admin            -> DENY_ADMIN_REQUIRED
7. otherwise                                -> ALLOW

The tier check (4) runs before the membership check (5): a member of a group
that was later promoted to premium is still denied as premium_required.
"""

import logging
from datetime import datetime
from typing import Callable, Optional

from src.config.access_policy import AccessPolicy, get_access_policy
from src.entitlements.audit import EntitlementAuditLogger, get_audit_logger
from src.entitlements.errors import EntitlementDeniedError
from src.entitlements.models import (
    ACTION_REQUIREMENTS,
    AccessDecision,
    Action,
    ActorState,
    Decision,
    ResourceState,
    ResourceType,
)
from src.models.base import utcnow
from src.models.forum import Forum, ForumPost
from src.models.group import Group
from src.models.user import User
from src.models.zoom_call import ZoomCall
from src.repositories.credential_store import CredentialStore

logger = logging.getLogger(__name__)


def evaluate_access(
    actor: Optional[ActorState],
    action: Action,
    resource: Optional[ResourceState],
    is_member: bool = False,
    hide_premium_from_anonymous: bool = False,
) -> Decision:
    """
    Decide whether `actor` may perform `action` on `resource`.

    Args:
        actor: Signed-in user snapshot, or None for anonymous callers
        action: Operation being attempted
        resource: Target resource snapshot, or None if it does not exist
        is_member: Whether the actor holds a membership in the resource's group
        hide_premium_from_anonymous: Report premium resources as not found
            to anonymous callers instead of premium_required

    Returns:
        Decision
    """
    requirements = ACTION_REQUIREMENTS[action]

    if resource is None:
        return Decision.DENY_NOT_FOUND

    if (
        hide_premium_from_anonymous
        and actor is None
        and requirements.tier_gated
        and resource.is_premium
    ):
        return Decision.DENY_NOT_FOUND

    if requirements.requires_auth and actor is None:
        return Decision.DENY_AUTH_REQUIRED

    if requirements.is_login and actor is not None and not actor.is_verified:
        return Decision.DENY_UNVERIFIED

    if requirements.tier_gated and resource.is_premium:
        if actor is None or not actor.is_premium:
            return Decision.DENY_PREMIUM_REQUIRED

    if requirements.group_scoped and not is_member:
        return Decision.DENY_NOT_MEMBER

    if requirements.admin_only and (actor is None or not actor.is_admin):
        return Decision.DENY_ADMIN_REQUIRED

    return Decision.ALLOW


def enforce(decision: AccessDecision) -> AccessDecision:
    """Raise EntitlementDeniedError unless the decision allows access."""
    if not decision.allowed:
        raise EntitlementDeniedError(decision)
    return decision


class EntitlementEngine:
    """
    Resolves access decisions against current stored state.

    One instance per request / job. Never raises for a well-formed input:
    a missing resource is a DENY_NOT_FOUND decision, not an error. Store
    connectivity failures propagate unchanged and are never read as a deny.
    """

    def __init__(
        self,
        store: CredentialStore,
        policy: Optional[AccessPolicy] = None,
        audit_logger: Optional[EntitlementAuditLogger] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.policy = policy or get_access_policy()
        self._audit = audit_logger or get_audit_logger()
        self._clock = clock

    # ------------------------------------------------------------------
    # Primary API
    # ------------------------------------------------------------------

    def check(
        self,
        user: Optional[User],
        action: Action,
        resource_type: ResourceType,
        resource_id: Optional[str] = None,
        endpoint: Optional[str] = None,
    ) -> AccessDecision:
        """
        Decide access for a stored resource.

        Args:
            user: Signed-in user, or None for anonymous callers
            action: Operation being attempted
            resource_type: Kind of resource targeted
            resource_id: Primary key of the resource (ignored for ACCOUNT/PLATFORM)
            endpoint: Request path, recorded on denials

        Returns:
            AccessDecision
        """
        actor = self._actor(user)
        resource = self._load_resource(resource_type, resource_id, user)

        is_member = False
        requirements = ACTION_REQUIREMENTS[action]
        if requirements.group_scoped and actor is not None and resource is not None:
            is_member = self.store.has_membership(actor.user_id, resource.group_id)

        decision = evaluate_access(
            actor,
            action,
            resource,
            is_member=is_member,
            hide_premium_from_anonymous=self.policy.hide_premium_resources_from_anonymous,
        )
        return self._finish(decision, action, resource_type, resource_id, actor, endpoint)

    def check_tier(
        self,
        user: Optional[User],
        resource_type: ResourceType,
        premium: bool,
        endpoint: Optional[str] = None,
    ) -> AccessDecision:
        """Decide whether the caller may read a whole tier (list endpoints)."""
        actor = self._actor(user)
        resource = ResourceState(resource_type=resource_type, is_premium=premium)
        decision = evaluate_access(
            actor,
            Action.READ,
            resource,
            hide_premium_from_anonymous=self.policy.hide_premium_resources_from_anonymous,
        )
        return self._finish(decision, Action.READ, resource_type, None, actor, endpoint)

    def check_login(self, user: User) -> AccessDecision:
        """Decide whether a credential-checked user may start a session."""
        return self.check(user, Action.LOGIN, ResourceType.ACCOUNT, user.id)

    def check_admin(self, user: Optional[User], endpoint: Optional[str] = None) -> AccessDecision:
        return self.check(user, Action.ADMIN, ResourceType.PLATFORM, endpoint=endpoint)

    def check_authenticated(
        self, user: Optional[User], action: Action, endpoint: Optional[str] = None
    ) -> AccessDecision:
        """For account-level actions that only need a signed-in caller."""
        return self.check(user, action, ResourceType.ACCOUNT, endpoint=endpoint)

    # ------------------------------------------------------------------
    # State loading
    # ------------------------------------------------------------------

    def _actor(self, user: Optional[User]) -> Optional[ActorState]:
        if user is None:
            return None
        return ActorState.from_user(user, self._clock())

    def _load_resource(
        self,
        resource_type: ResourceType,
        resource_id: Optional[str],
        user: Optional[User],
    ) -> Optional[ResourceState]:
        if resource_type == ResourceType.PLATFORM:
            return ResourceState(resource_type=resource_type)

        if resource_type == ResourceType.ACCOUNT:
            target_id = resource_id or (user.id if user is not None else None)
            return ResourceState(resource_type=resource_type, resource_id=target_id)

        if resource_type == ResourceType.FORUM:
            forum = self.store.get(Forum, resource_id)
            if forum is None:
                return None
            return ResourceState(resource_type, forum.id, bool(forum.is_premium))

        if resource_type == ResourceType.FORUM_POST:
            post = self.store.get(ForumPost, resource_id)
            if post is None:
                return None
            forum = self.store.get(Forum, post.forum_id)
            if forum is None:
                return None
            return ResourceState(resource_type, post.id, bool(forum.is_premium))

        if resource_type == ResourceType.GROUP:
            group = self.store.get(Group, resource_id)
            if group is None:
                return None
            return ResourceState(resource_type, group.id, bool(group.is_premium), group.id)

        if resource_type == ResourceType.ZOOM_CALL:
            call = self.store.get(ZoomCall, resource_id)
            if call is None:
                return None
            group = self.store.get(Group, call.group_id)
            if group is None:
                return None
            return ResourceState(resource_type, call.id, bool(group.is_premium), group.id)

        raise ValueError(f"Unknown resource type: {resource_type}")

    def _finish(
        self,
        decision: Decision,
        action: Action,
        resource_type: ResourceType,
        resource_id: Optional[str],
        actor: Optional[ActorState],
        endpoint: Optional[str],
    ) -> AccessDecision:
        result = AccessDecision(
            decision=decision,
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            user_id=actor.user_id if actor else None,
        )
        if not result.allowed:
            self._audit.log_denial(result, endpoint=endpoint)
        return result
