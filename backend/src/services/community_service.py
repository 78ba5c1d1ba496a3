"""
Community resources: forums, posts, replies, groups, memberships and
scheduled video calls, plus the admin operations that manage them.

Every public method first asks the entitlement engine and enforces the
decision, so a denied caller never reaches the data operation. Methods
take the caller's User (or None for anonymous callers) and an optional
endpoint used for denial audit records.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from src.config.access_policy import AccessPolicy, get_access_policy
from src.entitlements.models import Action, ResourceType
from src.entitlements.policy import EntitlementEngine, enforce
from src.models.base import utcnow
from src.models.forum import Forum, ForumPost, ForumReply
from src.models.group import Group
from src.models.user import User
from src.models.zoom_call import ZoomCall
from src.repositories.credential_store import CredentialStore

logger = logging.getLogger(__name__)

# Fields an admin may change on a user. Password hash and billing references
# are deliberately absent; premium fields go through the subscription service.
ADMIN_USER_FIELDS = frozenset({
    "full_name",
    "about_me",
    "profile_image",
    "is_admin",
    "is_verified",
})

FORUM_FIELDS = frozenset({"title", "description", "is_premium"})
GROUP_FIELDS = frozenset({"name", "description", "is_premium"})


class CommunityServiceError(Exception):
    """Base exception for community operations."""
    code = "community_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class AlreadyMemberError(CommunityServiceError):
    code = "already_member"


class NotMemberError(CommunityServiceError):
    code = "not_member"


class InvalidScheduleError(CommunityServiceError):
    """Call end time is not after its start time."""
    code = "invalid_schedule"


class RecordNotFoundError(CommunityServiceError):
    """Admin target record does not exist."""
    code = "not_found"


class CommunityService:
    """Forums, groups and calls, gated by the entitlement engine."""

    def __init__(
        self,
        store: CredentialStore,
        engine: Optional[EntitlementEngine] = None,
        policy: Optional[AccessPolicy] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.policy = policy or get_access_policy()
        self.engine = engine or EntitlementEngine(store, policy=self.policy, clock=clock)
        self._clock = clock

    def _authorize(
        self,
        user: Optional[User],
        action: Action,
        resource_type: ResourceType,
        resource_id: Optional[str] = None,
        endpoint: Optional[str] = None,
    ) -> None:
        enforce(self.engine.check(user, action, resource_type, resource_id, endpoint=endpoint))

    def _authors(self, user_ids) -> Dict[str, dict]:
        authors = {}
        for user_id in set(user_ids):
            author = self.store.get(User, user_id)
            if author is not None:
                authors[user_id] = author.to_summary_dict()
        return authors

    # ------------------------------------------------------------------
    # Forums
    # ------------------------------------------------------------------

    def list_forums(
        self, user: Optional[User], premium: bool = False, endpoint: Optional[str] = None
    ) -> List[dict]:
        enforce(self.engine.check_tier(user, ResourceType.FORUM, premium, endpoint=endpoint))
        forums = self.store.find(Forum, order_by="created_at", is_premium=premium)
        return [forum.to_dict() for forum in forums]

    def get_forum(
        self, user: Optional[User], forum_id: str, endpoint: Optional[str] = None
    ) -> dict:
        self._authorize(user, Action.READ, ResourceType.FORUM, forum_id, endpoint)
        return self.store.get(Forum, forum_id).to_dict()

    def list_posts(
        self, user: Optional[User], forum_id: str, endpoint: Optional[str] = None
    ) -> List[dict]:
        """Posts newest first, each with its author summary and reply count."""
        self._authorize(user, Action.READ, ResourceType.FORUM, forum_id, endpoint)
        posts = self.store.find(ForumPost, order_by="created_at", descending=True, forum_id=forum_id)
        authors = self._authors(post.user_id for post in posts)
        reply_counts = self.store.count_replies_by_post(post.id for post in posts)

        result = []
        for post in posts:
            data = post.to_dict()
            data["author"] = authors.get(post.user_id)
            data["reply_count"] = reply_counts.get(post.id, 0)
            result.append(data)
        return result

    def create_post(
        self,
        user: Optional[User],
        forum_id: str,
        title: str,
        content: str,
        endpoint: Optional[str] = None,
    ) -> dict:
        self._authorize(user, Action.POST, ResourceType.FORUM, forum_id, endpoint)
        post = self.store.create(ForumPost(
            forum_id=forum_id,
            user_id=user.id,
            title=title,
            content=content,
        ))
        logger.info("Forum post created", extra={"forum_id": forum_id, "user_id": user.id})
        data = post.to_dict()
        data["author"] = user.to_summary_dict()
        data["reply_count"] = 0
        return data

    def list_replies(
        self, user: Optional[User], post_id: str, endpoint: Optional[str] = None
    ) -> List[dict]:
        """Replies oldest first, each with its author summary."""
        self._authorize(user, Action.READ, ResourceType.FORUM_POST, post_id, endpoint)
        replies = self.store.find(ForumReply, order_by="created_at", post_id=post_id)
        authors = self._authors(reply.user_id for reply in replies)

        result = []
        for reply in replies:
            data = reply.to_dict()
            data["author"] = authors.get(reply.user_id)
            result.append(data)
        return result

    def create_reply(
        self,
        user: Optional[User],
        post_id: str,
        content: str,
        endpoint: Optional[str] = None,
    ) -> dict:
        self._authorize(user, Action.POST, ResourceType.FORUM_POST, post_id, endpoint)
        reply = self.store.create(ForumReply(post_id=post_id, user_id=user.id, content=content))
        data = reply.to_dict()
        data["author"] = user.to_summary_dict()
        return data

    # ------------------------------------------------------------------
    # Groups
    # ------------------------------------------------------------------

    def list_groups(
        self, user: Optional[User], premium: bool = False, endpoint: Optional[str] = None
    ) -> List[dict]:
        enforce(self.engine.check_tier(user, ResourceType.GROUP, premium, endpoint=endpoint))
        groups = self.store.find(Group, order_by="created_at", is_premium=premium)
        return [group.to_dict() for group in groups]

    def get_group(
        self, user: Optional[User], group_id: str, endpoint: Optional[str] = None
    ) -> dict:
        """Group detail with its member list and whether the caller belongs to it."""
        self._authorize(user, Action.READ, ResourceType.GROUP, group_id, endpoint)
        group = self.store.get(Group, group_id)
        members = self.store.list_members_for_group(group_id)

        data = group.to_dict()
        data["members"] = [member.to_summary_dict() for member in members]
        data["member_count"] = len(members)
        data["is_member"] = user is not None and any(m.id == user.id for m in members)
        return data

    def my_groups(self, user: Optional[User], endpoint: Optional[str] = None) -> List[dict]:
        enforce(self.engine.check_authenticated(user, Action.VIEW_ACCOUNT, endpoint=endpoint))
        memberships = self.store.list_memberships_for_user(user.id)
        groups = []
        for membership in memberships:
            group = self.store.get(Group, membership.group_id)
            if group is not None:
                data = group.to_dict()
                data["joined_at"] = membership.joined_at.isoformat()
                groups.append(data)
        return groups

    def suggested_groups(
        self,
        user: Optional[User],
        limit: Optional[int] = None,
        endpoint: Optional[str] = None,
    ) -> List[dict]:
        """
        Groups the caller has not joined. Callers without active premium only
        see free groups.
        """
        enforce(self.engine.check_authenticated(user, Action.VIEW_ACCOUNT, endpoint=endpoint))
        limit = limit or self.policy.suggested_groups_limit
        joined = {m.group_id for m in self.store.list_memberships_for_user(user.id)}

        filters = {} if user.has_active_premium(self._clock()) else {"is_premium": False}
        candidates = self.store.find(Group, order_by="created_at", **filters)
        return [g.to_dict() for g in candidates if g.id not in joined][:limit]

    def join_group(
        self, user: Optional[User], group_id: str, endpoint: Optional[str] = None
    ) -> dict:
        """
        Join a group.

        Raises:
            AlreadyMemberError: Second join; no second membership row is created
        """
        self._authorize(user, Action.JOIN_GROUP, ResourceType.GROUP, group_id, endpoint)
        membership, created = self.store.add_membership(user.id, group_id)
        if not created:
            raise AlreadyMemberError("Already a member of this group")

        logger.info("User joined group", extra={"user_id": user.id, "group_id": group_id})
        return {
            "message": "Successfully joined group",
            "group_id": group_id,
            "joined_at": membership.joined_at.isoformat(),
        }

    def leave_group(
        self, user: Optional[User], group_id: str, endpoint: Optional[str] = None
    ) -> dict:
        self._authorize(user, Action.LEAVE_GROUP, ResourceType.GROUP, group_id, endpoint)
        if not self.store.remove_membership(user.id, group_id):
            raise NotMemberError("Not a member of this group")

        logger.info("User left group", extra={"user_id": user.id, "group_id": group_id})
        return {"message": "Successfully left group", "group_id": group_id}

    # ------------------------------------------------------------------
    # Calls
    # ------------------------------------------------------------------

    def list_group_calls(
        self, user: Optional[User], group_id: str, endpoint: Optional[str] = None
    ) -> List[dict]:
        """A group's calls by start time. Join links are only handed out by join_call."""
        self._authorize(user, Action.VIEW_CALLS, ResourceType.GROUP, group_id, endpoint)
        calls = self.store.find(ZoomCall, order_by="start_time", group_id=group_id)
        return [call.to_dict() for call in calls]

    def schedule_call(
        self,
        user: Optional[User],
        group_id: str,
        title: str,
        start_time: datetime,
        end_time: datetime,
        zoom_link: str,
        description: Optional[str] = None,
        endpoint: Optional[str] = None,
    ) -> dict:
        self._authorize(user, Action.SCHEDULE_CALL, ResourceType.GROUP, group_id, endpoint)
        if end_time <= start_time:
            raise InvalidScheduleError("End time must be after start time")

        call = self.store.create(ZoomCall(
            group_id=group_id,
            title=title,
            description=description,
            start_time=start_time,
            end_time=end_time,
            zoom_link=zoom_link,
        ))
        logger.info("Call scheduled", extra={"call_id": call.id, "group_id": group_id})
        return call.to_dict()

    def upcoming_calls(self, user: Optional[User], endpoint: Optional[str] = None) -> List[dict]:
        """
        Future calls across the caller's groups, soonest first. Calls of
        premium groups are omitted while the caller lacks active premium.
        """
        enforce(self.engine.check_authenticated(user, Action.VIEW_ACCOUNT, endpoint=endpoint))
        now = self._clock()
        group_ids = [m.group_id for m in self.store.list_memberships_for_user(user.id)]
        if not user.has_active_premium(now):
            free_ids = []
            for group_id in group_ids:
                group = self.store.get(Group, group_id)
                if group is not None and not group.is_premium:
                    free_ids.append(group_id)
            group_ids = free_ids

        return [call.to_dict() for call in self.store.list_calls_for_groups(group_ids, now)]

    def join_call(
        self, user: Optional[User], call_id: str, endpoint: Optional[str] = None
    ) -> dict:
        """Record participation (idempotent) and return the join link."""
        self._authorize(user, Action.JOIN_CALL, ResourceType.ZOOM_CALL, call_id, endpoint)
        call = self.store.get(ZoomCall, call_id)
        self.store.add_call_participant(call.id, user.id)
        return {"call_id": call.id, "zoom_link": call.zoom_link}

    # ------------------------------------------------------------------
    # Admin
    # ------------------------------------------------------------------

    def _require_admin(self, user: Optional[User], endpoint: Optional[str]) -> None:
        enforce(self.engine.check_admin(user, endpoint=endpoint))

    def _admin_update(self, model, record_id: str, changes: Dict[str, Any], allowed) -> dict:
        unknown = set(changes) - allowed
        if unknown:
            raise CommunityServiceError(f"Unsupported fields: {', '.join(sorted(unknown))}")
        record = self.store.update(model, record_id, changes)
        if record is None:
            raise RecordNotFoundError(f"{model.__name__} not found")
        return record.to_dict()

    def create_forum(
        self,
        user: Optional[User],
        title: str,
        description: str,
        is_premium: bool = False,
        endpoint: Optional[str] = None,
    ) -> dict:
        self._require_admin(user, endpoint)
        forum = self.store.create(Forum(title=title, description=description, is_premium=is_premium))
        logger.info("Forum created", extra={"forum_id": forum.id, "is_premium": is_premium})
        return forum.to_dict()

    def update_forum(
        self,
        user: Optional[User],
        forum_id: str,
        changes: Dict[str, Any],
        endpoint: Optional[str] = None,
    ) -> dict:
        """Changing is_premium re-tiers the forum and all of its posts."""
        self._require_admin(user, endpoint)
        return self._admin_update(Forum, forum_id, changes, FORUM_FIELDS)

    def delete_forum(
        self, user: Optional[User], forum_id: str, endpoint: Optional[str] = None
    ) -> None:
        self._require_admin(user, endpoint)
        if not self.store.delete(Forum, forum_id):
            raise RecordNotFoundError("Forum not found")

    def create_group(
        self,
        user: Optional[User],
        name: str,
        description: str,
        is_premium: bool = False,
        endpoint: Optional[str] = None,
    ) -> dict:
        self._require_admin(user, endpoint)
        group = self.store.create(Group(name=name, description=description, is_premium=is_premium))
        logger.info("Group created", extra={"group_id": group.id, "is_premium": is_premium})
        return group.to_dict()

    def update_group(
        self,
        user: Optional[User],
        group_id: str,
        changes: Dict[str, Any],
        endpoint: Optional[str] = None,
    ) -> dict:
        """Changing is_premium re-tiers the group and all of its calls."""
        self._require_admin(user, endpoint)
        return self._admin_update(Group, group_id, changes, GROUP_FIELDS)

    def delete_group(
        self, user: Optional[User], group_id: str, endpoint: Optional[str] = None
    ) -> None:
        self._require_admin(user, endpoint)
        if not self.store.delete(Group, group_id):
            raise RecordNotFoundError("Group not found")

    def list_users(self, user: Optional[User], endpoint: Optional[str] = None) -> List[dict]:
        self._require_admin(user, endpoint)
        return [u.to_public_dict() for u in self.store.find(User, order_by="created_at")]

    def update_user(
        self,
        user: Optional[User],
        target_id: str,
        changes: Dict[str, Any],
        endpoint: Optional[str] = None,
    ) -> dict:
        """
        Update display fields and flags of another user.

        Marking a user verified also clears any pending verification token.
        Verification is one-way: is_verified=False is rejected.
        """
        self._require_admin(user, endpoint)
        unknown = set(changes) - ADMIN_USER_FIELDS
        if unknown:
            raise CommunityServiceError(f"Unsupported fields: {', '.join(sorted(unknown))}")

        if changes.get("is_verified") is False:
            raise CommunityServiceError("Verification cannot be revoked")

        changes = dict(changes)
        if changes.get("is_verified"):
            changes["verification_token"] = None
            changes["verification_token_expires_at"] = None

        target = self.store.update(User, target_id, changes)
        if target is None:
            raise RecordNotFoundError("User not found")

        logger.info("Admin updated user", extra={
            "admin_id": user.id,
            "user_id": target_id,
            "fields": sorted(changes),
        })
        return target.to_public_dict()
