"""
Tests for CommunityService.

Covers forums and posts by tier, group membership (idempotent join,
leave), calls (membership gate, scheduling validation, upcoming list,
join link), suggestions and the admin operations.
"""

from datetime import timedelta

import pytest

from src.entitlements import Decision, EntitlementDeniedError
from src.models.group import Group, GroupMembership
from src.models.user import User
from src.models.zoom_call import ZoomCallParticipant
from src.services.community_service import (
    AlreadyMemberError,
    CommunityService,
    CommunityServiceError,
    InvalidScheduleError,
    NotMemberError,
    RecordNotFoundError,
)


@pytest.fixture
def community(store, engine, policy, clock):
    return CommunityService(store, engine=engine, policy=policy, clock=clock)


def _denied(exc_info) -> Decision:
    return exc_info.value.decision.decision


# =============================================================================
# Forums
# =============================================================================

class TestForums:

    def test_free_listing_is_public(self, community, make_forum):
        make_forum("Books")
        make_forum("Travel", is_premium=True)
        forums = community.list_forums(None)
        assert [f["title"] for f in forums] == ["Books"]

    def test_premium_listing_requires_premium(self, community, make_user, make_forum, clock):
        make_forum("Travel", is_premium=True)
        with pytest.raises(EntitlementDeniedError) as exc_info:
            community.list_forums(make_user(), premium=True)
        assert _denied(exc_info) == Decision.DENY_PREMIUM_REQUIRED

        premium = make_user(is_premium=True, premium_until=clock() + timedelta(days=3))
        assert [f["title"] for f in community.list_forums(premium, premium=True)] == ["Travel"]

    def test_posts_newest_first_with_reply_counts(
        self, community, store, make_user, make_forum, make_post, clock
    ):
        author = make_user()
        forum = make_forum()
        older = make_post(forum, author, title="Older")
        newer = make_post(forum, author, title="Newer")
        store.update(type(older), older.id, {"created_at": clock() - timedelta(days=1)})
        store.update(type(newer), newer.id, {"created_at": clock()})
        community.create_reply(author, older.id, "Welcome!")

        posts = community.list_posts(None, forum.id)
        assert [p["title"] for p in posts] == ["Newer", "Older"]
        assert posts[1]["reply_count"] == 1
        assert posts[0]["author"]["username"] == author.username
        assert "email" not in posts[0]["author"]

    def test_anonymous_cannot_post(self, community, make_forum):
        forum = make_forum()
        with pytest.raises(EntitlementDeniedError) as exc_info:
            community.create_post(None, forum.id, "Hi", "Hello")
        assert _denied(exc_info) == Decision.DENY_AUTH_REQUIRED

    def test_reply_to_premium_post_requires_premium(
        self, community, make_user, make_forum, make_post
    ):
        forum = make_forum(is_premium=True)
        post = make_post(forum, make_user(is_premium=True))
        with pytest.raises(EntitlementDeniedError) as exc_info:
            community.create_reply(make_user(), post.id, "Me too")
        assert _denied(exc_info) == Decision.DENY_PREMIUM_REQUIRED

    def test_unknown_forum(self, community):
        with pytest.raises(EntitlementDeniedError) as exc_info:
            community.get_forum(None, "missing")
        assert _denied(exc_info) == Decision.DENY_NOT_FOUND


# =============================================================================
# Groups
# =============================================================================

class TestGroups:

    def test_join_then_second_join(self, community, store, make_user, make_group):
        user = make_user()
        group = make_group()

        result = community.join_group(user, group.id)
        assert result["message"] == "Successfully joined group"

        with pytest.raises(AlreadyMemberError) as exc_info:
            community.join_group(user, group.id)
        assert exc_info.value.message == "Already a member of this group"
        assert store.count(GroupMembership, user_id=user.id, group_id=group.id) == 1

    def test_join_premium_group_requires_premium(self, community, make_user, make_group):
        group = make_group(is_premium=True)
        with pytest.raises(EntitlementDeniedError) as exc_info:
            community.join_group(make_user(), group.id)
        assert _denied(exc_info) == Decision.DENY_PREMIUM_REQUIRED

    def test_leave(self, community, make_user, make_group):
        user = make_user()
        group = make_group()
        community.join_group(user, group.id)
        community.leave_group(user, group.id)

        with pytest.raises(NotMemberError):
            community.leave_group(user, group.id)

    def test_group_detail_lists_members(self, community, make_user, make_group):
        alice = make_user(full_name="Alice")
        group = make_group()
        community.join_group(alice, group.id)

        detail = community.get_group(alice, group.id)
        assert detail["member_count"] == 1
        assert detail["is_member"] is True
        assert detail["members"][0]["full_name"] == "Alice"
        assert community.get_group(None, group.id)["is_member"] is False

    def test_my_groups(self, community, make_user, make_group):
        user = make_user()
        group = make_group("Chess")
        make_group("Knitting")
        community.join_group(user, group.id)
        assert [g["name"] for g in community.my_groups(user)] == ["Chess"]

    def test_suggested_groups_excludes_joined_and_premium(self, community, make_user, make_group):
        user = make_user()
        joined = make_group("Chess")
        make_group("Knitting")
        make_group("Wine", is_premium=True)
        community.join_group(user, joined.id)

        assert [g["name"] for g in community.suggested_groups(user)] == ["Knitting"]

    def test_suggested_groups_limit(self, community, make_user, make_group):
        for i in range(7):
            make_group(f"Group {i}")
        assert len(community.suggested_groups(make_user())) == 5
        assert len(community.suggested_groups(make_user(), limit=2)) == 2


# =============================================================================
# Calls
# =============================================================================

class TestCalls:

    def test_calls_require_membership(self, community, make_user, make_group, make_call, clock):
        user = make_user()
        group = make_group()
        make_call(group, clock() + timedelta(days=1))

        with pytest.raises(EntitlementDeniedError) as exc_info:
            community.list_group_calls(user, group.id)
        assert _denied(exc_info) == Decision.DENY_NOT_MEMBER

        community.join_group(user, group.id)
        calls = community.list_group_calls(user, group.id)
        assert len(calls) == 1
        assert "zoom_link" not in calls[0]

    def test_schedule_rejects_non_positive_duration(self, community, make_user, make_group, clock):
        user = make_user()
        group = make_group()
        community.join_group(user, group.id)
        start = clock() + timedelta(days=1)

        with pytest.raises(InvalidScheduleError) as exc_info:
            community.schedule_call(user, group.id, "Chat", start, start, "https://zoom.example/j/1")
        assert exc_info.value.message == "End time must be after start time"

        call = community.schedule_call(
            user, group.id, "Chat", start, start + timedelta(hours=1), "https://zoom.example/j/1"
        )
        assert call["title"] == "Chat"

    def test_upcoming_calls_sorted_and_future_only(
        self, community, make_user, make_group, make_call, clock
    ):
        user = make_user()
        a = make_group("A")
        b = make_group("B")
        community.join_group(user, a.id)
        community.join_group(user, b.id)
        make_call(a, clock() + timedelta(days=3), title="Later")
        make_call(b, clock() + timedelta(days=1), title="Sooner")
        make_call(a, clock() - timedelta(days=1), title="Past")

        assert [c["title"] for c in community.upcoming_calls(user)] == ["Sooner", "Later"]

    def test_upcoming_calls_omit_premium_groups_without_premium(
        self, community, store, make_user, make_group, make_call, clock
    ):
        user = make_user()
        group = make_group()
        community.join_group(user, group.id)
        make_call(group, clock() + timedelta(days=1))
        store.update(Group, group.id, {"is_premium": True})

        assert community.upcoming_calls(user) == []

    def test_join_call_returns_link_and_records_once(
        self, community, store, make_user, make_group, make_call, clock
    ):
        user = make_user()
        group = make_group()
        call = make_call(group, clock() + timedelta(days=1))
        community.join_group(user, group.id)

        first = community.join_call(user, call.id)
        community.join_call(user, call.id)
        assert first == {"call_id": call.id, "zoom_link": "https://zoom.example/j/123"}
        assert store.count(ZoomCallParticipant, call_id=call.id) == 1

    def test_join_call_after_group_promoted(
        self, community, store, make_user, make_group, make_call, clock
    ):
        user = make_user()
        group = make_group()
        call = make_call(group, clock() + timedelta(days=1))
        community.join_group(user, group.id)
        store.update(Group, group.id, {"is_premium": True})

        with pytest.raises(EntitlementDeniedError) as exc_info:
            community.join_call(user, call.id)
        assert _denied(exc_info) == Decision.DENY_PREMIUM_REQUIRED


# =============================================================================
# Admin
# =============================================================================

class TestAdmin:

    def test_non_admin_rejected(self, community, make_user):
        with pytest.raises(EntitlementDeniedError) as exc_info:
            community.create_forum(make_user(), "Forum", "Desc")
        assert _denied(exc_info) == Decision.DENY_ADMIN_REQUIRED

    def test_forum_crud(self, community, make_user):
        admin = make_user(is_admin=True)
        forum = community.create_forum(admin, "Cooking", "Recipes")
        updated = community.update_forum(admin, forum["id"], {"is_premium": True})
        assert updated["is_premium"] is True

        community.delete_forum(admin, forum["id"])
        with pytest.raises(RecordNotFoundError):
            community.delete_forum(admin, forum["id"])

    def test_update_rejects_unknown_fields(self, community, make_user, make_group):
        admin = make_user(is_admin=True)
        group = make_group()
        with pytest.raises(CommunityServiceError):
            community.update_group(admin, group.id, {"owner_id": "x"})

    def test_update_user_never_touches_password(self, community, store, make_user):
        admin = make_user(is_admin=True)
        target = make_user(is_verified=False, verification_token="t" * 32)
        password_hash = target.password_hash

        with pytest.raises(CommunityServiceError):
            community.update_user(admin, target.id, {"password_hash": "x"})

        result = community.update_user(admin, target.id, {"is_verified": True, "full_name": "New"})
        assert result["is_verified"] is True
        assert "password_hash" not in result

        stored = store.get(User, target.id)
        assert stored.password_hash == password_hash
        assert stored.verification_token is None

    def test_verification_cannot_be_revoked(self, community, store, make_user):
        admin = make_user(is_admin=True)
        target = make_user(is_verified=True)

        with pytest.raises(CommunityServiceError):
            community.update_user(admin, target.id, {"is_verified": False})
        assert store.get(User, target.id).is_verified is True

    def test_list_users(self, community, make_user):
        admin = make_user(is_admin=True)
        make_user()
        users = community.list_users(admin)
        assert len(users) == 2
        assert all("password_hash" not in u for u in users)
