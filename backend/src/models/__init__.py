"""
Database models for members, community resources and billing webhooks.

Importing this package registers every table on src.db_base.Base.
"""

from src.models.base import TimestampMixin, UTCDateTime
from src.models.user import User
from src.models.forum import Forum, ForumPost, ForumReply
from src.models.group import Group, GroupMembership
from src.models.zoom_call import ZoomCall, ZoomCallParticipant
from src.models.webhook_event import WebhookEvent

__all__ = [
    "TimestampMixin",
    "UTCDateTime",
    "User",
    "Forum",
    "ForumPost",
    "ForumReply",
    "Group",
    "GroupMembership",
    "ZoomCall",
    "ZoomCallParticipant",
    "WebhookEvent",
]
