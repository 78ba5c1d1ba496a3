"""
Forum, ForumPost and ForumReply models.

A forum's is_premium flag is its only visibility dimension; posts and
replies inherit the tier of the forum they belong to.
"""

from sqlalchemy import Column, String, Text, Boolean, ForeignKey, Index

from src.db_base import Base
from src.models.base import TimestampMixin, UTCDateTime, generate_uuid, utcnow


class Forum(Base, TimestampMixin):
    """Topic forum."""

    __tablename__ = "forums"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=False)
    is_premium = Column(Boolean, nullable=False, default=False, index=True)

    def __repr__(self) -> str:
        return f"<Forum(id={self.id}, title={self.title}, premium={self.is_premium})>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "is_premium": self.is_premium,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class ForumPost(Base):
    """Top-level post in a forum."""

    __tablename__ = "forum_posts"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    forum_id = Column(
        String(36),
        ForeignKey("forums.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    title = Column(String(255), nullable=False)
    content = Column(Text, nullable=False)
    created_at = Column(UTCDateTime(), nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_forum_posts_forum_created", "forum_id", "created_at"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "forum_id": self.forum_id,
            "user_id": self.user_id,
            "title": self.title,
            "content": self.content,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class ForumReply(Base):
    """Reply to a forum post."""

    __tablename__ = "forum_replies"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    post_id = Column(
        String(36),
        ForeignKey("forum_posts.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    content = Column(Text, nullable=False)
    created_at = Column(UTCDateTime(), nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "post_id": self.post_id,
            "user_id": self.user_id,
            "content": self.content,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
