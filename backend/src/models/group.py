"""
Group and GroupMembership models.

CRITICAL: (user_id, group_id) is unique. The constraint is the only
backstop against concurrent joins producing duplicate memberships.
"""

from sqlalchemy import Column, String, Text, Boolean, ForeignKey, UniqueConstraint

from src.db_base import Base
from src.models.base import TimestampMixin, UTCDateTime, generate_uuid, utcnow


class Group(Base, TimestampMixin):
    """Interest group; hosts scheduled calls."""

    __tablename__ = "groups"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=False)
    is_premium = Column(Boolean, nullable=False, default=False, index=True)

    def __repr__(self) -> str:
        return f"<Group(id={self.id}, name={self.name}, premium={self.is_premium})>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "is_premium": self.is_premium,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class GroupMembership(Base):
    """Relation row: user belongs to group."""

    __tablename__ = "group_memberships"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    group_id = Column(
        String(36),
        ForeignKey("groups.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    joined_at = Column(UTCDateTime(), nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("user_id", "group_id", name="uq_group_memberships_user_group"),
    )

    def __repr__(self) -> str:
        return f"<GroupMembership(user_id={self.user_id}, group_id={self.group_id})>"
