"""
ZoomCall and ZoomCallParticipant models.

Calls are scheduled metadata plus an external join link. Visibility follows
the owning group's tier; joinability follows group membership.
"""

from sqlalchemy import (
    Column, String, Text, ForeignKey, UniqueConstraint, CheckConstraint, Index
)

from src.db_base import Base
from src.models.base import UTCDateTime, generate_uuid, utcnow


class ZoomCall(Base):
    """Scheduled video call belonging to exactly one group."""

    __tablename__ = "zoom_calls"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    group_id = Column(
        String(36),
        ForeignKey("groups.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    start_time = Column(UTCDateTime(), nullable=False)
    end_time = Column(UTCDateTime(), nullable=False)
    zoom_link = Column(String(1000), nullable=False)
    created_at = Column(UTCDateTime(), nullable=False, default=utcnow)

    __table_args__ = (
        CheckConstraint("end_time > start_time", name="ck_zoom_calls_end_after_start"),
        Index("ix_zoom_calls_group_start", "group_id", "start_time"),
    )

    def to_dict(self, include_link: bool = False) -> dict:
        data = {
            "id": self.id,
            "group_id": self.group_id,
            "title": self.title,
            "description": self.description,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
        if include_link:
            data["zoom_link"] = self.zoom_link
        return data


class ZoomCallParticipant(Base):
    """A user who joined a call."""

    __tablename__ = "zoom_call_participants"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    call_id = Column(
        String(36),
        ForeignKey("zoom_calls.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    user_id = Column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False
    )
    joined_at = Column(UTCDateTime(), nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("call_id", "user_id", name="uq_zoom_call_participants_call_user"),
    )
