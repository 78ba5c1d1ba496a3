"""
Forum, group and call request schemas.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator


class CreatePostRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    content: str = Field(..., min_length=1, max_length=20000)

    @field_validator("title", "content")
    @classmethod
    def not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Field cannot be blank")
        return v


class CreateReplyRequest(BaseModel):
    content: str = Field(..., min_length=1, max_length=20000)

    @field_validator("content")
    @classmethod
    def not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Reply cannot be blank")
        return v


class ScheduleCallRequest(BaseModel):
    """A video call in a group. end_time must be after start_time."""

    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=5000)
    start_time: datetime
    end_time: datetime
    zoom_link: str = Field(..., min_length=1, max_length=1000)

    @field_validator("start_time", "end_time")
    @classmethod
    def timezone_aware(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            raise ValueError("Timestamp must include a timezone offset")
        return v

    @field_validator("zoom_link")
    @classmethod
    def link_is_url(cls, v: str) -> str:
        v = v.strip()
        if not v.startswith(("https://", "http://")):
            raise ValueError("Join link must be an http(s) URL")
        return v

    @model_validator(mode="after")
    def end_after_start(self) -> "ScheduleCallRequest":
        if self.end_time <= self.start_time:
            raise ValueError("End time must be after start time")
        return self


def _reject_null(v):
    # Omit a field to leave it unchanged; null is not a value for these columns
    if v is None:
        raise ValueError("Field cannot be null")
    return v


class ForumRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: str = Field(..., min_length=1, max_length=5000)
    is_premium: bool = False


class ForumUpdateRequest(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = Field(None, min_length=1, max_length=5000)
    is_premium: Optional[bool] = None

    @field_validator("title", "description", "is_premium", mode="before")
    @classmethod
    def not_null(cls, v):
        return _reject_null(v)


class GroupRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: str = Field(..., min_length=1, max_length=5000)
    is_premium: bool = False


class GroupUpdateRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = Field(None, min_length=1, max_length=5000)
    is_premium: Optional[bool] = None

    @field_validator("name", "description", "is_premium", mode="before")
    @classmethod
    def not_null(cls, v):
        return _reject_null(v)


class AdminUserUpdateRequest(BaseModel):
    """
    Admin edit of a user. There is deliberately no password or billing
    reference field; unknown fields are rejected.

    premium_until may be null (premium without expiry); about_me and
    profile_image may be null to clear them.
    """

    model_config = {"extra": "forbid"}

    full_name: Optional[str] = Field(None, min_length=1, max_length=255)
    about_me: Optional[str] = Field(None, max_length=5000)
    profile_image: Optional[str] = Field(None, max_length=500)
    is_admin: Optional[bool] = None
    is_verified: Optional[bool] = None
    is_premium: Optional[bool] = None
    premium_until: Optional[datetime] = None

    @field_validator("full_name", "is_admin", "is_verified", "is_premium", mode="before")
    @classmethod
    def not_null(cls, v):
        return _reject_null(v)

    @field_validator("premium_until")
    @classmethod
    def timezone_aware(cls, v: Optional[datetime]) -> Optional[datetime]:
        if v is not None and v.tzinfo is None:
            raise ValueError("Timestamp must include a timezone offset")
        return v
