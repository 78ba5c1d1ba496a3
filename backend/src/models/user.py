"""
User model: identity plus entitlement state.

The verification and password-reset token pairs are always set and cleared
together. is_premium is a cached projection of the billing provider's
subscription state; readers re-validate it against premium_until (see
User.has_active_premium) instead of trusting the stored flag indefinitely.

SECURITY: password_hash and both tokens must never be serialised to clients.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import Column, String, Boolean, Text

from src.db_base import Base
from src.models.base import TimestampMixin, UTCDateTime, generate_uuid, utcnow


class User(Base, TimestampMixin):
    """A community member account."""

    __tablename__ = "users"

    id = Column(
        String(36),
        primary_key=True,
        default=generate_uuid,
        comment="Internal UUID primary key"
    )

    username = Column(String(100), nullable=False, unique=True, index=True)
    email = Column(String(255), nullable=False, unique=True, index=True)
    password_hash = Column(String(255), nullable=False)
    full_name = Column(String(255), nullable=False)
    about_me = Column(Text, nullable=True)
    profile_image = Column(String(500), nullable=True)

    # Email verification
    is_verified = Column(Boolean, nullable=False, default=False)
    verification_token = Column(String(64), nullable=True, unique=True, index=True)
    verification_token_expires_at = Column(UTCDateTime(), nullable=True)
    verified_token_digest = Column(
        String(64),
        nullable=True,
        index=True,
        comment="SHA-256 of the consumed verification token (replay detection)"
    )

    # Password reset
    password_reset_token = Column(String(64), nullable=True, unique=True, index=True)
    password_reset_expires_at = Column(UTCDateTime(), nullable=True)

    # Premium projection + billing references
    is_premium = Column(Boolean, nullable=False, default=False)
    premium_until = Column(UTCDateTime(), nullable=True)
    billing_customer_id = Column(String(100), nullable=True, index=True)
    billing_subscription_id = Column(String(100), nullable=True, index=True)

    is_admin = Column(Boolean, nullable=False, default=False)

    def __repr__(self) -> str:
        return f"<User(id={self.id}, username={self.username}, verified={self.is_verified})>"

    def has_active_premium(self, now: Optional[datetime] = None) -> bool:
        """Premium flag re-validated against premium_until."""
        if not self.is_premium:
            return False
        if self.premium_until is None:
            return True
        return (now or utcnow()) < self.premium_until

    def to_public_dict(self) -> dict:
        """Client-safe projection (no credential or token fields)."""
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "full_name": self.full_name,
            "about_me": self.about_me,
            "profile_image": self.profile_image,
            "is_verified": self.is_verified,
            "is_premium": self.has_active_premium(),
            "premium_until": self.premium_until.isoformat() if self.premium_until else None,
            "is_admin": self.is_admin,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def to_summary_dict(self) -> dict:
        """Author summary attached to posts, replies and member lists."""
        return {
            "id": self.id,
            "username": self.username,
            "full_name": self.full_name,
            "profile_image": self.profile_image,
        }
