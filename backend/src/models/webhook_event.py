"""
WebhookEvent model for tracking processed billing webhooks.

Used for idempotency - ensures each billing provider event is applied
exactly once even when the provider redelivers it.
"""

from sqlalchemy import Column, String, Index

from src.db_base import Base
from src.models.base import UTCDateTime, generate_uuid, utcnow


class WebhookEvent(Base):
    """
    Tracks processed billing webhook events for deduplication.

    The billing provider retries deliveries until it receives a 2xx, so
    the same event id can arrive several times.
    """

    __tablename__ = "billing_webhook_events"

    id = Column(
        String(36),
        primary_key=True,
        default=generate_uuid,
        comment="Primary key (UUID)"
    )

    provider_event_id = Column(
        String(255),
        nullable=False,
        unique=True,
        index=True,
        comment="Billing provider event ID (evt_...)"
    )

    event_type = Column(
        String(255),
        nullable=False,
        index=True,
        comment="Event type (e.g., invoice.paid)"
    )

    payload_hash = Column(
        String(64),
        nullable=True,
        comment="SHA-256 hash of payload for debugging"
    )

    outcome = Column(
        String(64),
        nullable=True,
        comment="applied / ignored / user_not_found"
    )

    processed_at = Column(
        UTCDateTime(),
        nullable=False,
        default=utcnow,
        comment="When the webhook was processed"
    )

    __table_args__ = (
        Index("idx_billing_webhook_events_processed", "processed_at"),
    )

    def __repr__(self) -> str:
        return f"<WebhookEvent(id={self.id}, event_id={self.provider_event_id}, type={self.event_type})>"
