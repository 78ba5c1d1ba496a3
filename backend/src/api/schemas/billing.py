"""
Subscription and webhook response schemas.
"""

from typing import Optional

from pydantic import BaseModel


class SubscriptionResponse(BaseModel):
    """
    client_secret is present only when a payment must still be confirmed
    on the client; an active subscription returns it as null.
    """

    subscription_id: str
    status: str
    client_secret: Optional[str] = None
    is_premium: bool
    premium_until: Optional[str] = None


class WebhookResponse(BaseModel):
    """Standard webhook response."""

    received: bool = True
    message: str = "Webhook processed"
