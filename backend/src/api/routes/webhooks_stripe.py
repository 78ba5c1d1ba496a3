"""
Stripe webhook receiver.

SECURITY: The Stripe-Signature header is verified against the raw body
before anything is parsed or applied.

Documentation: https://docs.stripe.com/webhooks#verify-manually
"""

import json
import logging
import os
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status

from src.api.dependencies.services import get_webhook_handler
from src.api.schemas.billing import WebhookResponse
from src.services.billing_webhook_handler import (
    BillingWebhookHandler,
    WebhookSignatureError,
    verify_stripe_signature,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])


async def get_verified_event(
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
) -> dict:
    """
    Read the raw body, verify its signature and parse it.

    Raises:
        HTTPException: 503 if no signing secret is configured, 400 on a
            bad signature or body
    """
    secret = os.getenv("STRIPE_WEBHOOK_SECRET")
    if not secret:
        logger.error("STRIPE_WEBHOOK_SECRET not configured")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Webhook verification not configured",
        )

    body = await request.body()
    try:
        verify_stripe_signature(body, stripe_signature, secret)
    except WebhookSignatureError as e:
        logger.warning("Invalid Stripe webhook signature", extra={"reason": str(e)})
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid signature",
        )

    try:
        event = json.loads(body)
    except json.JSONDecodeError:
        logger.error("Invalid JSON in webhook body")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid JSON body",
        )
    if not isinstance(event, dict):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid event payload",
        )
    return event


@router.post("/stripe", response_model=WebhookResponse)
async def handle_stripe_webhook(
    event: dict = Depends(get_verified_event),
    handler: BillingWebhookHandler = Depends(get_webhook_handler),
):
    """
    Apply a billing event to the premium projection.

    Duplicates, unknown users and unhandled event types are acknowledged
    with 200 so Stripe stops retrying them.
    """
    logger.info("Stripe webhook received", extra={
        "event_id": event.get("id"),
        "event_type": event.get("type"),
    })
    result = handler.handle_event(event)
    return WebhookResponse(message=result.message)
