"""
Stripe billing webhook handler with idempotency support.

Processes Stripe webhooks with:
- Stripe-Signature verification (HMAC-SHA256 over "{t}.{body}")
- Event deduplication using the Stripe event id
- Premium projection updates through SubscriptionService

Events for unknown users or of unhandled types are acknowledged and
recorded so Stripe stops redelivering them.
"""

import hashlib
import hmac
import json
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from src.integrations.stripe.billing_client import StripeSubscription
from src.models.webhook_event import WebhookEvent
from src.repositories.credential_store import CredentialStore, DuplicateRecordError
from src.services.subscription_service import SubscriptionService

logger = logging.getLogger(__name__)

# Maximum age of a signed payload
SIGNATURE_TOLERANCE_SECONDS = 300

INVOICE_PAID_EVENTS = frozenset({"invoice.paid", "invoice.payment_succeeded"})
SUBSCRIPTION_EVENTS = frozenset({
    "customer.subscription.created",
    "customer.subscription.updated",
    "customer.subscription.deleted",
})


class WebhookSignatureError(Exception):
    """Stripe-Signature header missing, malformed, stale or wrong."""
    pass


def verify_stripe_signature(
    payload: bytes,
    signature_header: Optional[str],
    secret: Optional[str],
    tolerance: int = SIGNATURE_TOLERANCE_SECONDS,
    now: Optional[float] = None,
) -> None:
    """
    Verify a Stripe webhook signature.

    The header looks like "t=1492774577,v1=5257a869...,v1=...". Any v1
    signature matching HMAC-SHA256(secret, "{t}.{payload}") is accepted.

    Raises:
        WebhookSignatureError: If verification fails
    """
    if not signature_header or not secret:
        raise WebhookSignatureError("Missing signature or secret")

    timestamp = None
    signatures = []
    for part in signature_header.split(","):
        key, _, value = part.strip().partition("=")
        if key == "t":
            timestamp = value
        elif key == "v1":
            signatures.append(value)

    if timestamp is None or not signatures:
        raise WebhookSignatureError("Malformed signature header")
    try:
        signed_at = int(timestamp)
    except ValueError:
        raise WebhookSignatureError("Malformed signature timestamp")

    current = time.time() if now is None else now
    if abs(current - signed_at) > tolerance:
        raise WebhookSignatureError("Signature timestamp outside tolerance")

    signed_payload = f"{timestamp}.".encode("utf-8") + payload
    expected = hmac.new(secret.encode("utf-8"), signed_payload, hashlib.sha256).hexdigest()

    # Constant-time comparison to prevent timing attacks
    if not any(hmac.compare_digest(expected, candidate) for candidate in signatures):
        raise WebhookSignatureError("Signature mismatch")


@dataclass
class WebhookProcessingResult:
    """Result of webhook processing."""
    processed: bool
    message: str
    outcome: Optional[str] = None
    user_id: Optional[str] = None
    skipped_reason: Optional[str] = None


def _invoice_subscription_id(invoice: Dict[str, Any]) -> Optional[str]:
    subscription = invoice.get("subscription")
    if isinstance(subscription, dict):
        return subscription.get("id")
    if subscription:
        return subscription
    # Newer API versions nest it under parent.subscription_details
    details = (invoice.get("parent") or {}).get("subscription_details") or {}
    return details.get("subscription")


def _invoice_period_end(invoice: Dict[str, Any]) -> Optional[datetime]:
    lines = (invoice.get("lines") or {}).get("data") or []
    ends = [line.get("period", {}).get("end") for line in lines]
    ends = [end for end in ends if end]
    if not ends:
        return None
    return datetime.fromtimestamp(max(ends), tz=timezone.utc)


class BillingWebhookHandler:
    """
    Handler for Stripe billing webhooks with idempotency.

    Ensures each event is applied exactly once using the Stripe event id.
    """

    def __init__(self, store: CredentialStore, subscriptions: SubscriptionService):
        """
        Initialize webhook handler.

        Args:
            store: Credential store
            subscriptions: Service owning the premium projection
        """
        self.store = store
        self.subscriptions = subscriptions

    def _is_duplicate(self, event_id: str) -> bool:
        return bool(self.store.find(WebhookEvent, limit=1, provider_event_id=event_id))

    def _record_event(self, event: Dict[str, Any], outcome: str) -> None:
        """Record processed webhook event for deduplication."""
        payload_str = json.dumps(event, sort_keys=True)
        payload_hash = hashlib.sha256(payload_str.encode()).hexdigest()
        try:
            self.store.create(WebhookEvent(
                provider_event_id=event["id"],
                event_type=event.get("type", ""),
                payload_hash=payload_hash,
                outcome=outcome,
            ))
        except DuplicateRecordError:
            # A concurrent delivery of the same event recorded it first
            logger.info("Webhook event already recorded", extra={"event_id": event["id"]})

    def handle_event(self, event: Dict[str, Any]) -> WebhookProcessingResult:
        """
        Apply a verified Stripe event.

        Args:
            event: Parsed event body ({"id", "type", "data": {"object": ...}})
        """
        event_id = event.get("id")
        event_type = event.get("type", "")
        if not event_id:
            return WebhookProcessingResult(
                processed=False,
                message="Event id missing",
                skipped_reason="malformed",
            )

        if self._is_duplicate(event_id):
            logger.info("Duplicate webhook ignored", extra={
                "event_id": event_id,
                "event_type": event_type,
            })
            return WebhookProcessingResult(
                processed=False,
                message="Event already processed",
                skipped_reason="duplicate",
            )

        obj = (event.get("data") or {}).get("object") or {}
        user = None

        if event_type in INVOICE_PAID_EVENTS:
            user = self._apply_invoice_paid(obj)
            outcome = "applied" if user is not None else "user_not_found"
        elif event_type in SUBSCRIPTION_EVENTS:
            subscription = StripeSubscription.from_api(obj)
            user = self.subscriptions.apply_subscription_state(subscription)
            outcome = "applied" if user is not None else "user_not_found"
        else:
            outcome = "ignored"

        self._record_event(event, outcome)

        logger.info("Webhook processed", extra={
            "event_id": event_id,
            "event_type": event_type,
            "outcome": outcome,
            "user_id": user.id if user is not None else None,
        })
        return WebhookProcessingResult(
            processed=outcome == "applied",
            message=f"Event {outcome}",
            outcome=outcome,
            user_id=user.id if user is not None else None,
        )

    def _apply_invoice_paid(self, invoice: Dict[str, Any]):
        subscription_id = _invoice_subscription_id(invoice)
        customer_id = invoice.get("customer")
        if isinstance(customer_id, dict):
            customer_id = customer_id.get("id")

        user = self.subscriptions.find_subscriber(subscription_id, customer_id)
        if user is None:
            return None
        if not subscription_id:
            # One-off invoice unrelated to the premium subscription
            return user

        subscription = StripeSubscription(
            id=subscription_id,
            status="active",
            customer_id=customer_id,
            current_period_end=_invoice_period_end(invoice),
        )
        return self.subscriptions.mark_premium(user, subscription)
