"""
Tests for Stripe webhook signature verification and event application.

SECURITY: signatures are checked for tampering, staleness and format.
"""

import hashlib
import hmac
import json
import time
from datetime import datetime, timezone

import pytest

from src.models.user import User
from src.models.webhook_event import WebhookEvent
from src.services.billing_webhook_handler import (
    BillingWebhookHandler,
    WebhookSignatureError,
    verify_stripe_signature,
)
from src.services.subscription_service import SubscriptionService

SECRET = "whsec_test"
PERIOD_END = 1743465600  # 2025-04-01T00:00:00Z


def _sign(payload: bytes, secret: str = SECRET, timestamp: int = None) -> str:
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.".encode("utf-8") + payload
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def _event(event_type: str, obj: dict, event_id: str = "evt_1") -> dict:
    return {"id": event_id, "type": event_type, "data": {"object": obj}}


@pytest.fixture
def handler(store, policy, clock):
    return BillingWebhookHandler(store, SubscriptionService(store, policy=policy, clock=clock))


# =============================================================================
# Signature verification
# =============================================================================

@pytest.mark.security
class TestVerifyStripeSignature:

    def test_valid_signature(self):
        payload = b'{"id": "evt_1"}'
        verify_stripe_signature(payload, _sign(payload), SECRET)

    def test_any_matching_v1_accepted(self):
        payload = b'{"id": "evt_1"}'
        header = _sign(payload)
        header = header.replace("v1=", "v1=deadbeef,v1=", 1)
        verify_stripe_signature(payload, header, SECRET)

    def test_tampered_body_rejected(self):
        header = _sign(b'{"id": "evt_1"}')
        with pytest.raises(WebhookSignatureError, match="mismatch"):
            verify_stripe_signature(b'{"id": "evt_2"}', header, SECRET)

    def test_wrong_secret_rejected(self):
        payload = b"{}"
        with pytest.raises(WebhookSignatureError):
            verify_stripe_signature(payload, _sign(payload, secret="other"), SECRET)

    def test_stale_timestamp_rejected(self):
        payload = b"{}"
        header = _sign(payload, timestamp=1_000_000)
        with pytest.raises(WebhookSignatureError, match="tolerance"):
            verify_stripe_signature(payload, header, SECRET, now=1_000_301)

    def test_timestamp_within_tolerance(self):
        payload = b"{}"
        header = _sign(payload, timestamp=1_000_000)
        verify_stripe_signature(payload, header, SECRET, now=1_000_300)

    @pytest.mark.parametrize("header", [None, "", "v1=abc", "t=123", "t=abc,v1=abc"])
    def test_malformed_headers_rejected(self, header):
        with pytest.raises(WebhookSignatureError):
            verify_stripe_signature(b"{}", header, SECRET, now=123)

    def test_missing_secret_rejected(self):
        payload = b"{}"
        with pytest.raises(WebhookSignatureError):
            verify_stripe_signature(payload, _sign(payload), None)


# =============================================================================
# Event handling
# =============================================================================

class TestHandleEvent:

    def test_invoice_paid_grants_premium_until_period_end(self, handler, store, make_user):
        user = make_user(billing_customer_id="cus_1", billing_subscription_id="sub_1")
        event = _event("invoice.paid", {
            "customer": "cus_1",
            "subscription": "sub_1",
            "lines": {"data": [{"period": {"start": PERIOD_END - 86400 * 30, "end": PERIOD_END}}]},
        })

        result = handler.handle_event(event)
        assert result.processed is True
        assert result.user_id == user.id

        stored = store.get(User, user.id)
        assert stored.is_premium is True
        assert stored.premium_until == datetime(2025, 4, 1, tzinfo=timezone.utc)

    def test_subscription_deleted_revokes(self, handler, store, make_user):
        user = make_user(
            is_premium=True,
            billing_customer_id="cus_1",
            billing_subscription_id="sub_1",
        )
        handler.handle_event(_event("customer.subscription.deleted", {
            "id": "sub_1", "customer": "cus_1", "status": "canceled",
        }))
        assert store.get(User, user.id).is_premium is False

    def test_subscription_updated_active(self, handler, store, make_user):
        user = make_user(billing_customer_id="cus_1")
        handler.handle_event(_event("customer.subscription.updated", {
            "id": "sub_9", "customer": "cus_1", "status": "active", "current_period_end": PERIOD_END,
        }))
        stored = store.get(User, user.id)
        assert stored.is_premium is True
        assert stored.billing_subscription_id == "sub_9"

    def test_duplicate_event_applied_once(self, handler, store, make_user):
        make_user(billing_customer_id="cus_1", billing_subscription_id="sub_1")
        event = _event("invoice.paid", {"customer": "cus_1", "subscription": "sub_1"})

        first = handler.handle_event(event)
        second = handler.handle_event(event)

        assert first.processed is True
        assert second.processed is False
        assert second.skipped_reason == "duplicate"
        assert store.count(WebhookEvent, provider_event_id="evt_1") == 1

    def test_unknown_user_is_recorded(self, handler, store):
        result = handler.handle_event(_event("invoice.paid", {"customer": "cus_x", "subscription": "sub_x"}))
        assert result.outcome == "user_not_found"
        stored = store.find(WebhookEvent, provider_event_id="evt_1")
        assert stored[0].outcome == "user_not_found"

    def test_unhandled_type_ignored(self, handler):
        result = handler.handle_event(_event("charge.refunded", {"id": "ch_1"}))
        assert result.outcome == "ignored"
        assert result.processed is False

    def test_event_without_id(self, handler):
        result = handler.handle_event({"type": "invoice.paid", "data": {"object": {}}})
        assert result.skipped_reason == "malformed"

    def test_payload_hash_stored(self, handler, store):
        event = _event("charge.refunded", {"id": "ch_1"})
        handler.handle_event(event)
        expected = hashlib.sha256(json.dumps(event, sort_keys=True).encode()).hexdigest()
        assert store.find(WebhookEvent)[0].payload_hash == expected
