"""
Tests for StripeBillingClient request encoding and error mapping.

HTTP is served by httpx.MockTransport; no network access.
"""

from urllib.parse import parse_qs

import httpx
import pytest

from src.integrations.stripe.billing_client import (
    STRIPE_API_VERSION,
    StripeAPIError,
    StripeBillingClient,
    StripeBillingError,
    StripeSubscription,
)

SUBSCRIPTION_BODY = {
    "id": "sub_123",
    "status": "incomplete",
    "customer": "cus_123",
    "current_period_end": 1743465600,
    "latest_invoice": {"payment_intent": {"client_secret": "pi_123_secret_456"}},
}


def _client(handler, price_id="price_premium") -> StripeBillingClient:
    return StripeBillingClient(
        api_key="sk_test_123",
        price_id=price_id,
        transport=httpx.MockTransport(handler),
    )


class TestConstruction:

    def test_requires_api_key(self, monkeypatch):
        monkeypatch.delenv("STRIPE_SECRET_KEY", raising=False)
        with pytest.raises(ValueError, match="STRIPE_SECRET_KEY"):
            StripeBillingClient()


class TestRequests:

    @pytest.mark.asyncio
    async def test_create_customer(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["auth"] = request.headers["Authorization"]
            seen["version"] = request.headers["Stripe-Version"]
            seen["form"] = parse_qs(request.content.decode())
            return httpx.Response(200, json={"id": "cus_123"})

        async with _client(handler) as client:
            customer_id = await client.create_customer("a@example.com", "Alice", user_id="u-1")

        assert customer_id == "cus_123"
        assert seen["path"] == "/v1/customers"
        assert seen["auth"] == "Bearer sk_test_123"
        assert seen["version"] == STRIPE_API_VERSION
        assert seen["form"]["email"] == ["a@example.com"]
        assert seen["form"]["metadata[user_id]"] == ["u-1"]

    @pytest.mark.asyncio
    async def test_create_subscription_is_default_incomplete(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["form"] = parse_qs(request.content.decode())
            return httpx.Response(200, json=SUBSCRIPTION_BODY)

        async with _client(handler) as client:
            subscription = await client.create_subscription("cus_123")

        assert seen["form"]["payment_behavior"] == ["default_incomplete"]
        assert seen["form"]["items[0][price]"] == ["price_premium"]
        assert seen["form"]["expand[]"] == ["latest_invoice.payment_intent"]
        assert subscription.client_secret == "pi_123_secret_456"
        assert subscription.is_pending

    @pytest.mark.asyncio
    async def test_create_subscription_without_price(self):
        async with _client(lambda r: httpx.Response(200, json={}), price_id=None) as client:
            client.price_id = None
            with pytest.raises(StripeBillingError):
                await client.create_subscription("cus_123")

    @pytest.mark.asyncio
    async def test_retrieve_subscription(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.method == "GET"
            assert request.url.path == "/v1/subscriptions/sub_123"
            return httpx.Response(200, json={**SUBSCRIPTION_BODY, "status": "active"})

        async with _client(handler) as client:
            subscription = await client.retrieve_subscription("sub_123")

        assert subscription.is_active
        assert subscription.customer_id == "cus_123"
        assert subscription.current_period_end.year == 2025


class TestErrors:

    @pytest.mark.asyncio
    async def test_error_message_passed_through(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(402, json={"error": {
                "type": "card_error",
                "code": "card_declined",
                "message": "Your card was declined.",
            }})

        async with _client(handler) as client:
            with pytest.raises(StripeAPIError) as exc_info:
                await client.create_customer("a@example.com")

        assert str(exc_info.value) == "Your card was declined."
        assert exc_info.value.status_code == 402
        assert exc_info.value.error_code == "card_declined"

    @pytest.mark.asyncio
    async def test_non_json_error_body(self):
        async with _client(lambda r: httpx.Response(500, text="oops")) as client:
            with pytest.raises(StripeAPIError, match="Stripe API error: 500"):
                await client.retrieve_subscription("sub_123")

    @pytest.mark.asyncio
    async def test_transport_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        async with _client(handler) as client:
            with pytest.raises(StripeAPIError, match="Request error"):
                await client.retrieve_subscription("sub_123")


class TestSubscriptionParsing:

    def test_period_end_from_items(self):
        subscription = StripeSubscription.from_api({
            "id": "sub_1",
            "status": "active",
            "customer": {"id": "cus_1"},
            "items": {"data": [{"current_period_end": 1743465600}]},
        })
        assert subscription.customer_id == "cus_1"
        assert subscription.current_period_end is not None

    def test_confirmation_secret(self):
        subscription = StripeSubscription.from_api({
            "id": "sub_1",
            "status": "incomplete",
            "latest_invoice": {"confirmation_secret": {"client_secret": "cs_1"}},
        })
        assert subscription.client_secret == "cs_1"
