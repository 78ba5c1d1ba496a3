"""
Stripe Billing API client for premium subscriptions.

Uses the Stripe REST API (form-encoded requests, JSON responses) over httpx.
Subscriptions are created with payment_behavior=default_incomplete, so a new
subscription stays "incomplete" until the client confirms the first
invoice's payment with the returned client secret.

Documentation: https://docs.stripe.com/billing/subscriptions/build-subscriptions
"""

import os
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx

logger = logging.getLogger(__name__)

STRIPE_API_BASE = "https://api.stripe.com/v1"
# Pinned so latest_invoice.payment_intent stays expandable
STRIPE_API_VERSION = "2024-06-20"

ACTIVE_STATUSES = frozenset({"active", "trialing"})
PENDING_STATUSES = frozenset({"incomplete"})
DEAD_STATUSES = frozenset({"canceled", "incomplete_expired", "unpaid"})


@dataclass
class StripeSubscription:
    """The subset of a Stripe Subscription object this service uses."""
    id: str
    status: str
    customer_id: Optional[str] = None
    current_period_end: Optional[datetime] = None
    client_secret: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    @property
    def is_pending(self) -> bool:
        return self.status in PENDING_STATUSES

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "StripeSubscription":
        period_end = data.get("current_period_end")
        if period_end is None:
            # Newer API versions report the period on the subscription item
            items = (data.get("items") or {}).get("data") or []
            if items:
                period_end = items[0].get("current_period_end")

        customer = data.get("customer")
        if isinstance(customer, dict):
            customer = customer.get("id")

        return cls(
            id=data["id"],
            status=data.get("status", ""),
            customer_id=customer,
            current_period_end=(
                datetime.fromtimestamp(period_end, tz=timezone.utc) if period_end else None
            ),
            client_secret=_extract_client_secret(data.get("latest_invoice")),
        )


def _extract_client_secret(invoice: Any) -> Optional[str]:
    """Pull the payment client secret out of an expanded latest_invoice."""
    if not isinstance(invoice, dict):
        return None
    payment_intent = invoice.get("payment_intent")
    if isinstance(payment_intent, dict) and payment_intent.get("client_secret"):
        return payment_intent["client_secret"]
    confirmation = invoice.get("confirmation_secret")
    if isinstance(confirmation, dict):
        return confirmation.get("client_secret")
    return None


class StripeBillingError(Exception):
    """Base exception for Stripe billing errors."""
    pass


class StripeAPIError(StripeBillingError):
    """
    Error returned by (or while reaching) the Stripe API.

    str(error) is Stripe's own message, suitable for surfacing verbatim.
    """
    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        error_type: Optional[str] = None,
        error_code: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.error_type = error_type
        self.error_code = error_code


class StripeBillingClient:
    """
    Client for the Stripe customer and subscription endpoints.

    Usage:
        async with StripeBillingClient() as client:
            customer_id = await client.create_customer(email, name)
            subscription = await client.create_subscription(customer_id, price_id)
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        price_id: Optional[str] = None,
        base_url: str = STRIPE_API_BASE,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize billing client.

        Args:
            api_key: Stripe secret key (or from STRIPE_SECRET_KEY env var)
            price_id: Recurring price for the premium plan (or from STRIPE_PRICE_ID)
            base_url: API root, overridable for tests
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self.api_key = api_key or os.getenv("STRIPE_SECRET_KEY")
        if not self.api_key:
            raise ValueError("STRIPE_SECRET_KEY is required")
        self.price_id = price_id or os.getenv("STRIPE_PRICE_ID")

        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(30.0, connect=10.0),
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Stripe-Version": STRIPE_API_VERSION,
            },
            transport=transport,
        )

    async def close(self):
        """Close the HTTP client."""
        await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def _request(
        self,
        method: str,
        path: str,
        data: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Call the Stripe API.

        Raises:
            StripeAPIError: Non-2xx response or transport failure
        """
        try:
            response = await self._client.request(method, path, data=data, params=params)
        except httpx.TimeoutException as e:
            logger.error("Stripe API timeout", extra={"path": path, "error": str(e)})
            raise StripeAPIError(f"Request timeout: {e}")
        except httpx.RequestError as e:
            logger.error("Stripe API request error", extra={"path": path, "error": str(e)})
            raise StripeAPIError(f"Request error: {e}")

        if response.status_code >= 400:
            error: Dict[str, Any] = {}
            try:
                error = response.json().get("error") or {}
            except ValueError:
                pass
            message = error.get("message") or f"Stripe API error: {response.status_code}"
            logger.error("Stripe API error", extra={
                "path": path,
                "status_code": response.status_code,
                "error_type": error.get("type"),
                "error_code": error.get("code"),
            })
            raise StripeAPIError(
                message,
                status_code=response.status_code,
                error_type=error.get("type"),
                error_code=error.get("code"),
            )

        return response.json()

    async def create_customer(
        self, email: str, name: Optional[str] = None, user_id: Optional[str] = None
    ) -> str:
        """Create a customer and return its id."""
        data = {"email": email}
        if name:
            data["name"] = name
        if user_id:
            data["metadata[user_id]"] = user_id

        customer = await self._request("POST", "/customers", data=data)
        logger.info("Stripe customer created", extra={"customer_id": customer["id"]})
        return customer["id"]

    async def create_subscription(
        self, customer_id: str, price_id: Optional[str] = None
    ) -> StripeSubscription:
        """
        Create an incomplete subscription awaiting first payment.

        The returned subscription carries the client secret the browser
        uses to confirm the payment.
        """
        price = price_id or self.price_id
        if not price:
            raise StripeBillingError("STRIPE_PRICE_ID is not configured")

        data = {
            "customer": customer_id,
            "items[0][price]": price,
            "payment_behavior": "default_incomplete",
            "payment_settings[save_default_payment_method]": "on_subscription",
            "expand[]": "latest_invoice.payment_intent",
        }
        result = await self._request("POST", "/subscriptions", data=data)
        subscription = StripeSubscription.from_api(result)
        logger.info("Stripe subscription created", extra={
            "subscription_id": subscription.id,
            "status": subscription.status,
        })
        return subscription

    async def retrieve_subscription(self, subscription_id: str) -> StripeSubscription:
        """Fetch a subscription with its latest invoice payment expanded."""
        result = await self._request(
            "GET",
            f"/subscriptions/{subscription_id}",
            params={"expand[]": "latest_invoice.payment_intent"},
        )
        return StripeSubscription.from_api(result)


def get_billing_client() -> StripeBillingClient:
    """Factory function to create a billing client from environment."""
    return StripeBillingClient()
