"""
Stripe integration module.
"""

from src.integrations.stripe.billing_client import (
    StripeAPIError,
    StripeBillingClient,
    StripeBillingError,
    StripeSubscription,
)

__all__ = [
    "StripeAPIError",
    "StripeBillingClient",
    "StripeBillingError",
    "StripeSubscription",
]
