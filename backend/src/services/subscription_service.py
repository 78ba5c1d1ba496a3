"""
Subscription lifecycle: keeps the premium projection on User consistent
with the Stripe subscription that backs it.

Orchestrates:
- ensure_subscription: reuse an active/pending subscription or create one
- confirm_payment: poll Stripe after the client confirms payment
- apply_subscription_state: projection update from webhook events
- apply_admin_override: comp / revoke premium without touching billing
- expire_lapsed_premiums: batch clear of stale premium flags

is_premium is only ever set from a subscription Stripe reports as active,
from an admin override, or from a paid-invoice webhook.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from src.config.access_policy import AccessPolicy, get_access_policy
from src.entitlements.models import Action
from src.entitlements.policy import EntitlementEngine, enforce
from src.integrations.stripe.billing_client import (
    DEAD_STATUSES,
    StripeAPIError,
    StripeBillingClient,
    StripeSubscription,
)
from src.models.base import utcnow
from src.models.user import User
from src.repositories.credential_store import CredentialStore

logger = logging.getLogger(__name__)


class SubscriptionServiceError(Exception):
    """Base exception for subscription lifecycle errors."""
    code = "subscription_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NoSubscriptionError(SubscriptionServiceError):
    """User has no billing subscription to act on."""
    code = "no_subscription"


class UserNotFoundError(SubscriptionServiceError):
    code = "not_found"


@dataclass
class SubscriptionResult:
    """Outcome of ensure_subscription / confirm_payment."""
    subscription_id: str
    status: str
    client_secret: Optional[str] = None
    is_premium: bool = False
    premium_until: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "subscription_id": self.subscription_id,
            "status": self.status,
            "client_secret": self.client_secret,
            "is_premium": self.is_premium,
            "premium_until": self.premium_until.isoformat() if self.premium_until else None,
        }


class SubscriptionService:
    """
    Premium subscription operations.

    The billing client is optional so that webhook application, admin
    overrides and expiry jobs can run without Stripe credentials.
    """

    def __init__(
        self,
        store: CredentialStore,
        billing_client: Optional[StripeBillingClient] = None,
        engine: Optional[EntitlementEngine] = None,
        policy: Optional[AccessPolicy] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.billing = billing_client
        self.policy = policy or get_access_policy()
        self.engine = engine or EntitlementEngine(store, policy=self.policy, clock=clock)
        self._clock = clock

    def _require_billing(self) -> StripeBillingClient:
        if self.billing is None:
            raise SubscriptionServiceError("Billing is not configured")
        return self.billing

    # ------------------------------------------------------------------
    # Client-driven flow
    # ------------------------------------------------------------------

    async def ensure_subscription(
        self, user: Optional[User], endpoint: Optional[str] = None
    ) -> SubscriptionResult:
        """
        Return the user's usable subscription, creating one if needed.

        - active/trialing: returned without a payment handle (no new charge)
        - incomplete: its pending payment handle is returned again
        - retrieval failure or dead status: a new subscription is created

        Raises:
            StripeAPIError: Customer or subscription creation failed
                (message is Stripe's, verbatim)
        """
        enforce(self.engine.check_authenticated(user, Action.MANAGE_SUBSCRIPTION, endpoint=endpoint))
        billing = self._require_billing()

        if user.billing_subscription_id:
            existing = await self._retrieve_or_none(user.billing_subscription_id)
            if existing is not None:
                if existing.is_active:
                    user = self.mark_premium(user, existing)
                    return self._result(existing, user)
                if existing.is_pending and existing.client_secret:
                    logger.info("Returning pending subscription", extra={
                        "user_id": user.id,
                        "subscription_id": existing.id,
                    })
                    return self._result(existing, user, client_secret=existing.client_secret)
                if existing.status not in DEAD_STATUSES:
                    logger.info("Replacing subscription in unexpected state", extra={
                        "user_id": user.id,
                        "status": existing.status,
                    })

        customer_id = user.billing_customer_id
        if not customer_id:
            customer_id = await billing.create_customer(user.email, user.full_name, user_id=user.id)
            user = self.store.update(User, user.id, {"billing_customer_id": customer_id})

        subscription = await billing.create_subscription(customer_id)
        user = self.store.update(User, user.id, {"billing_subscription_id": subscription.id})

        logger.info("Subscription created", extra={
            "user_id": user.id,
            "subscription_id": subscription.id,
            "status": subscription.status,
        })

        if subscription.is_active:
            user = self.mark_premium(user, subscription)
            return self._result(subscription, user)
        return self._result(subscription, user, client_secret=subscription.client_secret)

    async def confirm_payment(
        self, user: Optional[User], endpoint: Optional[str] = None
    ) -> SubscriptionResult:
        """
        Reconcile after the client reports a confirmed payment.

        Stripe is the source of truth: premium is granted only when the
        retrieved subscription is active.
        """
        enforce(self.engine.check_authenticated(user, Action.MANAGE_SUBSCRIPTION, endpoint=endpoint))
        billing = self._require_billing()

        if not user.billing_subscription_id:
            raise NoSubscriptionError("No subscription found")

        subscription = await billing.retrieve_subscription(user.billing_subscription_id)
        if subscription.is_active:
            user = self.mark_premium(user, subscription)
        return self._result(subscription, user)

    async def _retrieve_or_none(self, subscription_id: str) -> Optional[StripeSubscription]:
        try:
            return await self._require_billing().retrieve_subscription(subscription_id)
        except StripeAPIError as e:
            logger.warning("Could not retrieve subscription, creating a new one", extra={
                "subscription_id": subscription_id,
                "error": str(e),
            })
            return None

    def _result(
        self,
        subscription: StripeSubscription,
        user: User,
        client_secret: Optional[str] = None,
    ) -> SubscriptionResult:
        return SubscriptionResult(
            subscription_id=subscription.id,
            status=subscription.status,
            client_secret=client_secret,
            is_premium=user.has_active_premium(self._clock()),
            premium_until=user.premium_until,
        )

    # ------------------------------------------------------------------
    # Projection updates
    # ------------------------------------------------------------------

    def mark_premium(
        self,
        user: User,
        subscription: Optional[StripeSubscription] = None,
        period_end: Optional[datetime] = None,
    ) -> User:
        """
        Grant premium until the billing period end (fallback: now + premium period)
        and record the billing references.
        """
        until = period_end or (subscription.current_period_end if subscription else None)
        if until is None:
            until = self._clock() + self.policy.premium_period

        changes = {"is_premium": True, "premium_until": until}
        if subscription is not None:
            changes["billing_subscription_id"] = subscription.id
            if subscription.customer_id:
                changes["billing_customer_id"] = subscription.customer_id

        updated = self.store.update(User, user.id, changes)
        logger.info("Premium granted", extra={
            "user_id": user.id,
            "premium_until": until.isoformat(),
        })
        return updated

    def revoke_premium(self, user: User, reason: str) -> User:
        updated = self.store.update(User, user.id, {"is_premium": False, "premium_until": None})
        logger.info("Premium revoked", extra={"user_id": user.id, "reason": reason})
        return updated

    def find_subscriber(
        self,
        subscription_id: Optional[str] = None,
        customer_id: Optional[str] = None,
    ) -> Optional[User]:
        """Resolve the user a billing object belongs to."""
        if subscription_id:
            user = self.store.get_by_unique_key(User, "billing_subscription_id", subscription_id)
            if user is not None:
                return user
        if customer_id:
            return self.store.get_by_unique_key(User, "billing_customer_id", customer_id)
        return None

    def apply_subscription_state(self, subscription: StripeSubscription) -> Optional[User]:
        """
        Project a subscription state reported by Stripe onto its user.

        Returns:
            The updated user, or None if no user owns the subscription
        """
        user = self.find_subscriber(subscription.id, subscription.customer_id)
        if user is None:
            return None

        if subscription.is_active:
            return self.mark_premium(user, subscription)
        if subscription.status in DEAD_STATUSES:
            # Only revoke for the subscription the user currently relies on
            if user.billing_subscription_id in (None, subscription.id):
                return self.revoke_premium(user, reason=f"subscription_{subscription.status}")
        return user

    # ------------------------------------------------------------------
    # Admin / jobs
    # ------------------------------------------------------------------

    def apply_admin_override(
        self,
        admin: Optional[User],
        target_id: str,
        is_premium: bool,
        premium_until: Optional[datetime] = None,
        endpoint: Optional[str] = None,
    ) -> User:
        """
        Set the premium projection directly. Billing references are untouched.

        premium_until=None means no expiry while is_premium is true.
        """
        enforce(self.engine.check_admin(admin, endpoint=endpoint))
        target = self.store.update(User, target_id, {
            "is_premium": is_premium,
            "premium_until": premium_until,
        })
        if target is None:
            raise UserNotFoundError("User not found")

        logger.info("Admin premium override", extra={
            "admin_id": admin.id,
            "user_id": target_id,
            "is_premium": is_premium,
            "premium_until": premium_until.isoformat() if premium_until else None,
        })
        return target

    def expire_lapsed_premiums(self) -> int:
        """Clear is_premium on users whose premium_until has passed."""
        now = self._clock()
        lapsed = self.store.list_users_with_lapsed_premium(now)
        for user in lapsed:
            self.store.update(User, user.id, {"is_premium": False})

        if lapsed:
            logger.info("Expired lapsed premium flags", extra={"count": len(lapsed)})
        return len(lapsed)
