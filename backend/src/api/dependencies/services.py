"""
Service dependencies.

Builds the per-request services from the request's credential store and
the process-wide collaborators held on app.state (notifier, session
service). Tests replace any of these through app.dependency_overrides.
"""

import logging
import os
from typing import AsyncGenerator, Optional

from fastapi import Depends, HTTPException, Request, status

from src.auth.dependencies import get_sessions, get_store
from src.auth.session_service import SessionService
from src.config.access_policy import AccessPolicy, get_access_policy
from src.entitlements.policy import EntitlementEngine
from src.integrations.stripe.billing_client import StripeBillingClient
from src.repositories.credential_store import CredentialStore
from src.services.account_service import AccountService
from src.services.billing_webhook_handler import BillingWebhookHandler
from src.services.community_service import CommunityService
from src.services.notification_service import AccountNotifier, build_account_notifier
from src.services.subscription_service import SubscriptionService

logger = logging.getLogger(__name__)


def get_policy() -> AccessPolicy:
    return get_access_policy()


def get_entitlement_engine(
    store: CredentialStore = Depends(get_store),
    policy: AccessPolicy = Depends(get_policy),
) -> EntitlementEngine:
    return EntitlementEngine(store, policy=policy)


def get_notifier(request: Request) -> AccountNotifier:
    """Notifier constructed once at startup (see main.lifespan)."""
    notifier = getattr(request.app.state, "notifier", None)
    if notifier is None:
        notifier = build_account_notifier()
        request.app.state.notifier = notifier
    return notifier


def get_account_service(
    store: CredentialStore = Depends(get_store),
    sessions: SessionService = Depends(get_sessions),
    notifier: AccountNotifier = Depends(get_notifier),
    engine: EntitlementEngine = Depends(get_entitlement_engine),
    policy: AccessPolicy = Depends(get_policy),
) -> AccountService:
    return AccountService(store, sessions, notifier, engine=engine, policy=policy)


def get_community_service(
    store: CredentialStore = Depends(get_store),
    engine: EntitlementEngine = Depends(get_entitlement_engine),
    policy: AccessPolicy = Depends(get_policy),
) -> CommunityService:
    return CommunityService(store, engine=engine, policy=policy)


async def get_billing_client() -> AsyncGenerator[Optional[StripeBillingClient], None]:
    """Per-request Stripe client; None when Stripe is not configured."""
    if not os.getenv("STRIPE_SECRET_KEY"):
        yield None
        return

    client = StripeBillingClient()
    try:
        yield client
    finally:
        await client.close()


def get_subscription_service(
    store: CredentialStore = Depends(get_store),
    engine: EntitlementEngine = Depends(get_entitlement_engine),
    billing_client: Optional[StripeBillingClient] = Depends(get_billing_client),
    policy: AccessPolicy = Depends(get_policy),
) -> SubscriptionService:
    return SubscriptionService(store, billing_client=billing_client, engine=engine, policy=policy)


def require_billing(
    subscriptions: SubscriptionService = Depends(get_subscription_service),
) -> SubscriptionService:
    """Subscription service that can reach Stripe, else 503."""
    if subscriptions.billing is None:
        logger.error("Stripe billing not configured")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"error": "billing_unavailable", "message": "Billing is not configured"},
        )
    return subscriptions


def get_webhook_handler(
    store: CredentialStore = Depends(get_store),
    policy: AccessPolicy = Depends(get_policy),
) -> BillingWebhookHandler:
    return BillingWebhookHandler(store, SubscriptionService(store, policy=policy))
