"""
Subscription reconciliation job.

Runs hourly to sync the premium projection with Stripe. Covers webhooks
that were missed or never delivered, then clears premium flags whose
premium_until has passed.

Usage:
    python -m src.jobs.reconcile_subscriptions
"""

import sys
import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from src.database.session import get_session_factory
from src.integrations.stripe.billing_client import (
    StripeAPIError,
    StripeBillingClient,
    get_billing_client,
)
from src.models.user import User
from src.repositories.credential_store import SQLAlchemyCredentialStore
from src.services.subscription_service import SubscriptionService

logger = logging.getLogger(__name__)

# Maximum users to check per run (for rate limiting)
MAX_USERS_PER_RUN = 500


class ReconciliationStats:
    """Track reconciliation run statistics."""

    def __init__(self):
        self.users_checked = 0
        self.users_updated = 0
        self.premiums_expired = 0
        self.errors = 0
        self.start_time = datetime.now(timezone.utc)

    def to_dict(self) -> dict:
        duration = (datetime.now(timezone.utc) - self.start_time).total_seconds()
        return {
            "users_checked": self.users_checked,
            "users_updated": self.users_updated,
            "premiums_expired": self.premiums_expired,
            "errors": self.errors,
            "duration_seconds": duration,
        }


async def reconcile_user(
    service: SubscriptionService,
    client: StripeBillingClient,
    user: User,
    stats: ReconciliationStats,
) -> None:
    """Re-read one user's subscription from Stripe and project it."""
    stats.users_checked += 1
    was_premium = user.is_premium
    try:
        subscription = await client.retrieve_subscription(user.billing_subscription_id)
    except StripeAPIError as e:
        logger.error("Stripe API error during reconciliation", extra={
            "user_id": user.id,
            "error": str(e),
        })
        stats.errors += 1
        return

    updated = service.apply_subscription_state(subscription)
    if updated is not None and updated.is_premium != was_premium:
        logger.info("Premium projection corrected", extra={
            "user_id": user.id,
            "stripe_status": subscription.status,
            "is_premium": updated.is_premium,
        })
        stats.users_updated += 1


async def run_reconciliation(
    session: Optional[Session] = None,
    client: Optional[StripeBillingClient] = None,
) -> dict:
    """
    Run the subscription reconciliation job.

    Args:
        session: Database session (default: new session from the app factory)
        client: Stripe client (default: from environment)

    Returns:
        Statistics dictionary with job results
    """
    logger.info("Starting subscription reconciliation job")

    stats = ReconciliationStats()
    owns_session = session is None
    session = session or get_session_factory()()
    owns_client = client is None
    client = client or get_billing_client()

    try:
        store = SQLAlchemyCredentialStore(session)
        service = SubscriptionService(store, billing_client=client)

        users = session.query(User).filter(
            User.billing_subscription_id.isnot(None)
        ).order_by(User.updated_at.asc()).limit(MAX_USERS_PER_RUN).all()

        logger.info("Found subscribers to reconcile", extra={"user_count": len(users)})

        for user in users:
            await reconcile_user(service, client, user, stats)

        stats.premiums_expired = service.expire_lapsed_premiums()

        result = stats.to_dict()
        logger.info("Reconciliation job completed", extra=result)
        return result
    finally:
        if owns_client:
            await client.close()
        if owns_session:
            session.close()


def main():
    """Entry point for running reconciliation job from command line."""
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    try:
        result = asyncio.run(run_reconciliation())
        logger.info("Reconciliation completed: %s", result)
        sys.exit(0)
    except Exception:
        logger.exception("Reconciliation failed")
        sys.exit(1)


if __name__ == "__main__":
    main()
