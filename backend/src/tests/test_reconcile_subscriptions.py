"""
Tests for the subscription reconciliation job.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.integrations.stripe.billing_client import StripeAPIError, StripeSubscription
from src.jobs.reconcile_subscriptions import run_reconciliation
from src.models.user import User


def _client(**subscriptions):
    """Stripe client mock answering retrieve_subscription from a dict."""
    async def _retrieve(subscription_id):
        result = subscriptions[subscription_id]
        if isinstance(result, Exception):
            raise result
        return result

    client = MagicMock()
    client.retrieve_subscription = AsyncMock(side_effect=_retrieve)
    return client


@pytest.mark.asyncio
async def test_missed_cancellation_is_applied(db_session, store, make_user):
    user = make_user(
        is_premium=True,
        premium_until=datetime.now(timezone.utc) + timedelta(days=10),
        billing_customer_id="cus_1",
        billing_subscription_id="sub_1",
    )
    client = _client(sub_1=StripeSubscription(id="sub_1", status="canceled", customer_id="cus_1"))

    stats = await run_reconciliation(session=db_session, client=client)

    assert stats["users_checked"] == 1
    assert stats["users_updated"] == 1
    assert store.get(User, user.id).is_premium is False


@pytest.mark.asyncio
async def test_missed_payment_is_applied(db_session, store, make_user):
    period_end = datetime.now(timezone.utc) + timedelta(days=30)
    user = make_user(billing_customer_id="cus_1", billing_subscription_id="sub_1")
    client = _client(sub_1=StripeSubscription(
        id="sub_1", status="active", customer_id="cus_1", current_period_end=period_end,
    ))

    await run_reconciliation(session=db_session, client=client)

    stored = store.get(User, user.id)
    assert stored.is_premium is True
    assert stored.premium_until == period_end


@pytest.mark.asyncio
async def test_stripe_errors_are_counted(db_session, make_user):
    make_user(billing_customer_id="cus_1", billing_subscription_id="sub_1")
    make_user(billing_customer_id="cus_2", billing_subscription_id="sub_2")
    client = _client(
        sub_1=StripeAPIError("No such subscription"),
        sub_2=StripeSubscription(id="sub_2", status="incomplete", customer_id="cus_2"),
    )

    stats = await run_reconciliation(session=db_session, client=client)

    assert stats["users_checked"] == 2
    assert stats["errors"] == 1


@pytest.mark.asyncio
async def test_lapsed_premiums_expire(db_session, store, make_user):
    user = make_user(is_premium=True, premium_until=datetime.now(timezone.utc) - timedelta(hours=1))
    client = _client()

    stats = await run_reconciliation(session=db_session, client=client)

    assert stats["users_checked"] == 0
    assert stats["premiums_expired"] == 1
    assert store.get(User, user.id).is_premium is False
    client.retrieve_subscription.assert_not_awaited()
