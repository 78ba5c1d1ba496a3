"""
Premium subscription routes.

The client creates (or resumes) a subscription, confirms the returned
payment handle with Stripe.js, then calls /api/subscription/confirm.
Webhooks and the reconciliation job converge on the same projection.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status

from src.api.dependencies.services import require_billing
from src.api.schemas.billing import SubscriptionResponse
from src.auth.dependencies import get_optional_user
from src.integrations.stripe.billing_client import StripeAPIError
from src.models.user import User
from src.services.subscription_service import NoSubscriptionError, SubscriptionService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["billing"])


def _stripe_error(exc: StripeAPIError) -> HTTPException:
    # Provider message is passed through verbatim
    return HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail={"error": "billing_error", "message": exc.message},
    )


@router.post("/get-or-create-subscription", response_model=SubscriptionResponse)
async def get_or_create_subscription(
    request: Request,
    user: Optional[User] = Depends(get_optional_user),
    subscriptions: SubscriptionService = Depends(require_billing),
):
    """
    Return the caller's usable subscription, creating one if needed.

    client_secret is only set while a payment still has to be confirmed.
    """
    try:
        result = await subscriptions.ensure_subscription(user, endpoint=request.url.path)
    except StripeAPIError as e:
        logger.warning("Subscription creation failed", extra={
            "user_id": user.id if user else None,
            "stripe_error_type": e.error_type,
            "stripe_status": e.status_code,
        })
        raise _stripe_error(e)
    return result.to_dict()


@router.post("/subscription/confirm", response_model=SubscriptionResponse)
async def confirm_subscription(
    request: Request,
    user: Optional[User] = Depends(get_optional_user),
    subscriptions: SubscriptionService = Depends(require_billing),
):
    """Re-read the subscription from Stripe and grant premium if it is active."""
    try:
        result = await subscriptions.confirm_payment(user, endpoint=request.url.path)
    except NoSubscriptionError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error": e.code, "message": e.message},
        )
    except StripeAPIError as e:
        logger.warning("Subscription confirmation failed", extra={
            "user_id": user.id if user else None,
            "stripe_error_type": e.error_type,
        })
        raise _stripe_error(e)
    return result.to_dict()
