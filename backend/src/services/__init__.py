"""
Business logic services.
"""

from src.services.account_service import AccountService
from src.services.community_service import CommunityService
from src.services.subscription_service import SubscriptionService
from src.services.billing_webhook_handler import BillingWebhookHandler

__all__ = ["AccountService", "CommunityService", "SubscriptionService", "BillingWebhookHandler"]
