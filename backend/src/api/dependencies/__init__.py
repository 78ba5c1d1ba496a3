"""
API Dependencies module.

Provides shared FastAPI dependencies for route handlers.
"""

from src.api.dependencies.services import (
    get_policy,
    get_entitlement_engine,
    get_notifier,
    get_account_service,
    get_community_service,
    get_billing_client,
    get_subscription_service,
    require_billing,
    get_webhook_handler,
)

__all__ = [
    "get_policy",
    "get_entitlement_engine",
    "get_notifier",
    "get_account_service",
    "get_community_service",
    "get_billing_client",
    "get_subscription_service",
    "require_billing",
    "get_webhook_handler",
]
