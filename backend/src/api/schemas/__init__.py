"""
API schemas package.

Contains Pydantic models for request/response validation.
"""

from src.api.schemas.accounts import (
    RegisterRequest,
    LoginRequest,
    ForgotPasswordRequest,
    ResetPasswordRequest,
    SessionResponse,
    MessageResponse,
)

from src.api.schemas.community import (
    CreatePostRequest,
    CreateReplyRequest,
    ScheduleCallRequest,
    ForumRequest,
    ForumUpdateRequest,
    GroupRequest,
    GroupUpdateRequest,
    AdminUserUpdateRequest,
)

from src.api.schemas.billing import SubscriptionResponse, WebhookResponse

__all__ = [
    # Accounts
    "RegisterRequest",
    "LoginRequest",
    "ForgotPasswordRequest",
    "ResetPasswordRequest",
    "SessionResponse",
    "MessageResponse",
    # Community
    "CreatePostRequest",
    "CreateReplyRequest",
    "ScheduleCallRequest",
    "ForumRequest",
    "ForumUpdateRequest",
    "GroupRequest",
    "GroupUpdateRequest",
    "AdminUserUpdateRequest",
    # Billing
    "SubscriptionResponse",
    "WebhookResponse",
]
