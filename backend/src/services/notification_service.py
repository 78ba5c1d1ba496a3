"""
Account notification dispatch.

AccountNotifier renders verification and password-reset emails and hands
them to an EmailSender. It is built once at application start and injected
into the services that issue tokens; it holds no per-request state.

A failed delivery raises NotificationError. Whether that failure is fatal
is the caller's decision: registration logs and continues, an explicit
resend request reports it.
"""

import logging
import os
from typing import Optional
from urllib.parse import urlencode

from src.models.user import User
from src.services.email_sender import EmailMessage, EmailSender, get_email_sender

logger = logging.getLogger(__name__)

DEFAULT_APP_URL = "http://localhost:3000"

_FOOTER = "Silver Circles - A community platform for adults 45-70"


class NotificationError(Exception):
    """An account email could not be delivered."""
    pass


class AccountNotifier:
    """Sends account lifecycle emails."""

    def __init__(self, sender: EmailSender, app_url: Optional[str] = None):
        """
        Args:
            sender: Transport used for delivery
            app_url: Public base URL links point to (or from APP_URL env var)
        """
        self.sender = sender
        self.app_url = (app_url or os.getenv("APP_URL", DEFAULT_APP_URL)).rstrip("/")

    def _link(self, path: str, token: str) -> str:
        return f"{self.app_url}/{path}?{urlencode({'token': token})}"

    async def _deliver(self, message: EmailMessage, kind: str, user: User) -> None:
        delivered = await self.sender.send(message)
        if not delivered:
            logger.warning("Account email not delivered", extra={
                "user_id": user.id,
                "kind": kind,
            })
            raise NotificationError(f"Could not send {kind} email")

    async def send_verification_email(self, user: User, token: str) -> None:
        url = self._link("verify-email", token)
        message = EmailMessage(
            to_email=user.email,
            to_name=user.full_name,
            subject="Verify Your Email Address",
            text_body=(
                "Welcome to Silver Circles! Please verify your email address "
                f"by clicking the following link: {url}"
            ),
            html_body=(
                "<h1>Welcome to Silver Circles!</h1>"
                "<p>Thank you for joining our community. To complete your registration, "
                "please verify your email address:</p>"
                f'<p><a href="{url}">Verify Email Address</a></p>'
                "<p>If you didn't create an account with us, you can safely ignore this email.</p>"
                f"<p>{_FOOTER}</p>"
            ),
            tags=["verify_email"],
        )
        await self._deliver(message, "verification", user)

    async def send_password_reset_email(self, user: User, token: str, ttl_hours: int = 1) -> None:
        url = self._link("reset-password", token)
        expiry = f"This link will expire in {ttl_hours} hour{'s' if ttl_hours != 1 else ''}."
        message = EmailMessage(
            to_email=user.email,
            to_name=user.full_name,
            subject="Reset Your Password",
            text_body=(
                "You requested a password reset. Please click the following link "
                f"to reset your password: {url}. {expiry}"
            ),
            html_body=(
                "<h1>Reset Your Password</h1>"
                "<p>You requested a password reset for your Silver Circles account.</p>"
                f'<p><a href="{url}">Reset Password</a></p>'
                f"<p>{expiry}</p>"
                "<p>If you didn't request a password reset, you can safely ignore this email.</p>"
                f"<p>{_FOOTER}</p>"
            ),
            tags=["password_reset"],
        )
        await self._deliver(message, "password reset", user)


def build_account_notifier(sender: Optional[EmailSender] = None) -> AccountNotifier:
    """Construct the notifier from environment (called once at startup)."""
    return AccountNotifier(sender or get_email_sender())
