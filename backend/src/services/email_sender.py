"""
Email sender abstraction for account notifications.

Supports multiple providers:
- SendGrid (production)
- SMTP (development)
- Mock (testing)

Senders report delivery as a boolean; callers decide whether a failed
delivery is fatal to the workflow that triggered it.
"""

import asyncio
import os
import logging
import smtplib
from abc import ABC, abstractmethod
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional, List

import httpx

logger = logging.getLogger(__name__)

SENDGRID_SEND_URL = "https://api.sendgrid.com/v3/mail/send"
DEFAULT_FROM_EMAIL = "no-reply@silvercircles.example"
DEFAULT_FROM_NAME = "Silver Circles"


@dataclass
class EmailMessage:
    """Email message data."""
    to_email: str
    to_name: Optional[str]
    subject: str
    html_body: str
    text_body: Optional[str] = None
    from_email: Optional[str] = None
    from_name: Optional[str] = None
    tags: Optional[List[str]] = None


class EmailSender(ABC):
    """Abstract base class for email sending."""

    @abstractmethod
    async def send(self, message: EmailMessage) -> bool:
        """
        Send an email.

        Args:
            message: Email message to send

        Returns:
            True on success, False on failure
        """
        pass


class SendGridEmailSender(EmailSender):
    """SendGrid email sender implementation."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        from_email: Optional[str] = None,
        from_name: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize SendGrid sender.

        Args:
            api_key: SendGrid API key (or from SENDGRID_API_KEY env var)
            from_email: Default sender email (or from NOTIFICATION_FROM_EMAIL env var)
            from_name: Default sender name (or from NOTIFICATION_FROM_NAME env var)
            timeout: HTTP timeout in seconds
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self.api_key = api_key or os.getenv("SENDGRID_API_KEY")
        self.from_email = from_email or os.getenv("NOTIFICATION_FROM_EMAIL", DEFAULT_FROM_EMAIL)
        self.from_name = from_name or os.getenv("NOTIFICATION_FROM_NAME", DEFAULT_FROM_NAME)
        self.timeout = timeout
        self._transport = transport

        if not self.api_key:
            logger.warning("SendGrid API key not configured")

    def _build_payload(self, message: EmailMessage) -> dict:
        content = [{"type": "text/html", "value": message.html_body}]
        if message.text_body:
            content.insert(0, {"type": "text/plain", "value": message.text_body})

        payload = {
            "personalizations": [
                {"to": [{"email": message.to_email, "name": message.to_name or ""}]}
            ],
            "from": {
                "email": message.from_email or self.from_email,
                "name": message.from_name or self.from_name,
            },
            "subject": message.subject,
            "content": content,
        }
        if message.tags:
            payload["categories"] = message.tags
        return payload

    async def send(self, message: EmailMessage) -> bool:
        """Send email via SendGrid API."""
        if not self.api_key:
            logger.error("Cannot send email: SendGrid API key not configured")
            return False

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    SENDGRID_SEND_URL,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                    json=self._build_payload(message),
                )
        except httpx.HTTPError as e:
            logger.error(
                "Failed to reach SendGrid",
                extra={"to_email": message.to_email, "error": str(e)},
            )
            return False

        if response.status_code in (200, 202):
            logger.info(
                "Email sent",
                extra={"to_email": message.to_email, "subject": message.subject},
            )
            return True

        logger.error(
            "SendGrid API error",
            extra={
                "status_code": response.status_code,
                "response": response.text,
                "to_email": message.to_email,
            },
        )
        return False


class SMTPEmailSender(EmailSender):
    """SMTP email sender for development."""

    def __init__(
        self,
        host: Optional[str] = None,
        port: Optional[int] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        use_tls: bool = True,
        from_email: Optional[str] = None,
        from_name: Optional[str] = None,
    ):
        self.host = host or os.getenv("SMTP_HOST", "localhost")
        self.port = port or int(os.getenv("SMTP_PORT", "587"))
        self.username = username or os.getenv("SMTP_USERNAME")
        self.password = password or os.getenv("SMTP_PASSWORD")
        self.use_tls = use_tls
        self.from_email = from_email or os.getenv("NOTIFICATION_FROM_EMAIL", DEFAULT_FROM_EMAIL)
        self.from_name = from_name or os.getenv("NOTIFICATION_FROM_NAME", DEFAULT_FROM_NAME)

    def build_mime(self, message: EmailMessage) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = message.subject
        msg["From"] = f"{message.from_name or self.from_name} <{message.from_email or self.from_email}>"
        msg["To"] = message.to_email
        if message.text_body:
            msg.attach(MIMEText(message.text_body, "plain"))
        msg.attach(MIMEText(message.html_body, "html"))
        return msg

    def _deliver(self, message: EmailMessage) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=30) as server:
            if self.use_tls:
                server.starttls()
            if self.username and self.password:
                server.login(self.username, self.password)
            server.sendmail(
                message.from_email or self.from_email,
                [message.to_email],
                self.build_mime(message).as_string(),
            )

    async def send(self, message: EmailMessage) -> bool:
        """Send email via SMTP on a worker thread (smtplib blocks)."""
        try:
            await asyncio.to_thread(self._deliver, message)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(
                "Failed to send email via SMTP",
                extra={"to_email": message.to_email, "error": str(e)},
            )
            return False

        logger.info(
            "Email sent via SMTP",
            extra={"to_email": message.to_email, "subject": message.subject},
        )
        return True


class MockEmailSender(EmailSender):
    """Mock email sender for testing."""

    def __init__(self, fail: bool = False):
        """
        Args:
            fail: When True every send reports failure
        """
        self.sent_messages: List[EmailMessage] = []
        self.fail = fail

    async def send(self, message: EmailMessage) -> bool:
        """Record email in sent_messages list."""
        if self.fail:
            return False
        self.sent_messages.append(message)
        logger.info(
            "Mock email sent",
            extra={"to_email": message.to_email, "subject": message.subject},
        )
        return True

    def clear(self) -> None:
        """Clear sent messages."""
        self.sent_messages.clear()


def get_email_sender() -> EmailSender:
    """
    Get configured email sender based on environment.

    Returns:
        Appropriate EmailSender implementation
    """
    provider = os.getenv("NOTIFICATION_EMAIL_PROVIDER", "sendgrid").lower()

    if provider == "smtp":
        return SMTPEmailSender()
    elif provider == "mock":
        return MockEmailSender()
    else:
        return SendGridEmailSender()
