"""
Account workflows: registration, login, logout, email verification and
password recovery.

Token lifecycles live in AccountTokenService; the login gate is decided by
the entitlement engine (credential check first, then LOGIN action, which
yields DENY_UNVERIFIED for unverified accounts).

Email delivery failures are swallowed and logged for registration and
forgot-password (the primary workflow must still succeed; the user can ask
for a resend). An explicit resend request reports the failure.
"""

import asyncio
import logging
from datetime import datetime
from typing import Callable, Optional, Tuple

from src.auth.passwords import hash_password, needs_rehash, verify_password
from src.auth.session_service import RevocationReason, SessionClaims, SessionService
from src.config.access_policy import AccessPolicy, get_access_policy
from src.entitlements.models import Action
from src.entitlements.policy import EntitlementEngine, enforce
from src.models.base import utcnow
from src.models.user import User
from src.repositories.credential_store import CredentialStore, DuplicateRecordError
from src.services.account_token_service import (
    AccountTokenService,
    AlreadyVerifiedError,
    TokenPurpose,
    TokenStatus,
)
from src.services.notification_service import AccountNotifier, NotificationError

logger = logging.getLogger(__name__)

# Identical for existing and unknown emails.
FORGOT_PASSWORD_MESSAGE = "If an account exists, a password reset email has been sent"


class AccountServiceError(Exception):
    """Base exception for account workflows."""
    code = "account_error"

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.field = field


class DuplicateAccountError(AccountServiceError):
    """Username or email already registered."""
    code = "duplicate_account"


class InvalidCredentialsError(AccountServiceError):
    """Unknown username or wrong password (deliberately indistinguishable)."""
    code = "invalid_credentials"


class InvalidTokenError(AccountServiceError):
    """Presented token is unknown or was superseded."""
    code = "invalid_token"


class ExpiredTokenError(AccountServiceError):
    """Presented token is past its expiry."""
    code = "expired_token"


class AlreadyVerifiedAccountError(AccountServiceError):
    """Account is already verified."""
    code = "already_verified"


class NotificationDispatchError(AccountServiceError):
    """Requested email could not be sent."""
    code = "notification_failed"


class AccountService:
    """
    Account lifecycle operations.

    One instance per request; the notifier and session service are shared.
    """

    def __init__(
        self,
        store: CredentialStore,
        sessions: SessionService,
        notifier: AccountNotifier,
        engine: Optional[EntitlementEngine] = None,
        policy: Optional[AccessPolicy] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.sessions = sessions
        self.notifier = notifier
        self.policy = policy or get_access_policy()
        self.engine = engine or EntitlementEngine(store, policy=self.policy, clock=clock)
        self.tokens = AccountTokenService(store, policy=self.policy, clock=clock)

    # ------------------------------------------------------------------
    # Registration / login
    # ------------------------------------------------------------------

    async def register(
        self,
        username: str,
        email: str,
        password: str,
        full_name: str,
        about_me: Optional[str] = None,
        profile_image: Optional[str] = None,
    ) -> Tuple[User, str]:
        """
        Create an unverified account and send its verification email.

        Returns:
            (user, session token). The session lets the new user request a
            resend; logging in again still requires verification.

        Raises:
            DuplicateAccountError: Username or email taken
        """
        if self.store.get_by_unique_key(User, "username", username):
            raise DuplicateAccountError("Username already exists", field="username")
        if self.store.get_by_unique_key(User, "email", email):
            raise DuplicateAccountError("Email already exists", field="email")

        # pbkdf2 blocks; keep it off the event loop
        password_hash = await asyncio.to_thread(hash_password, password)
        try:
            user = self.store.create(User(
                username=username,
                email=email,
                password_hash=password_hash,
                full_name=full_name,
                about_me=about_me,
                profile_image=profile_image,
                is_verified=False,
                is_premium=False,
                is_admin=False,
            ))
        except DuplicateRecordError as e:
            # Concurrent registration won the unique index
            raise DuplicateAccountError("Username or email already exists") from e

        token = self.tokens.issue(TokenPurpose.VERIFY_EMAIL, user)
        try:
            await self.notifier.send_verification_email(user, token)
        except NotificationError:
            logger.warning("Verification email failed at registration", extra={
                "user_id": user.id,
            })

        logger.info("User registered", extra={"user_id": user.id})
        return user, self.sessions.issue(user.id)

    def login(self, username: str, password: str) -> Tuple[User, str]:
        """
        Check credentials, then the login gate.

        Raises:
            InvalidCredentialsError: Unknown user or wrong password
            EntitlementDeniedError: Account not verified (email_unverified)
        """
        user = self.store.get_by_unique_key(User, "username", username)
        if user is None or not verify_password(password, user.password_hash):
            logger.info("Login rejected: bad credentials")
            raise InvalidCredentialsError("Incorrect username or password")

        enforce(self.engine.check_login(user))

        if needs_rehash(user.password_hash):
            user = self.store.update(User, user.id, {"password_hash": hash_password(password)})

        logger.info("User logged in", extra={"user_id": user.id})
        return user, self.sessions.issue(user.id)

    def logout(self, claims: SessionClaims) -> None:
        self.sessions.revoke_session(
            claims.session_id, RevocationReason.LOGOUT, user_id=claims.user_id
        )
        logger.info("User logged out", extra={"user_id": claims.user_id})

    # ------------------------------------------------------------------
    # Email verification
    # ------------------------------------------------------------------

    def verify_email(self, token: Optional[str]) -> User:
        """
        Consume a verification token.

        A replayed link for an account it already verified reports
        AlreadyVerifiedAccountError instead of succeeding twice.
        """
        result = self.tokens.validate(TokenPurpose.VERIFY_EMAIL, token)

        if result.status == TokenStatus.ALREADY_VERIFIED:
            raise AlreadyVerifiedAccountError("Email already verified")
        if result.status == TokenStatus.INVALID:
            raise InvalidTokenError("Invalid verification token")
        if result.user.is_verified:
            raise AlreadyVerifiedAccountError("Email already verified")
        if result.status == TokenStatus.EXPIRED:
            raise ExpiredTokenError("Verification token has expired")

        user = self.tokens.consume(TokenPurpose.VERIFY_EMAIL, result.user)
        logger.info("Email verified", extra={"user_id": user.id})
        return user

    def current_user(self, user: Optional[User], endpoint: Optional[str] = None) -> User:
        enforce(self.engine.check_authenticated(user, Action.VIEW_ACCOUNT, endpoint=endpoint))
        return user

    async def resend_verification(
        self, user: Optional[User], endpoint: Optional[str] = None
    ) -> None:
        """
        Issue a fresh verification token (invalidating the previous one) and send it.

        Unverified callers are allowed; only a signed-in session is required.

        Raises:
            AlreadyVerifiedAccountError: Nothing to verify
            NotificationDispatchError: Email could not be sent (token is kept)
        """
        enforce(self.engine.check_authenticated(user, Action.VIEW_ACCOUNT, endpoint=endpoint))
        try:
            token = self.tokens.issue(TokenPurpose.VERIFY_EMAIL, user)
        except AlreadyVerifiedError as e:
            raise AlreadyVerifiedAccountError("Email already verified") from e

        try:
            await self.notifier.send_verification_email(user, token)
        except NotificationError as e:
            raise NotificationDispatchError("Failed to send verification email") from e

    # ------------------------------------------------------------------
    # Password recovery
    # ------------------------------------------------------------------

    async def forgot_password(self, email: str) -> dict:
        """
        Start a password reset. The response never reveals whether the
        email belongs to an account; only the store side effect differs.
        """
        user = self.store.get_by_unique_key(User, "email", email)
        if user is not None:
            token = self.tokens.issue(TokenPurpose.PASSWORD_RESET, user)
            try:
                await self.notifier.send_password_reset_email(
                    user, token, ttl_hours=self.policy.password_reset_ttl_hours
                )
            except NotificationError:
                logger.warning("Password reset email failed", extra={"user_id": user.id})
        else:
            logger.info("Password reset requested for unknown email")

        return {"message": FORGOT_PASSWORD_MESSAGE}

    def reset_password(self, token: Optional[str], new_password: str) -> User:
        """
        Set a new password using a reset token.

        Verification state is untouched. Every existing session of the
        user is revoked.
        """
        result = self.tokens.validate(TokenPurpose.PASSWORD_RESET, token)
        if result.status == TokenStatus.EXPIRED:
            raise ExpiredTokenError("Reset token has expired")
        if not result.is_valid:
            raise InvalidTokenError("Invalid or expired reset token")

        user = self.tokens.consume(
            TokenPurpose.PASSWORD_RESET,
            result.user,
            extra_changes={"password_hash": hash_password(new_password)},
        )
        self.sessions.revoke_all_user_sessions(user.id, RevocationReason.PASSWORD_CHANGED)
        logger.info("Password reset", extra={"user_id": user.id})
        return user
