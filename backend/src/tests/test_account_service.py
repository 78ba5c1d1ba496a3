"""
Tests for AccountService workflows.

Covers registration (duplicates, swallowed email failures), the login gate
(bad credentials vs unverified), logout, verification (valid, expired,
replayed), resend, forgot-password uniformity and password reset.
"""

from urllib.parse import unquote_plus

import pytest

from src.auth.passwords import verify_password
from src.auth.session_service import SessionError
from src.entitlements import Decision, EntitlementDeniedError
from src.models.user import User
from src.services.account_service import (
    FORGOT_PASSWORD_MESSAGE,
    AccountService,
    AlreadyVerifiedAccountError,
    DuplicateAccountError,
    ExpiredTokenError,
    InvalidCredentialsError,
    InvalidTokenError,
    NotificationDispatchError,
)
from src.services.email_sender import MockEmailSender
from src.services.notification_service import AccountNotifier

# Password make_user hashes for every factory user
DEFAULT_PASSWORD = "correct-horse-battery"


@pytest.fixture
def accounts(store, sessions, notifier, engine, policy, clock):
    return AccountService(store, sessions, notifier, engine=engine, policy=policy, clock=clock)


async def _register(accounts, username="alice", email="alice@example.com"):
    return await accounts.register(
        username=username,
        email=email,
        password=DEFAULT_PASSWORD,
        full_name="Alice Example",
    )


def _sent_token(email_sender) -> str:
    """Token from the link in the most recent email."""
    body = email_sender.sent_messages[-1].html_body
    return unquote_plus(body.split("token=")[1].split('"')[0])


# =============================================================================
# Registration
# =============================================================================

class TestRegister:

    @pytest.mark.asyncio
    async def test_creates_unverified_user_and_sends_email(self, accounts, email_sender, sessions):
        user, token = await _register(accounts)

        assert user.is_verified is False
        assert user.password_hash != DEFAULT_PASSWORD
        assert verify_password(DEFAULT_PASSWORD, user.password_hash)
        assert sessions.validate(token).user_id == user.id

        assert len(email_sender.sent_messages) == 1
        message = email_sender.sent_messages[0]
        assert message.to_email == "alice@example.com"
        assert message.subject == "Verify Your Email Address"
        assert user.verification_token in message.text_body

    @pytest.mark.asyncio
    async def test_duplicate_username(self, accounts):
        await _register(accounts)
        with pytest.raises(DuplicateAccountError) as exc_info:
            await _register(accounts, email="other@example.com")
        assert exc_info.value.message == "Username already exists"
        assert exc_info.value.field == "username"

    @pytest.mark.asyncio
    async def test_duplicate_email(self, accounts):
        await _register(accounts)
        with pytest.raises(DuplicateAccountError) as exc_info:
            await _register(accounts, username="alice2")
        assert exc_info.value.message == "Email already exists"

    @pytest.mark.asyncio
    async def test_email_failure_does_not_fail_registration(
        self, store, sessions, engine, policy, clock
    ):
        notifier = AccountNotifier(MockEmailSender(fail=True))
        accounts = AccountService(store, sessions, notifier, engine=engine, policy=policy, clock=clock)

        user, _ = await _register(accounts)
        stored = store.get(User, user.id)
        assert stored is not None
        assert stored.verification_token is not None


# =============================================================================
# Login / logout
# =============================================================================

class TestLogin:

    def test_verified_user_logs_in(self, accounts, make_user, sessions):
        user = make_user(username="bob")
        logged_in, token = accounts.login("bob", DEFAULT_PASSWORD)
        assert logged_in.id == user.id
        assert sessions.validate(token).user_id == user.id

    def test_unknown_user_and_wrong_password_share_message(self, accounts, make_user):
        make_user(username="bob")
        with pytest.raises(InvalidCredentialsError) as unknown:
            accounts.login("nobody", DEFAULT_PASSWORD)
        with pytest.raises(InvalidCredentialsError) as wrong:
            accounts.login("bob", "wrong-password")
        assert unknown.value.message == wrong.value.message == "Incorrect username or password"

    def test_unverified_user_is_told_to_verify(self, accounts, make_user):
        make_user(username="carol", is_verified=False)
        with pytest.raises(EntitlementDeniedError) as exc_info:
            accounts.login("carol", DEFAULT_PASSWORD)
        assert exc_info.value.decision.decision == Decision.DENY_UNVERIFIED
        assert exc_info.value.decision.message == "Please verify your email address before logging in"

    def test_unverified_user_with_wrong_password_gets_generic_error(self, accounts, make_user):
        make_user(username="carol", is_verified=False)
        with pytest.raises(InvalidCredentialsError):
            accounts.login("carol", "wrong-password")

    def test_logout_revokes_session(self, accounts, make_user, sessions):
        make_user(username="bob")
        _, token = accounts.login("bob", DEFAULT_PASSWORD)
        accounts.logout(sessions.validate(token))
        with pytest.raises(SessionError):
            sessions.validate(token)


# =============================================================================
# Email verification
# =============================================================================

class TestVerifyEmail:

    @pytest.mark.asyncio
    async def test_verification_flow(self, accounts, email_sender):
        user, _ = await _register(accounts)
        verified = accounts.verify_email(_sent_token(email_sender))
        assert verified.id == user.id
        assert verified.is_verified is True

        logged_in, _ = accounts.login("alice", DEFAULT_PASSWORD)
        assert logged_in.id == user.id

    @pytest.mark.asyncio
    async def test_replayed_link(self, accounts, email_sender):
        await _register(accounts)
        token = _sent_token(email_sender)
        accounts.verify_email(token)
        with pytest.raises(AlreadyVerifiedAccountError):
            accounts.verify_email(token)

    def test_unknown_token(self, accounts):
        with pytest.raises(InvalidTokenError) as exc_info:
            accounts.verify_email("not-a-token")
        assert exc_info.value.message == "Invalid verification token"

    @pytest.mark.asyncio
    async def test_expired_token(self, accounts, email_sender, clock):
        await _register(accounts)
        clock.advance(hours=24)
        with pytest.raises(ExpiredTokenError) as exc_info:
            accounts.verify_email(_sent_token(email_sender))
        assert exc_info.value.message == "Verification token has expired"


class TestResendVerification:

    @pytest.mark.asyncio
    async def test_resend_replaces_token(self, accounts, email_sender, store):
        user, _ = await _register(accounts)
        first = _sent_token(email_sender)

        await accounts.resend_verification(store.get(User, user.id))
        second = _sent_token(email_sender)

        assert first != second
        with pytest.raises(InvalidTokenError):
            accounts.verify_email(first)
        assert accounts.verify_email(second).is_verified

    @pytest.mark.asyncio
    async def test_resend_for_verified_user(self, accounts, make_user):
        with pytest.raises(AlreadyVerifiedAccountError):
            await accounts.resend_verification(make_user(is_verified=True))

    @pytest.mark.asyncio
    async def test_resend_requires_session(self, accounts):
        with pytest.raises(EntitlementDeniedError) as exc_info:
            await accounts.resend_verification(None)
        assert exc_info.value.decision.decision == Decision.DENY_AUTH_REQUIRED

    @pytest.mark.asyncio
    async def test_resend_reports_delivery_failure_but_keeps_token(
        self, store, sessions, engine, policy, clock, make_user
    ):
        notifier = AccountNotifier(MockEmailSender(fail=True))
        accounts = AccountService(store, sessions, notifier, engine=engine, policy=policy, clock=clock)
        user = make_user(is_verified=False)

        with pytest.raises(NotificationDispatchError):
            await accounts.resend_verification(user)
        assert store.get(User, user.id).verification_token is not None


# =============================================================================
# Password recovery
# =============================================================================

class TestPasswordRecovery:

    @pytest.mark.asyncio
    async def test_forgot_password_response_is_uniform(self, accounts, make_user, email_sender, store):
        user = make_user(email="known@example.com")

        known = await accounts.forgot_password("known@example.com")
        unknown = await accounts.forgot_password("unknown@example.com")

        assert known == unknown == {"message": FORGOT_PASSWORD_MESSAGE}
        assert len(email_sender.sent_messages) == 1
        assert store.get(User, user.id).password_reset_token is not None

    @pytest.mark.asyncio
    async def test_reset_changes_password_and_revokes_sessions(
        self, accounts, make_user, email_sender, sessions, store
    ):
        user = make_user(username="dave", email="dave@example.com", is_verified=False)
        old_session = sessions.issue(user.id)

        await accounts.forgot_password("dave@example.com")
        accounts.reset_password(_sent_token(email_sender), "a-brand-new-password")

        stored = store.get(User, user.id)
        assert verify_password("a-brand-new-password", stored.password_hash)
        assert stored.is_verified is False
        assert stored.password_reset_token is None
        with pytest.raises(SessionError):
            sessions.validate(old_session)

    @pytest.mark.asyncio
    async def test_reset_token_single_use(self, accounts, make_user, email_sender):
        make_user(email="erin@example.com")
        await accounts.forgot_password("erin@example.com")
        token = _sent_token(email_sender)

        accounts.reset_password(token, "first-new-password")
        with pytest.raises(InvalidTokenError) as exc_info:
            accounts.reset_password(token, "second-new-password")
        assert exc_info.value.message == "Invalid or expired reset token"

    @pytest.mark.asyncio
    async def test_expired_reset_token(self, accounts, make_user, email_sender, clock):
        make_user(email="erin@example.com")
        await accounts.forgot_password("erin@example.com")
        clock.advance(hours=1)
        with pytest.raises(ExpiredTokenError) as exc_info:
            accounts.reset_password(_sent_token(email_sender), "another-password")
        assert exc_info.value.message == "Reset token has expired"
