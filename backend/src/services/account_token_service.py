"""
Single-use account tokens for email verification and password reset.

Tokens are stored on the User row as (token, expires_at) pairs that are
always written and cleared together. Issuing a new token for a purpose
overwrites the previous one, which from then on validates as INVALID.

validate() never consumes. Callers validate, perform their change, then
consume() so the whole sequence lands in one store update.
"""

import hashlib
import logging
import secrets
import string
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, Optional, Tuple

from src.config.access_policy import AccessPolicy, get_access_policy
from src.models.base import utcnow
from src.models.user import User
from src.repositories.credential_store import CredentialStore

logger = logging.getLogger(__name__)

# Unreserved URI characters (RFC 3986): safe in a query string as-is
TOKEN_ALPHABET = string.ascii_letters + string.digits + "-._~"


class TokenPurpose(str, Enum):
    VERIFY_EMAIL = "verify_email"
    PASSWORD_RESET = "password_reset"


class TokenStatus(str, Enum):
    VALID = "valid"
    INVALID = "invalid"
    EXPIRED = "expired"
    ALREADY_VERIFIED = "already_verified"


# purpose -> (token column, expiry column)
_TOKEN_FIELDS: Dict[TokenPurpose, Tuple[str, str]] = {
    TokenPurpose.VERIFY_EMAIL: ("verification_token", "verification_token_expires_at"),
    TokenPurpose.PASSWORD_RESET: ("password_reset_token", "password_reset_expires_at"),
}


class AccountTokenError(Exception):
    """Base exception for account token operations."""
    pass


class AlreadyVerifiedError(AccountTokenError):
    """Verification requested for an account that is already verified."""
    pass


@dataclass(frozen=True)
class TokenValidation:
    """Outcome of validating a presented token."""
    status: TokenStatus
    user: Optional[User] = None

    @property
    def is_valid(self) -> bool:
        return self.status == TokenStatus.VALID


def generate_token(length: int) -> str:
    """Cryptographically random token over the URL-safe alphabet."""
    return "".join(secrets.choice(TOKEN_ALPHABET) for _ in range(length))


def token_digest(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class AccountTokenService:
    """
    Issues, validates and consumes verification / reset tokens.

    Usage:
        tokens = AccountTokenService(store)
        token = tokens.issue(TokenPurpose.VERIFY_EMAIL, user)
        result = tokens.validate(TokenPurpose.VERIFY_EMAIL, token)
        if result.is_valid:
            tokens.consume(TokenPurpose.VERIFY_EMAIL, result.user)
    """

    def __init__(
        self,
        store: CredentialStore,
        policy: Optional[AccessPolicy] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.policy = policy or get_access_policy()
        self._clock = clock

    def _ttl(self, purpose: TokenPurpose):
        if purpose == TokenPurpose.VERIFY_EMAIL:
            return self.policy.verification_ttl
        return self.policy.password_reset_ttl

    def issue(self, purpose: TokenPurpose, user: User) -> str:
        """
        Generate a fresh token, replacing any pending token of the same purpose.

        Raises:
            AlreadyVerifiedError: Verification token requested for a verified user
        """
        if purpose == TokenPurpose.VERIFY_EMAIL and user.is_verified:
            raise AlreadyVerifiedError("Email already verified")

        token_field, expiry_field = _TOKEN_FIELDS[purpose]
        token = generate_token(self.policy.token_length)
        expires_at = self._clock() + self._ttl(purpose)

        self.store.update(User, user.id, {token_field: token, expiry_field: expires_at})

        logger.info("Account token issued", extra={
            "user_id": user.id,
            "purpose": purpose.value,
            "expires_at": expires_at.isoformat(),
        })
        return token

    def validate(self, purpose: TokenPurpose, token: Optional[str]) -> TokenValidation:
        """
        Look up the user holding `token` for `purpose`.

        A token is valid while now < expires_at. A verification token that
        was already consumed validates as ALREADY_VERIFIED.
        """
        if not token:
            return TokenValidation(TokenStatus.INVALID)

        token_field, expiry_field = _TOKEN_FIELDS[purpose]
        user = self.store.get_by_unique_key(User, token_field, token)

        if user is None:
            if purpose == TokenPurpose.VERIFY_EMAIL:
                verified = self.store.get_by_unique_key(
                    User, "verified_token_digest", token_digest(token)
                )
                if verified is not None and verified.is_verified:
                    return TokenValidation(TokenStatus.ALREADY_VERIFIED, verified)
            return TokenValidation(TokenStatus.INVALID)

        expires_at = getattr(user, expiry_field)
        if expires_at is None or self._clock() >= expires_at:
            return TokenValidation(TokenStatus.EXPIRED, user)

        return TokenValidation(TokenStatus.VALID, user)

    def consume(
        self,
        purpose: TokenPurpose,
        user: User,
        extra_changes: Optional[dict] = None,
    ) -> User:
        """
        Clear the token pair. For verification also marks the user verified.

        Args:
            purpose: Token purpose
            user: Holder of the token (as returned by validate)
            extra_changes: Further fields written in the same update
                (e.g. the new password hash on reset)
        """
        token_field, expiry_field = _TOKEN_FIELDS[purpose]
        changes = {token_field: None, expiry_field: None}

        if purpose == TokenPurpose.VERIFY_EMAIL:
            pending = getattr(user, token_field)
            changes["is_verified"] = True
            changes["verified_token_digest"] = token_digest(pending) if pending else None

        if extra_changes:
            changes.update(extra_changes)

        updated = self.store.update(User, user.id, changes)
        logger.info("Account token consumed", extra={
            "user_id": user.id,
            "purpose": purpose.value,
        })
        return updated
