"""
Session issuance, validation and revocation.

Sessions are HS256-signed JWTs carrying the user id (sub), a session id
(sid), iat and exp. Lifetime comes from the access policy (one week by
default). Because signed tokens are stateless, a revocation list makes
logout and "sign out everywhere" (after a password reset) immediate.

The revocation list is in-process: entries only need to outlive the
session TTL, after which the JWT has expired anyway.
"""

import logging
import os
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from threading import Lock
from typing import Dict, Optional

import jwt

from src.config.access_policy import get_access_policy

logger = logging.getLogger(__name__)

SESSION_ALGORITHM = "HS256"
SESSION_ISSUER = "silver-circles"


class RevocationReason(str, Enum):
    """Reasons for session revocation."""
    LOGOUT = "logout"
    PASSWORD_CHANGED = "password_changed"
    ADMIN_REVOKE = "admin_revoke"


class SessionError(Exception):
    """Session token is missing, malformed, expired or revoked."""
    pass


@dataclass(frozen=True)
class SessionClaims:
    """Validated session token claims."""
    user_id: str
    session_id: str
    issued_at: datetime
    expires_at: datetime


@dataclass
class RevocationEntry:
    """Entry in the revocation list."""
    identifier: str
    revoked_at: datetime
    reason: RevocationReason
    revoke_tokens_before: Optional[datetime] = None


class SessionService:
    """
    Issues and validates session tokens.

    Usage:
        sessions = SessionService(secret="...")
        token = sessions.issue(user.id)
        claims = sessions.validate(token)
        sessions.revoke_session(claims.session_id)
    """

    # Cleanup interval for expired revocation entries
    CLEANUP_INTERVAL = 3600

    def __init__(
        self,
        secret: Optional[str] = None,
        ttl: Optional[timedelta] = None,
    ):
        """
        Initialize session service.

        Args:
            secret: Signing secret (or from SESSION_SECRET env var)
            ttl: Session lifetime (default from access policy)
        """
        self._secret = secret or os.getenv("SESSION_SECRET")
        if not self._secret:
            logger.warning("SESSION_SECRET not configured, using an ephemeral secret")
            self._secret = uuid.uuid4().hex + uuid.uuid4().hex
        self._ttl = ttl or get_access_policy().session_ttl

        self._revoked_sessions: Dict[str, RevocationEntry] = {}
        self._revoked_users: Dict[str, RevocationEntry] = {}
        # user_id -> {session_id: issued_at epoch seconds}
        self._active_sessions: Dict[str, Dict[str, float]] = {}
        self._lock = Lock()
        self._last_cleanup = time.time()

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    def issue(self, user_id: str, now: Optional[datetime] = None) -> str:
        """Issue a signed session token for a user."""
        issued_at = now or datetime.now(timezone.utc)
        session_id = uuid.uuid4().hex
        payload = {
            "sub": user_id,
            "sid": session_id,
            "iss": SESSION_ISSUER,
            "iat": int(issued_at.timestamp()),
            "exp": int((issued_at + self._ttl).timestamp()),
        }
        with self._lock:
            self._active_sessions.setdefault(user_id, {})[session_id] = issued_at.timestamp()
        return jwt.encode(payload, self._secret, algorithm=SESSION_ALGORITHM)

    def validate(self, token: str) -> SessionClaims:
        """
        Validate a session token.

        Raises:
            SessionError: If the token is invalid, expired or revoked
        """
        if not token:
            raise SessionError("Missing session token")
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[SESSION_ALGORITHM],
                issuer=SESSION_ISSUER,
                options={"require": ["sub", "sid", "iat", "exp"]},
            )
        except jwt.ExpiredSignatureError as e:
            raise SessionError("Session has expired") from e
        except jwt.InvalidTokenError as e:
            raise SessionError("Invalid session token") from e

        claims = SessionClaims(
            user_id=payload["sub"],
            session_id=payload["sid"],
            issued_at=datetime.fromtimestamp(payload["iat"], tz=timezone.utc),
            expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
        )
        if self.is_revoked(claims):
            raise SessionError("Session has been revoked")
        return claims

    def is_revoked(self, claims: SessionClaims) -> bool:
        self._maybe_cleanup()
        with self._lock:
            if claims.session_id in self._revoked_sessions:
                return True
            entry = self._revoked_users.get(claims.user_id)
            if entry and entry.revoke_tokens_before:
                return claims.issued_at < entry.revoke_tokens_before
        return False

    def revoke_session(
        self,
        session_id: str,
        reason: RevocationReason = RevocationReason.LOGOUT,
        user_id: Optional[str] = None,
    ) -> None:
        """Revoke a specific session."""
        entry = RevocationEntry(
            identifier=session_id,
            revoked_at=datetime.now(timezone.utc),
            reason=reason,
        )
        with self._lock:
            self._revoked_sessions[session_id] = entry
            if user_id:
                self._active_sessions.get(user_id, {}).pop(session_id, None)

        logger.info("Revoked session", extra={"reason": reason.value})

    def revoke_all_user_sessions(
        self,
        user_id: str,
        reason: RevocationReason = RevocationReason.PASSWORD_CHANGED,
    ) -> int:
        """
        Revoke every session a user holds right now.

        Sessions this process issued are revoked by id. Older sessions issued
        elsewhere are caught by the iat cutoff (whole seconds, so a session
        issued after this call in the same second stays valid).

        Returns:
            Number of sessions revoked by id
        """
        now = datetime.now(timezone.utc)
        with self._lock:
            session_ids = list(self._active_sessions.pop(user_id, {}).keys())
            for session_id in session_ids:
                self._revoked_sessions[session_id] = RevocationEntry(
                    identifier=session_id,
                    revoked_at=now,
                    reason=reason,
                )
            self._revoked_users[user_id] = RevocationEntry(
                identifier=user_id,
                revoked_at=now,
                reason=reason,
                revoke_tokens_before=now.replace(microsecond=0),
            )

        logger.info("Revoked all sessions for user", extra={
            "user_id": user_id,
            "reason": reason.value,
            "sessions_revoked": len(session_ids),
        })
        return len(session_ids)

    def _maybe_cleanup(self) -> None:
        """Periodically drop entries older than the session TTL."""
        now = time.time()
        if now - self._last_cleanup < self.CLEANUP_INTERVAL:
            return

        with self._lock:
            if now - self._last_cleanup < self.CLEANUP_INTERVAL:
                return
            self._last_cleanup = now
            cutoff = datetime.now(timezone.utc) - self._ttl

            expired = [k for k, e in self._revoked_sessions.items() if e.revoked_at < cutoff]
            for key in expired:
                del self._revoked_sessions[key]
            expired_users = [k for k, e in self._revoked_users.items() if e.revoked_at < cutoff]
            for key in expired_users:
                del self._revoked_users[key]
            issued_cutoff = cutoff.timestamp()
            for user_id in list(self._active_sessions):
                live = {
                    sid: issued for sid, issued in self._active_sessions[user_id].items()
                    if issued >= issued_cutoff
                }
                if live:
                    self._active_sessions[user_id] = live
                else:
                    del self._active_sessions[user_id]

            if expired or expired_users:
                logger.debug("Cleaned up revocation entries", extra={
                    "sessions_removed": len(expired),
                    "users_removed": len(expired_users),
                })


# Singleton instance
_session_service: Optional[SessionService] = None
_session_service_lock = Lock()


def get_session_service() -> SessionService:
    """Get the process-wide SessionService instance."""
    global _session_service
    with _session_service_lock:
        if _session_service is None:
            _session_service = SessionService()
        return _session_service
