"""
Tests for session issuance, validation and revocation.
"""

from datetime import datetime, timedelta, timezone

import jwt
import pytest

from src.auth.passwords import hash_password, needs_rehash, verify_password
from src.auth.session_service import (
    SESSION_ALGORITHM,
    RevocationReason,
    SessionError,
    SessionService,
)


class TestIssueValidate:

    def test_round_trip_claims(self, sessions):
        token = sessions.issue("user-1")
        claims = sessions.validate(token)
        assert claims.user_id == "user-1"
        assert claims.expires_at - claims.issued_at == timedelta(days=7)

    def test_each_session_has_its_own_id(self, sessions):
        first = sessions.validate(sessions.issue("user-1"))
        second = sessions.validate(sessions.issue("user-1"))
        assert first.session_id != second.session_id

    def test_expired_session(self, sessions):
        token = sessions.issue("user-1", now=datetime.now(timezone.utc) - timedelta(days=8))
        with pytest.raises(SessionError, match="expired"):
            sessions.validate(token)

    def test_wrong_secret(self, sessions):
        other = SessionService(secret="another-secret", ttl=timedelta(days=7))
        with pytest.raises(SessionError, match="Invalid"):
            sessions.validate(other.issue("user-1"))

    def test_missing_claims(self, sessions):
        token = jwt.encode({"sub": "user-1"}, "test-session-secret", algorithm=SESSION_ALGORITHM)
        with pytest.raises(SessionError):
            sessions.validate(token)

    def test_empty_token(self, sessions):
        with pytest.raises(SessionError, match="Missing"):
            sessions.validate("")


class TestRevocation:

    def test_logout_revokes_only_that_session(self, sessions):
        kept = sessions.issue("user-1")
        dropped = sessions.issue("user-1")
        claims = sessions.validate(dropped)

        sessions.revoke_session(claims.session_id, RevocationReason.LOGOUT, user_id="user-1")

        with pytest.raises(SessionError, match="revoked"):
            sessions.validate(dropped)
        assert sessions.validate(kept).user_id == "user-1"

    def test_revoke_all_user_sessions(self, sessions):
        tokens = [sessions.issue("user-1") for _ in range(3)]
        other_user = sessions.issue("user-2")

        assert sessions.revoke_all_user_sessions("user-1") == 3
        for token in tokens:
            with pytest.raises(SessionError):
                sessions.validate(token)
        assert sessions.validate(other_user).user_id == "user-2"

    def test_new_session_after_revoke_all_is_valid(self, sessions):
        sessions.issue("user-1")
        sessions.revoke_all_user_sessions("user-1")
        assert sessions.validate(sessions.issue("user-1")).user_id == "user-1"

    def test_older_sessions_from_elsewhere_cut_off(self, sessions):
        # Issued by another process, so not tracked here
        other_process = SessionService(secret="test-session-secret", ttl=timedelta(days=7))
        old = other_process.issue("user-1", now=datetime.now(timezone.utc) - timedelta(hours=1))

        sessions.revoke_all_user_sessions("user-1")
        with pytest.raises(SessionError):
            sessions.validate(old)


class TestPasswords:

    def test_hash_and_verify(self):
        hashed = hash_password("s3cret-pass")
        assert hashed != "s3cret-pass"
        assert verify_password("s3cret-pass", hashed)
        assert not verify_password("wrong", hashed)
        assert not needs_rehash(hashed)

    def test_verify_garbage_hash(self):
        assert verify_password("anything", "not-a-hash") is False
        assert verify_password("", hash_password("x")) is False
