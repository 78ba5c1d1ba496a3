"""
Authentication module.

This module provides:
- Password hashing (passlib)
- Signed session tokens with a revocation list for logout

Authorization (tier, membership, admin) lives in src.entitlements.
"""

from src.auth.passwords import hash_password, verify_password
from src.auth.session_service import (
    RevocationReason,
    SessionClaims,
    SessionError,
    SessionService,
    get_session_service,
)

__all__ = [
    "hash_password",
    "verify_password",
    "RevocationReason",
    "SessionClaims",
    "SessionError",
    "SessionService",
    "get_session_service",
]
