"""
FastAPI dependencies resolving the caller's session identity.

Requests authenticate with "Authorization: Bearer <session token>". A
missing header means an anonymous caller (routes decide, through the
entitlement engine, whether that is allowed). A present but invalid,
expired or revoked token is rejected with 401 rather than silently
downgraded to anonymous.
"""

import logging
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from src.auth.session_service import (
    SessionClaims,
    SessionError,
    SessionService,
    get_session_service,
)
from src.database.session import get_db_session
from src.models.user import User
from src.repositories.credential_store import CredentialStore, SQLAlchemyCredentialStore

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def _invalid_session(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"error": "invalid_session", "message": message, "next_action": "login"},
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_store(db: Session = Depends(get_db_session)) -> CredentialStore:
    """Credential store bound to the request's database session."""
    return SQLAlchemyCredentialStore(db)


def get_sessions(request: Request) -> SessionService:
    """Session service configured on the app, or the process-wide default."""
    sessions = getattr(request.app.state, "session_service", None)
    return sessions or get_session_service()


def get_session_claims(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    sessions: SessionService = Depends(get_sessions),
) -> Optional[SessionClaims]:
    """Validated claims, or None for a request without credentials."""
    if credentials is None:
        return None
    try:
        return sessions.validate(credentials.credentials)
    except SessionError as e:
        logger.info("Session rejected", extra={"reason": str(e)})
        raise _invalid_session(str(e))


def require_session_claims(
    claims: Optional[SessionClaims] = Depends(get_session_claims),
) -> SessionClaims:
    if claims is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={
                "error": "auth_required",
                "message": "Authentication required",
                "next_action": "login",
            },
            headers={"WWW-Authenticate": "Bearer"},
        )
    return claims


def get_optional_user(
    claims: Optional[SessionClaims] = Depends(get_session_claims),
    store: CredentialStore = Depends(get_store),
) -> Optional[User]:
    """
    The signed-in user, or None for anonymous callers.

    Entitlement checks run against this fresh row, never against data
    cached in the token.
    """
    if claims is None:
        return None
    user = store.get(User, claims.user_id)
    if user is None:
        raise _invalid_session("Session user no longer exists")
    return user
