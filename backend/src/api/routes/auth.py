"""
Account routes: registration, login/logout, current user, email
verification and password recovery.

Login of an unverified account is answered by the entitlement exception
handler (401 email_unverified), distinct from bad credentials.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from src.api.dependencies.services import get_account_service, get_policy
from src.api.schemas.accounts import (
    ForgotPasswordRequest,
    LoginRequest,
    MessageResponse,
    RegisterRequest,
    ResetPasswordRequest,
    SessionResponse,
)
from src.auth.dependencies import get_optional_user, require_session_claims
from src.auth.session_service import SessionClaims
from src.config.access_policy import AccessPolicy
from src.models.user import User
from src.services.account_service import (
    AccountService,
    AccountServiceError,
    DuplicateAccountError,
    InvalidCredentialsError,
    NotificationDispatchError,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["auth"])


def _account_error(exc: AccountServiceError) -> HTTPException:
    if isinstance(exc, InvalidCredentialsError):
        status_code = status.HTTP_401_UNAUTHORIZED
    elif isinstance(exc, NotificationDispatchError):
        status_code = status.HTTP_502_BAD_GATEWAY
    else:
        status_code = status.HTTP_400_BAD_REQUEST

    detail = {"error": exc.code, "message": exc.message}
    if exc.field:
        detail["field"] = exc.field
    return HTTPException(status_code=status_code, detail=detail)


def _session_response(user: User, token: str, policy: AccessPolicy) -> SessionResponse:
    return SessionResponse(
        access_token=token,
        expires_in=int(policy.session_ttl.total_seconds()),
        user=user.to_public_dict(),
    )


@router.post("/register", response_model=SessionResponse, status_code=status.HTTP_201_CREATED)
async def register(
    body: RegisterRequest,
    accounts: AccountService = Depends(get_account_service),
    policy: AccessPolicy = Depends(get_policy),
):
    """
    Create an unverified account and send the verification email.

    The returned session only lets the user request another verification
    email; logging in requires a verified address.
    """
    try:
        user, token = await accounts.register(
            username=body.username,
            email=body.email,
            password=body.password,
            full_name=body.full_name,
            about_me=body.about_me,
            profile_image=body.profile_image,
        )
    except DuplicateAccountError as e:
        logger.info("Registration rejected", extra={"field": e.field})
        raise _account_error(e)

    return _session_response(user, token, policy)


@router.post("/login", response_model=SessionResponse)
def login(
    body: LoginRequest,
    accounts: AccountService = Depends(get_account_service),
    policy: AccessPolicy = Depends(get_policy),
):
    try:
        user, token = accounts.login(body.username, body.password)
    except InvalidCredentialsError as e:
        raise _account_error(e)
    return _session_response(user, token, policy)


@router.post("/logout", response_model=MessageResponse)
async def logout(
    claims: SessionClaims = Depends(require_session_claims),
    accounts: AccountService = Depends(get_account_service),
):
    accounts.logout(claims)
    return MessageResponse(message="Logged out")


@router.get("/user")
async def current_user(
    request: Request,
    user: Optional[User] = Depends(get_optional_user),
    accounts: AccountService = Depends(get_account_service),
):
    """The signed-in user's public projection."""
    return accounts.current_user(user, endpoint=request.url.path).to_public_dict()


@router.get("/verify-email")
async def verify_email(
    token: Optional[str] = Query(None, max_length=64),
    accounts: AccountService = Depends(get_account_service),
):
    try:
        user = accounts.verify_email(token)
    except AccountServiceError as e:
        raise _account_error(e)
    return {"message": "Email verified successfully", "user": user.to_public_dict()}


@router.post("/resend-verification", response_model=MessageResponse)
async def resend_verification(
    request: Request,
    user: Optional[User] = Depends(get_optional_user),
    accounts: AccountService = Depends(get_account_service),
):
    try:
        await accounts.resend_verification(user, endpoint=request.url.path)
    except AccountServiceError as e:
        if isinstance(e, NotificationDispatchError):
            logger.error("Verification resend failed", extra={"user_id": user.id})
        raise _account_error(e)
    return MessageResponse(message="Verification email sent")


@router.post("/forgot-password", response_model=MessageResponse)
async def forgot_password(
    body: ForgotPasswordRequest,
    accounts: AccountService = Depends(get_account_service),
):
    """Always 200 with the same body, whether or not the email is registered."""
    return await accounts.forgot_password(body.email)


@router.post("/reset-password", response_model=MessageResponse)
def reset_password(
    body: ResetPasswordRequest,
    accounts: AccountService = Depends(get_account_service),
):
    try:
        accounts.reset_password(body.token, body.password)
    except AccountServiceError as e:
        raise _account_error(e)
    return MessageResponse(message="Password has been reset successfully")
