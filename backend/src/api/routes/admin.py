"""
Admin routes: forum and group management, user administration.

All routes require an authenticated admin; the check runs inside the
services so it is logged like every other entitlement denial.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status

from src.api.dependencies.services import get_community_service, get_subscription_service
from src.api.schemas.community import (
    AdminUserUpdateRequest,
    ForumRequest,
    ForumUpdateRequest,
    GroupRequest,
    GroupUpdateRequest,
)
from src.auth.dependencies import get_optional_user
from src.models.user import User
from src.services.community_service import (
    CommunityService,
    CommunityServiceError,
    RecordNotFoundError,
)
from src.services.subscription_service import SubscriptionService, UserNotFoundError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"])

PREMIUM_FIELDS = {"is_premium", "premium_until"}


def _community_error(exc: CommunityServiceError) -> HTTPException:
    status_code = (
        status.HTTP_404_NOT_FOUND
        if isinstance(exc, RecordNotFoundError)
        else status.HTTP_400_BAD_REQUEST
    )
    return HTTPException(status_code=status_code, detail={"error": exc.code, "message": exc.message})


# =============================================================================
# Forums
# =============================================================================


@router.post("/forums", status_code=status.HTTP_201_CREATED)
async def create_forum(
    body: ForumRequest,
    request: Request,
    user: Optional[User] = Depends(get_optional_user),
    community: CommunityService = Depends(get_community_service),
):
    return community.create_forum(
        user, body.title, body.description, is_premium=body.is_premium,
        endpoint=request.url.path,
    )


@router.put("/forums/{forum_id}")
async def update_forum(
    forum_id: str,
    body: ForumUpdateRequest,
    request: Request,
    user: Optional[User] = Depends(get_optional_user),
    community: CommunityService = Depends(get_community_service),
):
    try:
        return community.update_forum(
            user, forum_id, body.model_dump(exclude_unset=True), endpoint=request.url.path
        )
    except CommunityServiceError as e:
        raise _community_error(e)


@router.delete("/forums/{forum_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_forum(
    forum_id: str,
    request: Request,
    user: Optional[User] = Depends(get_optional_user),
    community: CommunityService = Depends(get_community_service),
):
    try:
        community.delete_forum(user, forum_id, endpoint=request.url.path)
    except CommunityServiceError as e:
        raise _community_error(e)


# =============================================================================
# Groups
# =============================================================================


@router.post("/groups", status_code=status.HTTP_201_CREATED)
async def create_group(
    body: GroupRequest,
    request: Request,
    user: Optional[User] = Depends(get_optional_user),
    community: CommunityService = Depends(get_community_service),
):
    return community.create_group(
        user, body.name, body.description, is_premium=body.is_premium,
        endpoint=request.url.path,
    )


@router.put("/groups/{group_id}")
async def update_group(
    group_id: str,
    body: GroupUpdateRequest,
    request: Request,
    user: Optional[User] = Depends(get_optional_user),
    community: CommunityService = Depends(get_community_service),
):
    try:
        return community.update_group(
            user, group_id, body.model_dump(exclude_unset=True), endpoint=request.url.path
        )
    except CommunityServiceError as e:
        raise _community_error(e)


@router.delete("/groups/{group_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_group(
    group_id: str,
    request: Request,
    user: Optional[User] = Depends(get_optional_user),
    community: CommunityService = Depends(get_community_service),
):
    try:
        community.delete_group(user, group_id, endpoint=request.url.path)
    except CommunityServiceError as e:
        raise _community_error(e)


# =============================================================================
# Users
# =============================================================================


@router.get("/users")
async def list_users(
    request: Request,
    user: Optional[User] = Depends(get_optional_user),
    community: CommunityService = Depends(get_community_service),
):
    return community.list_users(user, endpoint=request.url.path)


@router.put("/users/{user_id}")
async def update_user(
    user_id: str,
    body: AdminUserUpdateRequest,
    request: Request,
    user: Optional[User] = Depends(get_optional_user),
    community: CommunityService = Depends(get_community_service),
    subscriptions: SubscriptionService = Depends(get_subscription_service),
):
    """
    Edit a user. Premium fields go through the subscription service's
    override; the password hash and billing references are never touched.
    """
    changes = body.model_dump(exclude_unset=True)
    premium_changes = {k: changes.pop(k) for k in PREMIUM_FIELDS if k in changes}

    try:
        result = None
        if changes or not premium_changes:
            result = community.update_user(user, user_id, changes, endpoint=request.url.path)
        if premium_changes:
            target = subscriptions.apply_admin_override(
                user,
                user_id,
                is_premium=premium_changes.get("is_premium") is not False,
                premium_until=premium_changes.get("premium_until"),
                endpoint=request.url.path,
            )
            result = target.to_public_dict()
    except RecordNotFoundError as e:
        raise _community_error(e)
    except UserNotFoundError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error": e.code, "message": e.message},
        )
    except CommunityServiceError as e:
        raise _community_error(e)
    return result
