"""
Group routes: tiers, membership and per-group calls.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from src.api.dependencies.services import get_community_service
from src.api.schemas.community import ScheduleCallRequest
from src.auth.dependencies import get_optional_user
from src.models.user import User
from src.services.community_service import (
    AlreadyMemberError,
    CommunityService,
    InvalidScheduleError,
    NotMemberError,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["groups"])


@router.get("/groups")
async def list_groups(
    request: Request,
    premium: bool = Query(False, description="Select the premium tier"),
    user: Optional[User] = Depends(get_optional_user),
    community: CommunityService = Depends(get_community_service),
):
    return community.list_groups(user, premium=premium, endpoint=request.url.path)


@router.get("/groups/{group_id}")
async def get_group(
    group_id: str,
    request: Request,
    user: Optional[User] = Depends(get_optional_user),
    community: CommunityService = Depends(get_community_service),
):
    return community.get_group(user, group_id, endpoint=request.url.path)


@router.get("/user/groups")
async def my_groups(
    request: Request,
    user: Optional[User] = Depends(get_optional_user),
    community: CommunityService = Depends(get_community_service),
):
    return community.my_groups(user, endpoint=request.url.path)


@router.get("/user/suggested-groups")
async def suggested_groups(
    request: Request,
    limit: Optional[int] = Query(None, ge=1, le=50),
    user: Optional[User] = Depends(get_optional_user),
    community: CommunityService = Depends(get_community_service),
):
    return community.suggested_groups(user, limit=limit, endpoint=request.url.path)


@router.post("/groups/{group_id}/join")
async def join_group(
    group_id: str,
    request: Request,
    user: Optional[User] = Depends(get_optional_user),
    community: CommunityService = Depends(get_community_service),
):
    try:
        return community.join_group(user, group_id, endpoint=request.url.path)
    except AlreadyMemberError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": e.code, "message": e.message},
        )


@router.post("/groups/{group_id}/leave")
async def leave_group(
    group_id: str,
    request: Request,
    user: Optional[User] = Depends(get_optional_user),
    community: CommunityService = Depends(get_community_service),
):
    try:
        return community.leave_group(user, group_id, endpoint=request.url.path)
    except NotMemberError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": e.code, "message": e.message},
        )


@router.get("/groups/{group_id}/zoom-calls")
async def list_group_calls(
    group_id: str,
    request: Request,
    user: Optional[User] = Depends(get_optional_user),
    community: CommunityService = Depends(get_community_service),
):
    return community.list_group_calls(user, group_id, endpoint=request.url.path)


@router.post("/groups/{group_id}/zoom-calls", status_code=status.HTTP_201_CREATED)
async def schedule_call(
    group_id: str,
    body: ScheduleCallRequest,
    request: Request,
    user: Optional[User] = Depends(get_optional_user),
    community: CommunityService = Depends(get_community_service),
):
    try:
        return community.schedule_call(
            user,
            group_id,
            title=body.title,
            start_time=body.start_time,
            end_time=body.end_time,
            zoom_link=body.zoom_link,
            description=body.description,
            endpoint=request.url.path,
        )
    except InvalidScheduleError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": e.code, "message": e.message},
        )
