"""
Call routes across groups: the caller's upcoming calls and joining a call.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Request

from src.api.dependencies.services import get_community_service
from src.auth.dependencies import get_optional_user
from src.models.user import User
from src.services.community_service import CommunityService

router = APIRouter(prefix="/api", tags=["zoom-calls"])


@router.get("/user/zoom-calls")
async def upcoming_calls(
    request: Request,
    user: Optional[User] = Depends(get_optional_user),
    community: CommunityService = Depends(get_community_service),
):
    """Future calls of the caller's groups, soonest first, without join links."""
    return community.upcoming_calls(user, endpoint=request.url.path)


@router.post("/zoom-calls/{call_id}/join")
async def join_call(
    call_id: str,
    request: Request,
    user: Optional[User] = Depends(get_optional_user),
    community: CommunityService = Depends(get_community_service),
):
    return community.join_call(user, call_id, endpoint=request.url.path)
