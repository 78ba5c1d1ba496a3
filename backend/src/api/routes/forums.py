"""
Forum routes: tiers, posts and replies.

Every read and write is decided by the entitlement engine inside
CommunityService; denials surface through the app's entitlement handler.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status

from src.api.dependencies.services import get_community_service
from src.api.schemas.community import CreatePostRequest, CreateReplyRequest
from src.auth.dependencies import get_optional_user
from src.models.user import User
from src.services.community_service import CommunityService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["forums"])


@router.get("/forums")
async def list_forums(
    request: Request,
    premium: bool = Query(False, description="Select the premium tier"),
    user: Optional[User] = Depends(get_optional_user),
    community: CommunityService = Depends(get_community_service),
):
    return community.list_forums(user, premium=premium, endpoint=request.url.path)


@router.get("/forums/{forum_id}")
async def get_forum(
    forum_id: str,
    request: Request,
    user: Optional[User] = Depends(get_optional_user),
    community: CommunityService = Depends(get_community_service),
):
    return community.get_forum(user, forum_id, endpoint=request.url.path)


@router.get("/forums/{forum_id}/posts")
async def list_posts(
    forum_id: str,
    request: Request,
    user: Optional[User] = Depends(get_optional_user),
    community: CommunityService = Depends(get_community_service),
):
    return community.list_posts(user, forum_id, endpoint=request.url.path)


@router.post("/forums/{forum_id}/posts", status_code=status.HTTP_201_CREATED)
async def create_post(
    forum_id: str,
    body: CreatePostRequest,
    request: Request,
    user: Optional[User] = Depends(get_optional_user),
    community: CommunityService = Depends(get_community_service),
):
    return community.create_post(
        user, forum_id, body.title, body.content, endpoint=request.url.path
    )


@router.get("/posts/{post_id}/replies")
async def list_replies(
    post_id: str,
    request: Request,
    user: Optional[User] = Depends(get_optional_user),
    community: CommunityService = Depends(get_community_service),
):
    return community.list_replies(user, post_id, endpoint=request.url.path)


@router.post("/posts/{post_id}/replies", status_code=status.HTTP_201_CREATED)
async def create_reply(
    post_id: str,
    body: CreateReplyRequest,
    request: Request,
    user: Optional[User] = Depends(get_optional_user),
    community: CommunityService = Depends(get_community_service),
):
    return community.create_reply(user, post_id, body.content, endpoint=request.url.path)
