"""
Blog API routes.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

import markdown
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_current_author_user, get_optional_user
from api.schemas.blog import (
    BlogPostCreateRequest,
    BlogPostListData,
    BlogPostResponse,
    BlogPostUpdateRequest,
)
from api.schemas.common import ApiResponse, offset_pagination
from api.utils import is_uuid, like_pattern, slugify, unique_slug
from infrastructure.database.connection import get_db
from infrastructure.database.models import BlogPost, BlogStatus, User

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/blog", tags=["Blog"])


def _can_edit(post: BlogPost, user: Optional[User]) -> bool:
    return user is not None and (user.is_admin or (user.is_author and post.author_id == user.id))


async def _get_post(db: AsyncSession, post_id: str) -> BlogPost:
    post = await db.get(BlogPost, post_id) if is_uuid(post_id) else None
    if not post:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Blog post not found",
        )
    return post


@router.get("", response_model=ApiResponse[BlogPostListData])
async def list_posts(
    post_status: Optional[BlogStatus] = Query(None, alias="status"),
    category: Optional[str] = Query(None, max_length=100),
    search: Optional[str] = Query(None, max_length=200),
    limit: int = Query(10, ge=1, le=100),
    offset: int = Query(0, ge=0),
    current_user: Optional[User] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db),
):
    """
    List blog posts, newest first.

    Anonymous visitors and readers only ever see published posts; authors
    and admins may filter by any status.
    """
    query = select(BlogPost)
    if current_user is None or not current_user.is_author:
        query = query.where(BlogPost.status == BlogStatus.PUBLISHED.value)
    elif post_status:
        query = query.where(BlogPost.status == post_status.value)

    if category:
        query = query.where(BlogPost.category == category)
    if search:
        pattern = like_pattern(search)
        query = query.where(or_(
            BlogPost.title.ilike(pattern, escape="\\"),
            BlogPost.excerpt.ilike(pattern, escape="\\"),
            BlogPost.content.ilike(pattern, escape="\\"),
        ))

    total = (await db.execute(select(func.count()).select_from(query.subquery()))).scalar() or 0
    posts = (
        await db.execute(
            query.order_by(BlogPost.published_at.desc(), BlogPost.created_at.desc())
            .offset(offset)
            .limit(limit)
        )
    ).scalars().all()

    return ApiResponse(data=BlogPostListData(
        posts=[BlogPostResponse.model_validate(p) for p in posts],
        pagination=offset_pagination(total, limit, offset),
    ))


@router.post(
    "",
    response_model=ApiResponse[BlogPostResponse],
    status_code=status.HTTP_201_CREATED,
)
async def create_post(
    body: BlogPostCreateRequest,
    current_user: User = Depends(get_current_author_user),
    db: AsyncSession = Depends(get_db),
):
    base_slug = slugify(body.slug) if body.slug else slugify(body.title)
    post = BlogPost(
        **body.model_dump(exclude={"slug", "status"}),
        slug=await unique_slug(db, BlogPost, base_slug),
        status=body.status.value,
        content_html=markdown.markdown(body.content),
        author_id=current_user.id,
    )
    if body.status == BlogStatus.PUBLISHED:
        post.published_at = datetime.now(timezone.utc)

    db.add(post)
    await db.commit()
    await db.refresh(post)

    logger.info("Blog post %s created by %s", post.slug, current_user.id)
    return ApiResponse(data=BlogPostResponse.model_validate(post), message="Blog post created")


@router.get("/slug/{slug}", response_model=ApiResponse[BlogPostResponse])
async def get_post_by_slug(
    slug: str,
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        select(BlogPost).where(
            BlogPost.slug == slug,
            BlogPost.status == BlogStatus.PUBLISHED.value,
        )
    )
    post = result.scalar_one_or_none()
    if not post:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Blog post not found",
        )
    return ApiResponse(data=BlogPostResponse.model_validate(post))


@router.get("/{post_id}", response_model=ApiResponse[BlogPostResponse])
async def get_post(
    post_id: str,
    current_user: Optional[User] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db),
):
    post = await _get_post(db, post_id)
    if post.status != BlogStatus.PUBLISHED.value and not _can_edit(post, current_user):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Blog post not found",
        )
    return ApiResponse(data=BlogPostResponse.model_validate(post))


@router.put("/{post_id}", response_model=ApiResponse[BlogPostResponse])
async def update_post(
    post_id: str,
    body: BlogPostUpdateRequest,
    current_user: User = Depends(get_current_author_user),
    db: AsyncSession = Depends(get_db),
):
    post = await _get_post(db, post_id)
    if not _can_edit(post, current_user):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You can only edit your own posts",
        )

    updates = body.model_dump(exclude_unset=True)

    new_slug = updates.pop("slug", None)
    if new_slug and slugify(new_slug) != post.slug:
        post.slug = await unique_slug(db, BlogPost, slugify(new_slug), exclude_id=post.id)

    new_status = updates.pop("status", None)
    if new_status is not None:
        if new_status == BlogStatus.PUBLISHED and post.published_at is None:
            post.published_at = datetime.now(timezone.utc)
        post.status = new_status.value

    for field, value in updates.items():
        if value is None and field in ("title", "content", "excerpt"):
            continue
        setattr(post, field, value)
    if "content" in updates and updates["content"] is not None:
        post.content_html = markdown.markdown(post.content)

    await db.commit()
    await db.refresh(post)
    return ApiResponse(data=BlogPostResponse.model_validate(post), message="Blog post updated")


@router.delete("/{post_id}")
async def delete_post(
    post_id: str,
    current_user: User = Depends(get_current_author_user),
    db: AsyncSession = Depends(get_db),
) -> dict:
    post = await _get_post(db, post_id)
    if not _can_edit(post, current_user):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You can only delete your own posts",
        )

    await db.delete(post)
    await db.commit()
    return {"success": True, "message": "Blog post deleted"}
