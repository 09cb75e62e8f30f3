"""
Book review API routes.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_current_user
from api.middleware.rate_limit import get_rate_limit, limiter
from api.routes.books import BOOKS_CACHE_PREFIX, get_book_or_404
from api.schemas.catalog import (
    ReviewCreateRequest,
    ReviewListData,
    ReviewResponse,
    ReviewStatistics,
    ReviewUpdateRequest,
)
from api.schemas.common import ApiResponse, offset_pagination
from infrastructure.database.connection import get_db
from infrastructure.database.models import (
    Order,
    PaymentStatus,
    Review,
    ReviewStatus,
    User,
)
from services.cache import CacheService, get_cache

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/reviews", tags=["Reviews"])


async def has_paid_order(db: AsyncSession, user_id: str, book_id: str) -> bool:
    result = await db.execute(
        select(Order.id).where(
            Order.user_id == user_id,
            Order.book_id == book_id,
            Order.payment_status == PaymentStatus.COMPLETED.value,
        ).limit(1)
    )
    return result.first() is not None


async def _review_statistics(db: AsyncSession, book_id: str) -> ReviewStatistics:
    result = await db.execute(
        select(Review.rating, func.count(Review.id))
        .where(Review.book_id == book_id, Review.status == ReviewStatus.PUBLISHED.value)
        .group_by(Review.rating)
    )
    distribution = {rating: 0 for rating in (5, 4, 3, 2, 1)}
    for rating, count in result.all():
        distribution[rating] = count

    total = sum(distribution.values())
    average = sum(r * c for r, c in distribution.items()) / total if total else 0.0
    return ReviewStatistics(
        total_reviews=total,
        average_rating=round(average, 1),
        rating_distribution=distribution,
    )


async def _get_review(db: AsyncSession, review_id: str) -> Review:
    review = await db.get(Review, review_id)
    if not review:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Review not found",
        )
    return review


def _to_response(review: Review, user_name: Optional[str]) -> ReviewResponse:
    response = ReviewResponse.model_validate(review)
    response.user_name = user_name
    return response


@router.get("", response_model=ApiResponse[ReviewListData])
async def list_reviews(
    book_id: Optional[str] = None,
    user_id: Optional[str] = None,
    limit: int = Query(10, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
):
    """Published reviews, newest first, with statistics when filtered by book."""
    query = select(Review, User.name).join(User, User.id == Review.user_id).where(
        Review.status == ReviewStatus.PUBLISHED.value
    )
    if book_id:
        query = query.where(Review.book_id == book_id)
    if user_id:
        query = query.where(Review.user_id == user_id)

    total = (await db.execute(select(func.count()).select_from(query.subquery()))).scalar() or 0
    rows = (
        await db.execute(
            query.order_by(Review.created_at.desc()).offset(offset).limit(limit)
        )
    ).all()

    data = ReviewListData(
        reviews=[_to_response(review, name) for review, name in rows],
        pagination=offset_pagination(total, limit, offset),
        statistics=await _review_statistics(db, book_id) if book_id else None,
    )
    return ApiResponse(data=data)


@router.post(
    "",
    response_model=ApiResponse[ReviewResponse],
    status_code=status.HTTP_201_CREATED,
)
@limiter.limit(get_rate_limit("review"))
async def create_review(
    request: Request,
    body: ReviewCreateRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    cache: CacheService = Depends(get_cache),
):
    """Review a book. One review per user per book."""
    book = await get_book_or_404(db, body.book_id)

    existing = await db.execute(
        select(Review.id).where(Review.user_id == current_user.id, Review.book_id == book.id)
    )
    if existing.first() is not None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="You have already reviewed this book",
        )

    review = Review(
        user_id=current_user.id,
        book_id=book.id,
        rating=body.rating,
        title=body.title,
        comment=body.comment,
        is_verified_purchase=await has_paid_order(db, current_user.id, book.id),
    )
    db.add(review)
    await db.commit()
    await db.refresh(review)
    # Book listings embed rating aggregates
    await cache.delete_prefix(BOOKS_CACHE_PREFIX)

    return ApiResponse(
        data=_to_response(review, current_user.name),
        message="Review submitted successfully",
    )


@router.put("/{review_id}", response_model=ApiResponse[ReviewResponse])
async def update_review(
    review_id: str,
    body: ReviewUpdateRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    cache: CacheService = Depends(get_cache),
):
    review = await _get_review(db, review_id)
    if review.user_id != current_user.id:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Review not found",
        )

    for field, value in body.model_dump(exclude_unset=True).items():
        if field == "rating" and value is None:
            continue
        setattr(review, field, value)

    await db.commit()
    await db.refresh(review)
    await cache.delete_prefix(BOOKS_CACHE_PREFIX)
    return ApiResponse(data=_to_response(review, current_user.name), message="Review updated")


@router.delete("/{review_id}")
async def delete_review(
    review_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    cache: CacheService = Depends(get_cache),
) -> dict:
    review = await _get_review(db, review_id)
    if review.user_id != current_user.id and not current_user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Review not found",
        )

    await db.delete(review)
    await db.commit()
    await cache.delete_prefix(BOOKS_CACHE_PREFIX)
    return {"success": True, "message": "Review deleted"}
