"""
Book catalog API routes.
"""

import json
import logging
import time
from datetime import datetime, timezone
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_current_admin_user, get_optional_user
from api.middleware.rate_limit import get_rate_limit, limiter
from api.schemas.catalog import (
    BookCreateRequest,
    BookDownloadResponse,
    BookListData,
    BookListResponse,
    BookResponse,
    BookUpdateRequest,
)
from api.schemas.common import ApiResponse
from api.utils import is_uuid, like_pattern, pagination, slugify, unique_slug
from infrastructure.database.connection import get_db
from infrastructure.database.models import (
    Book,
    BookStatus,
    Order,
    PaymentStatus,
    Review,
    ReviewStatus,
    User,
)
from services.cache import CacheService, get_cache
from services.monitoring import PerformanceMonitor, get_performance_monitor

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/books", tags=["Books"])

BOOKS_CACHE_PREFIX = "books:"

SORT_COLUMNS = {
    "title": Book.title,
    "author": Book.author,
    "price": Book.price,
    "category": Book.category,
    "status": Book.status,
    "created_at": Book.created_at,
    "updated_at": Book.updated_at,
}
SortField = Literal[
    "title", "author", "price", "category", "status", "created_at", "updated_at", "average_rating"
]


def generate_slug(title: str) -> str:
    return slugify(title)


async def book_ratings(db: AsyncSession, book_ids: list[str]) -> dict[str, tuple[float, int]]:
    """
    Average rating and review count per book, from published reviews.

    Books without reviews are absent from the result.
    """
    if not book_ids:
        return {}
    result = await db.execute(
        select(Review.book_id, func.avg(Review.rating), func.count(Review.id))
        .where(
            Review.book_id.in_(book_ids),
            Review.status == ReviewStatus.PUBLISHED.value,
        )
        .group_by(Review.book_id)
    )
    return {
        book_id: (round(float(avg or 0), 1), count)
        for book_id, avg, count in result.all()
    }


def _to_response(book: Book, ratings: dict[str, tuple[float, int]]) -> BookResponse:
    response = BookResponse.model_validate(book)
    response.average_rating, response.review_count = ratings.get(book.id, (0.0, 0))
    return response


async def get_book_or_404(db: AsyncSession, book_id: str) -> Book:
    book = await db.get(Book, book_id) if is_uuid(book_id) else None
    if not book:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Book not found",
        )
    return book


async def _ensure_title_free(
    db: AsyncSession, title: str, exclude_id: Optional[str] = None
) -> None:
    query = select(Book.id).where(
        func.lower(Book.title) == title.strip().lower(),
        Book.status != BookStatus.ARCHIVED.value,
    )
    if exclude_id:
        query = query.where(Book.id != exclude_id)
    if (await db.execute(query)).first() is not None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="A book with this title already exists",
        )


@router.get("", response_model=BookListResponse)
@limiter.limit(get_rate_limit("search"))
async def list_books(
    request: Request,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    category: Optional[str] = Query(None, max_length=100),
    search: Optional[str] = Query(None, max_length=200),
    book_status: str = Query("published", alias="status"),
    sort_by: SortField = "created_at",
    sort_order: Literal["asc", "desc"] = "desc",
    db: AsyncSession = Depends(get_db),
    cache: CacheService = Depends(get_cache),
    monitor: PerformanceMonitor = Depends(get_performance_monitor),
):
    """
    List books with filtering, sorting and page-based pagination.

    ``status=all`` disables the status filter. Results are cached per
    parameter set until the next catalog write.
    """
    if book_status != "all" and book_status not in {s.value for s in BookStatus}:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid status. Must be one of: all, {', '.join(s.value for s in BookStatus)}",
        )

    params = {
        "page": page,
        "limit": limit,
        "category": category,
        "search": search,
        "status": book_status,
        "sort_by": sort_by,
        "sort_order": sort_order,
    }
    cache_key = BOOKS_CACHE_PREFIX + "list:" + json.dumps(params, sort_keys=True)
    started = time.perf_counter()
    cached = await cache.get(cache_key)
    monitor.record_db_query(
        cache_key, (time.perf_counter() - started) * 1000, cached=cached is not None
    )
    if cached is not None:
        return BookListResponse(data=BookListData.model_validate(cached), cached=True)

    query = select(Book)
    if book_status != "all":
        query = query.where(Book.status == book_status)
    if category:
        query = query.where(Book.category == category)
    if search:
        pattern = like_pattern(search)
        query = query.where(or_(
            Book.title.ilike(pattern, escape="\\"),
            Book.description.ilike(pattern, escape="\\"),
            Book.author.ilike(pattern, escape="\\"),
        ))

    column = SORT_COLUMNS.get(sort_by, Book.created_at)
    page_query = query.order_by(column.asc() if sort_order == "asc" else column.desc(), Book.id)
    page_query = page_query.offset((page - 1) * limit).limit(limit)

    with monitor.measure("books.list.query", {"status": book_status}):
        total = (await db.execute(select(func.count()).select_from(query.subquery()))).scalar() or 0
        books = (await db.execute(page_query)).scalars().all()
    with monitor.measure("books.list.ratings"):
        ratings = await book_ratings(db, [b.id for b in books])
    items = [_to_response(b, ratings) for b in books]

    if sort_by == "average_rating":
        items.sort(key=lambda b: b.average_rating, reverse=sort_order == "desc")

    data = BookListData(books=items, pagination=pagination(page, limit, total))
    await cache.set(cache_key, data.model_dump(mode="json"))
    return BookListResponse(data=data, cached=False)


@router.post(
    "",
    response_model=ApiResponse[BookResponse],
    status_code=status.HTTP_201_CREATED,
)
async def create_book(
    body: BookCreateRequest,
    admin_user: User = Depends(get_current_admin_user),
    db: AsyncSession = Depends(get_db),
    cache: CacheService = Depends(get_cache),
):
    """Add a book to the catalog."""
    await _ensure_title_free(db, body.title)

    base_slug = slugify(body.slug) if body.slug else generate_slug(body.title)
    data = body.model_dump(exclude={"slug", "status", "currency"})
    book = Book(
        **data,
        slug=await unique_slug(db, Book, base_slug),
        status=body.status.value,
        currency=body.currency.upper(),
    )
    if body.status == BookStatus.PUBLISHED:
        book.published_at = datetime.now(timezone.utc)

    db.add(book)
    await db.commit()
    await db.refresh(book)
    await cache.delete_prefix(BOOKS_CACHE_PREFIX)

    logger.info("Book %s (%s) created by %s", book.id, book.slug, admin_user.id)
    return ApiResponse(data=_to_response(book, {}), message="Book created successfully")


@router.get("/{book_ref}", response_model=ApiResponse[BookResponse])
async def get_book(
    book_ref: str,
    db: AsyncSession = Depends(get_db),
):
    """Get a book by id or slug."""
    if is_uuid(book_ref):
        condition = or_(Book.id == book_ref, Book.slug == book_ref)
    else:
        condition = Book.slug == book_ref
    book = (await db.execute(select(Book).where(condition))).scalar_one_or_none()
    if not book:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Book not found",
        )

    ratings = await book_ratings(db, [book.id])
    return ApiResponse(data=_to_response(book, ratings))


@router.get("/{book_id}/download", response_model=ApiResponse[BookDownloadResponse])
async def download_book(
    book_id: str,
    current_user: Optional[User] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Download link for a book's digital file.

    Free books are open to everyone. Paid books need a signed-in buyer with
    a completed payment, or an admin.
    """
    book = await get_book_or_404(db, book_id)
    is_admin = current_user is not None and current_user.is_admin
    if not book.is_published and not is_admin:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Book not found",
        )
    if not book.book_file:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Book file not available",
        )

    download = BookDownloadResponse(
        book_id=book.id,
        book_title=book.title,
        download_url=book.book_file,
        is_free=book.is_free,
    )
    if book.is_free:
        return ApiResponse(data=download, message="Free book download available")

    if current_user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required for paid books",
        )
    if is_admin:
        return ApiResponse(data=download, message="Download authorized")

    order_number = (await db.execute(
        select(Order.order_number)
        .where(
            Order.user_id == current_user.id,
            Order.book_id == book.id,
            Order.payment_status == PaymentStatus.COMPLETED.value,
        )
        .order_by(Order.paid_at.desc())
        .limit(1)
    )).scalar_one_or_none()
    if order_number is None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Book not purchased. Please purchase the book to download.",
        )

    download.order_number = order_number
    logger.info("Download of %s authorized for %s", book.id, current_user.id)
    return ApiResponse(data=download, message="Download authorized")


@router.put("/{book_id}", response_model=ApiResponse[BookResponse])
async def update_book(
    book_id: str,
    body: BookUpdateRequest,
    admin_user: User = Depends(get_current_admin_user),
    db: AsyncSession = Depends(get_db),
    cache: CacheService = Depends(get_cache),
):
    """Partially update a book."""
    book = await get_book_or_404(db, book_id)
    updates = body.model_dump(exclude_unset=True)

    if updates.get("title") and updates["title"].strip().lower() != book.title.lower():
        await _ensure_title_free(db, updates["title"], exclude_id=book.id)

    new_slug = updates.pop("slug", None)
    if new_slug and slugify(new_slug) != book.slug:
        new_slug = slugify(new_slug)
        taken = await db.execute(
            select(Book.id).where(Book.slug == new_slug, Book.id != book.id)
        )
        if taken.first() is not None:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="A book with this slug already exists",
            )
        book.slug = new_slug

    new_status = updates.pop("status", None)
    if new_status is not None:
        if new_status == BookStatus.PUBLISHED and book.status != BookStatus.PUBLISHED.value:
            book.published_at = datetime.now(timezone.utc)
        book.status = new_status.value

    for field, value in updates.items():
        if value is None and field in ("title", "author", "description", "category"):
            continue
        setattr(book, field, value)

    if book.is_free:
        book.price = 0.0
    elif book.price <= 0:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Paid books must have a price greater than 0",
        )
    book.currency = book.currency.upper()

    await db.commit()
    await db.refresh(book)
    await cache.delete_prefix(BOOKS_CACHE_PREFIX)

    ratings = await book_ratings(db, [book.id])
    return ApiResponse(data=_to_response(book, ratings), message="Book updated successfully")


@router.delete("/{book_id}")
async def delete_book(
    book_id: str,
    admin_user: User = Depends(get_current_admin_user),
    db: AsyncSession = Depends(get_db),
    cache: CacheService = Depends(get_cache),
) -> dict:
    book = await get_book_or_404(db, book_id)

    has_orders = await db.execute(select(Order.id).where(Order.book_id == book.id).limit(1))
    if has_orders.first() is not None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Books with orders cannot be deleted; archive the book instead",
        )

    await db.delete(book)
    await db.commit()
    await cache.delete_prefix(BOOKS_CACHE_PREFIX)

    logger.info("Book %s deleted by %s", book_id, admin_user.id)
    return {"success": True, "message": "Book deleted successfully"}
