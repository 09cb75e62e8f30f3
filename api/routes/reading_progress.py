"""
Reading progress API routes.
"""

import logging
from datetime import datetime, timezone
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_current_user
from api.routes.books import get_book_or_404
from api.routes.reviews import has_paid_order
from api.schemas.catalog import (
    BookSummary,
    ReadingProgressListData,
    ReadingProgressResponse,
    ReadingProgressUpdateRequest,
    ReadingSummary,
)
from api.schemas.common import ApiResponse
from api.utils import is_uuid
from infrastructure.database.connection import get_db
from infrastructure.database.models import Book, ReadingProgress, User

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/reading-progress", tags=["Reading Progress"])


def _to_response(progress: ReadingProgress, book: Optional[Book]) -> ReadingProgressResponse:
    response = ReadingProgressResponse.model_validate(progress)
    if book is not None:
        response.book = BookSummary.model_validate(book)
    return response


@router.get("")
async def get_reading_progress(
    book_id: Optional[str] = None,
    progress_status: Literal["reading", "completed", "all"] = Query("all", alias="status"),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    The current user's reading progress.

    With ``book_id`` returns that single record; otherwise the full list
    with a summary. ``status`` narrows the list to unfinished or finished books.
    """
    query = (
        select(ReadingProgress, Book)
        .join(Book, Book.id == ReadingProgress.book_id)
        .where(ReadingProgress.user_id == current_user.id)
    )

    if book_id:
        row = None
        if is_uuid(book_id):
            row = (await db.execute(query.where(ReadingProgress.book_id == book_id))).first()
        if row is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="No reading progress for this book",
            )
        return ApiResponse[ReadingProgressResponse](data=_to_response(*row))

    rows = (
        await db.execute(query.order_by(ReadingProgress.last_read_at.desc()))
    ).all()
    records = [_to_response(progress, book) for progress, book in rows]

    completed = sum(1 for r in records if r.is_completed)
    summary = ReadingSummary(
        total_books=len(records),
        completed_books=completed,
        currently_reading=len(records) - completed,
    )

    if progress_status == "reading":
        records = [r for r in records if not r.is_completed]
    elif progress_status == "completed":
        records = [r for r in records if r.is_completed]

    return ApiResponse[ReadingProgressListData](
        data=ReadingProgressListData(progress=records, summary=summary)
    )


@router.post("", response_model=ApiResponse[ReadingProgressResponse])
async def update_reading_progress(
    body: ReadingProgressUpdateRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Create or update progress for a book the user has access to."""
    book = await get_book_or_404(db, body.book_id)

    if not book.is_free and not await has_paid_order(db, current_user.id, book.id):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You need to purchase this book to track reading progress",
        )

    result = await db.execute(
        select(ReadingProgress).where(
            ReadingProgress.user_id == current_user.id,
            ReadingProgress.book_id == book.id,
        )
    )
    progress = result.scalar_one_or_none()
    if progress is None:
        progress = ReadingProgress(user_id=current_user.id, book_id=book.id)
        db.add(progress)

    progress.current_page = body.current_page
    if body.total_pages is not None:
        progress.total_pages = body.total_pages
    elif progress.total_pages is None and book.page_count:
        progress.total_pages = book.page_count
    if "notes" in body.model_fields_set:
        progress.notes = body.notes

    if body.percentage is not None:
        progress.percentage = body.percentage
    elif progress.total_pages:
        progress.percentage = float(
            min(100, round(progress.current_page / progress.total_pages * 100))
        )

    now = datetime.now(timezone.utc)
    if body.is_completed is True:
        progress.is_completed = True
        progress.percentage = 100.0
        progress.completed_at = progress.completed_at or now
    elif body.is_completed is False:
        progress.is_completed = False
        progress.completed_at = None

    progress.last_read_at = now

    await db.commit()
    await db.refresh(progress)
    return ApiResponse(data=_to_response(progress, book), message="Reading progress updated")


@router.delete("/{book_id}")
async def delete_reading_progress(
    book_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> dict:
    progress = None
    if is_uuid(book_id):
        result = await db.execute(
            select(ReadingProgress).where(
                ReadingProgress.user_id == current_user.id,
                ReadingProgress.book_id == book_id,
            )
        )
        progress = result.scalar_one_or_none()
    if not progress:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No reading progress for this book",
        )

    await db.delete(progress)
    await db.commit()
    return {"success": True, "message": "Reading progress removed"}
