"""
Wishlist API routes.
"""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_current_user
from api.routes.books import get_book_or_404
from api.schemas.catalog import BookSummary, WishlistAddRequest, WishlistItemResponse
from api.schemas.common import ApiResponse
from api.utils import is_uuid
from infrastructure.database.connection import get_db
from infrastructure.database.models import Book, User, Wishlist

router = APIRouter(prefix="/wishlist", tags=["Wishlist"])


def _to_response(item: Wishlist, book: Book) -> WishlistItemResponse:
    return WishlistItemResponse(
        id=item.id,
        book_id=item.book_id,
        created_at=item.created_at,
        book=BookSummary.model_validate(book),
    )


@router.get("", response_model=ApiResponse[list[WishlistItemResponse]])
async def list_wishlist(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        select(Wishlist, Book)
        .join(Book, Book.id == Wishlist.book_id)
        .where(Wishlist.user_id == current_user.id)
        .order_by(Wishlist.created_at.desc())
    )
    return ApiResponse(data=[_to_response(item, book) for item, book in result.all()])


@router.post(
    "",
    response_model=ApiResponse[WishlistItemResponse],
    status_code=status.HTTP_201_CREATED,
)
async def add_to_wishlist(
    body: WishlistAddRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    book = await get_book_or_404(db, body.book_id)

    existing = await db.execute(
        select(Wishlist.id).where(Wishlist.user_id == current_user.id, Wishlist.book_id == book.id)
    )
    if existing.first() is not None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Book is already in your wishlist",
        )

    item = Wishlist(user_id=current_user.id, book_id=book.id)
    db.add(item)
    await db.commit()
    await db.refresh(item)
    return ApiResponse(data=_to_response(item, book), message="Added to wishlist")


@router.delete("/{book_id}")
async def remove_from_wishlist(
    book_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> dict:
    item = None
    if is_uuid(book_id):
        result = await db.execute(
            select(Wishlist).where(Wishlist.user_id == current_user.id, Wishlist.book_id == book_id)
        )
        item = result.scalar_one_or_none()
    if not item:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Book is not in your wishlist",
        )

    await db.delete(item)
    await db.commit()
    return {"success": True, "message": "Removed from wishlist"}
