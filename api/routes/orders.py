"""
Book order API routes.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_current_user
from api.middleware.rate_limit import get_rate_limit, limiter
from api.routes.books import get_book_or_404
from api.schemas.catalog import BookSummary
from api.schemas.commerce import (
    OrderCreateRequest,
    OrderListData,
    OrderResponse,
    OrderUpdateRequest,
)
from api.schemas.common import ApiResponse, offset_pagination
from api.utils import generate_order_number, is_uuid, like_pattern
from infrastructure.database.connection import get_db
from infrastructure.database.models import (
    Book,
    BookStatus,
    Order,
    OrderStatus,
    PaymentStatus,
    User,
)
from services.coupons import CouponError, record_usage, redeemable_coupon

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/orders", tags=["Orders"])


def order_response(order: Order, book: Optional[Book]) -> OrderResponse:
    response = OrderResponse.model_validate(order)
    if book is not None:
        response.book = BookSummary.model_validate(book)
    return response


async def get_order_for_user(db: AsyncSession, order_id: str, user: User) -> Order:
    """Load an order the user owns (or any order for admins), else 404."""
    order = await db.get(Order, order_id) if is_uuid(order_id) else None
    if not order or (order.user_id != user.id and not user.is_admin):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Order not found",
        )
    return order


@router.get("", response_model=ApiResponse[OrderListData])
async def list_orders(
    order_status: Optional[OrderStatus] = Query(None, alias="status"),
    search: Optional[str] = Query(None, max_length=100),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Admins see every order; everyone else sees their own."""
    query = select(Order, Book).join(Book, Book.id == Order.book_id)
    if not current_user.is_admin:
        query = query.where(Order.user_id == current_user.id)
    if order_status:
        query = query.where(Order.status == order_status.value)
    if search:
        pattern = like_pattern(search)
        query = query.where(or_(
            Order.order_number.ilike(pattern, escape="\\"),
            Book.title.ilike(pattern, escape="\\"),
        ))

    total = (await db.execute(select(func.count()).select_from(query.subquery()))).scalar() or 0
    rows = (
        await db.execute(query.order_by(Order.created_at.desc()).offset(offset).limit(limit))
    ).all()

    return ApiResponse(data=OrderListData(
        orders=[order_response(order, book) for order, book in rows],
        pagination=offset_pagination(total, limit, offset),
    ))


@router.post(
    "",
    response_model=ApiResponse[OrderResponse],
    status_code=status.HTTP_201_CREATED,
)
@limiter.limit(get_rate_limit("order"))
async def create_order(
    request: Request,
    body: OrderCreateRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Place an order for a book.

    The order starts pending and unpaid; ``POST /payments/initialize``
    opens the checkout for it. A ``coupon_code`` is redeemed immediately
    and lowers the order total.
    """
    book = await get_book_or_404(db, body.book_id)

    if book.status != BookStatus.PUBLISHED.value or not book.is_available:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Book is not available for purchase",
        )
    if book.is_free or book.price <= 0:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Free books do not need to be ordered",
        )
    if book.stock is not None and book.stock < 1:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Book is out of stock",
        )

    coupon, discount = None, 0.0
    if body.coupon_code:
        try:
            coupon, discount = await redeemable_coupon(
                db, body.coupon_code, current_user, book.price, book.id
            )
        except CouponError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
        if discount >= book.price:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Coupon cannot cover the full price of a book",
            )

    shipping = body.shipping_address.model_dump() if body.shipping_address else None
    billing = body.billing_address.model_dump() if body.billing_address else shipping

    order = Order(
        order_number=generate_order_number(),
        user_id=current_user.id,
        book_id=book.id,
        quantity=1,
        total_amount=round(book.price - discount, 2),
        discount_amount=discount,
        coupon_code=coupon.code if coupon else None,
        currency=book.currency,
        status=OrderStatus.PENDING.value,
        payment_status=PaymentStatus.PENDING.value,
        shipping_address=shipping,
        billing_address=billing,
        notes=body.notes,
    )
    db.add(order)
    if coupon:
        await db.flush()
        record_usage(db, coupon, current_user, order, discount)
    await db.commit()
    await db.refresh(order)

    logger.info("Order %s created by %s for book %s", order.order_number, current_user.id, book.id)
    return ApiResponse(data=order_response(order, book), message="Order created successfully")


@router.get("/{order_id}", response_model=ApiResponse[OrderResponse])
async def get_order(
    order_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    order = await get_order_for_user(db, order_id, current_user)
    book = await db.get(Book, order.book_id)
    return ApiResponse(data=order_response(order, book))


@router.put("/{order_id}", response_model=ApiResponse[OrderResponse])
async def update_order(
    order_id: str,
    body: OrderUpdateRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Update an order.

    Admins may change status, tracking number and notes. Owners may only
    cancel an order that is still pending and unpaid.
    """
    order = await get_order_for_user(db, order_id, current_user)
    updates = body.model_dump(exclude_unset=True)

    if not current_user.is_admin:
        cancelling = (
            set(updates) == {"status"} and updates["status"] == OrderStatus.CANCELLED
        )
        if not cancelling:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="You can only cancel your own orders",
            )
        if order.status != OrderStatus.PENDING.value or order.is_paid:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Only pending, unpaid orders can be cancelled",
            )

    if updates.get("status") is not None:
        order.status = updates["status"].value
    if "tracking_number" in updates:
        order.tracking_number = updates["tracking_number"]
    if "notes" in updates:
        order.notes = updates["notes"]

    await db.commit()
    await db.refresh(order)

    logger.info("Order %s updated by %s: %s", order.order_number, current_user.id, list(updates))
    book = await db.get(Book, order.book_id)
    return ApiResponse(data=order_response(order, book), message="Order updated successfully")
