"""
Reader dashboard summary.
"""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_current_user
from api.routes.orders import order_response
from api.schemas.common import ApiResponse
from api.schemas.commerce import OrderResponse
from infrastructure.database.connection import get_db
from infrastructure.database.models import (
    Book,
    Enrollment,
    EnrollmentStatus,
    Event,
    EventRegistration,
    Order,
    PaymentStatus,
    ReadingProgress,
    RegistrationStatus,
    User,
    Wishlist,
)

router = APIRouter(prefix="/dashboard", tags=["Dashboard"])


class DashboardSummary(BaseModel):
    total_orders: int
    total_spent: float
    books_in_progress: int
    books_completed: int
    wishlist_count: int
    active_enrollments: int
    completed_enrollments: int
    upcoming_events: int
    recent_orders: list[OrderResponse]


@router.get("", response_model=ApiResponse[DashboardSummary])
async def get_dashboard(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Counts and recent activity for the signed-in user."""
    user_id = current_user.id

    total_orders = (
        await db.execute(select(func.count(Order.id)).where(Order.user_id == user_id))
    ).scalar() or 0
    total_spent = (
        await db.execute(
            select(func.coalesce(func.sum(Order.total_amount), 0.0)).where(
                Order.user_id == user_id,
                Order.payment_status == PaymentStatus.COMPLETED.value,
            )
        )
    ).scalar() or 0.0

    reading = dict((
        await db.execute(
            select(ReadingProgress.is_completed, func.count(ReadingProgress.id))
            .where(ReadingProgress.user_id == user_id)
            .group_by(ReadingProgress.is_completed)
        )
    ).all())

    wishlist_count = (
        await db.execute(select(func.count(Wishlist.id)).where(Wishlist.user_id == user_id))
    ).scalar() or 0

    enrollments = dict((
        await db.execute(
            select(Enrollment.status, func.count(Enrollment.id))
            .where(Enrollment.user_id == user_id)
            .group_by(Enrollment.status)
        )
    ).all())

    upcoming_events = (
        await db.execute(
            select(func.count(EventRegistration.id))
            .join(Event, Event.id == EventRegistration.event_id)
            .where(
                EventRegistration.user_id == user_id,
                EventRegistration.status == RegistrationStatus.REGISTERED.value,
                Event.start_date > datetime.now(timezone.utc),
            )
        )
    ).scalar() or 0

    recent = (
        await db.execute(
            select(Order, Book)
            .join(Book, Book.id == Order.book_id)
            .where(Order.user_id == user_id)
            .order_by(Order.created_at.desc())
            .limit(5)
        )
    ).all()

    return ApiResponse(data=DashboardSummary(
        total_orders=total_orders,
        total_spent=float(total_spent),
        books_in_progress=reading.get(False, 0),
        books_completed=reading.get(True, 0),
        wishlist_count=wishlist_count,
        active_enrollments=enrollments.get(EnrollmentStatus.ACTIVE.value, 0),
        completed_enrollments=enrollments.get(EnrollmentStatus.COMPLETED.value, 0),
        upcoming_events=upcoming_events,
        recent_orders=[order_response(order, book) for order, book in recent],
    ))
