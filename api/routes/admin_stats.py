"""
Admin platform statistics.

Every block is an independent set of aggregate queries over the range
selected by ``time_range``; nothing is precomputed or cached.
"""

from datetime import datetime, timedelta, timezone
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_current_admin_user
from api.middleware.rate_limit import limiter
from api.schemas.admin import (
    ActivityItem,
    AdminStatsResponse,
    BlogStats,
    BookStats,
    CourseStats,
    CurrencyRevenue,
    EventStats,
    OrderStats,
    RecentOrder,
    RecentPost,
    RecentSubmissionItem,
    RevenueStats,
    SubmissionStats,
    TopBook,
    TopCourse,
    UpcomingEvent,
    UserStats,
)
from api.schemas.common import ApiResponse
from api.utils import as_utc
from infrastructure.database.connection import get_db
from infrastructure.database.models import (
    BlogPost,
    BlogStatus,
    Book,
    BookStatus,
    BookSubmission,
    Course,
    Enrollment,
    EnrollmentStatus,
    Event,
    EventRegistration,
    Order,
    OrderStatus,
    PaymentStatus,
    PaymentTransaction,
    RegistrationStatus,
    Review,
    SubmissionStatus,
    User,
)

router = APIRouter(prefix="/admin", tags=["Admin - Stats"])

TIME_RANGES = {
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
    "90d": timedelta(days=90),
    "1y": timedelta(days=365),
}

RECENT_ACTIVITY_LIMIT = 15


async def _count(db: AsyncSession, query) -> int:
    return (await db.execute(query)).scalar() or 0


async def _sum(db: AsyncSession, query) -> float:
    return float((await db.execute(query)).scalar() or 0.0)


async def _grouped(db: AsyncSession, column, id_column) -> dict[str, int]:
    result = await db.execute(select(column, func.count(id_column)).group_by(column))
    return {key: count for key, count in result.all()}


async def _user_stats(db: AsyncSession, since: datetime) -> UserStats:
    return UserStats(
        total=await _count(db, select(func.count(User.id))),
        new=await _count(db, select(func.count(User.id)).where(User.created_at >= since)),
        active=await _count(db, select(func.count(User.id)).where(User.last_login >= since)),
        by_role=await _grouped(db, User.role, User.id),
    )


async def _book_stats(db: AsyncSession, since: datetime) -> BookStats:
    top = (
        await db.execute(
            select(Book).where(Book.sales_count > 0).order_by(Book.sales_count.desc()).limit(5)
        )
    ).scalars().all()
    return BookStats(
        total=await _count(db, select(func.count(Book.id))),
        new=await _count(db, select(func.count(Book.id)).where(Book.created_at >= since)),
        published=await _count(
            db, select(func.count(Book.id)).where(Book.status == BookStatus.PUBLISHED.value)
        ),
        by_status=await _grouped(db, Book.status, Book.id),
        top_selling=[
            TopBook(
                id=b.id,
                title=b.title,
                author=b.author,
                sales_count=b.sales_count,
                total_revenue=b.total_revenue,
            )
            for b in top
        ],
    )


async def _order_stats(db: AsyncSession, since: datetime, currency: str) -> OrderStats:
    paid = Order.payment_status == PaymentStatus.COMPLETED.value
    paid_in_currency = (paid, Order.currency == currency)
    recent = (
        await db.execute(
            select(Order, User.name, Book.title)
            .join(User, User.id == Order.user_id)
            .join(Book, Book.id == Order.book_id)
            .order_by(Order.created_at.desc())
            .limit(5)
        )
    ).all()
    return OrderStats(
        total=await _count(db, select(func.count(Order.id))),
        total_revenue=await _sum(
            db, select(func.sum(Order.total_amount)).where(*paid_in_currency)
        ),
        new=await _count(db, select(func.count(Order.id)).where(Order.created_at >= since)),
        new_revenue=await _sum(
            db,
            select(func.sum(Order.total_amount)).where(*paid_in_currency, Order.paid_at >= since),
        ),
        completed=await _count(
            db, select(func.count(Order.id)).where(Order.status == OrderStatus.DELIVERED.value)
        ),
        by_status=await _grouped(db, Order.status, Order.id),
        recent=[
            RecentOrder(
                id=order.id,
                order_number=order.order_number,
                total_amount=order.total_amount,
                currency=order.currency,
                status=order.status,
                payment_status=order.payment_status,
                created_at=order.created_at,
                customer_name=name,
                book_title=title,
            )
            for order, name, title in recent
        ],
    )


async def _event_stats(db: AsyncSession, since: datetime, now: datetime) -> EventStats:
    active_registration = EventRegistration.status != RegistrationStatus.CANCELLED.value
    upcoming = (
        await db.execute(
            select(Event)
            .where(Event.start_date > now)
            .order_by(Event.start_date.asc())
            .limit(5)
        )
    ).scalars().all()

    counts = {}
    if upcoming:
        counts = dict((
            await db.execute(
                select(EventRegistration.event_id, func.count(EventRegistration.id))
                .where(
                    EventRegistration.event_id.in_([e.id for e in upcoming]),
                    active_registration,
                )
                .group_by(EventRegistration.event_id)
            )
        ).all())

    return EventStats(
        total=await _count(db, select(func.count(Event.id))),
        new=await _count(db, select(func.count(Event.id)).where(Event.created_at >= since)),
        upcoming=await _count(db, select(func.count(Event.id)).where(Event.start_date > now)),
        total_registrations=await _count(
            db, select(func.count(EventRegistration.id)).where(active_registration)
        ),
        recent=[
            UpcomingEvent(
                id=e.id,
                title=e.title,
                start_date=e.start_date,
                registration_count=counts.get(e.id, 0),
            )
            for e in upcoming
        ],
    )


async def _course_stats(db: AsyncSession, since: datetime) -> CourseStats:
    active_enrollment = Enrollment.status != EnrollmentStatus.CANCELLED.value
    enrollment_count = func.count(Enrollment.id).label("enrollment_count")
    top = (
        await db.execute(
            select(Course.id, Course.title, enrollment_count)
            .join(Enrollment, Enrollment.course_id == Course.id)
            .where(active_enrollment)
            .group_by(Course.id, Course.title)
            .order_by(enrollment_count.desc())
            .limit(5)
        )
    ).all()
    return CourseStats(
        total=await _count(db, select(func.count(Course.id))),
        new=await _count(db, select(func.count(Course.id)).where(Course.created_at >= since)),
        published=await _count(
            db, select(func.count(Course.id)).where(Course.is_published.is_(True))
        ),
        total_enrollments=await _count(
            db, select(func.count(Enrollment.id)).where(active_enrollment)
        ),
        top_courses=[
            TopCourse(id=course_id, title=title, enrollment_count=count)
            for course_id, title, count in top
        ],
    )


async def _submission_stats(db: AsyncSession, since: datetime) -> SubmissionStats:
    recent = (
        await db.execute(
            select(BookSubmission, User.name)
            .join(User, User.id == BookSubmission.author_id)
            .order_by(BookSubmission.created_at.desc())
            .limit(5)
        )
    ).all()
    waiting = (SubmissionStatus.SUBMITTED.value, SubmissionStatus.UNDER_REVIEW.value)
    return SubmissionStats(
        total=await _count(db, select(func.count(BookSubmission.id))),
        new=await _count(
            db, select(func.count(BookSubmission.id)).where(BookSubmission.created_at >= since)
        ),
        by_status=await _grouped(db, BookSubmission.status, BookSubmission.id),
        pending_review=await _count(
            db, select(func.count(BookSubmission.id)).where(BookSubmission.status.in_(waiting))
        ),
        recent=[
            RecentSubmissionItem(
                id=submission.id,
                title=submission.title,
                status=submission.status,
                author_name=author_name,
                created_at=submission.created_at,
            )
            for submission, author_name in recent
        ],
    )


async def _by_currency(db: AsyncSession, query) -> dict[str, float]:
    return {currency: float(amount or 0) for currency, amount in (await db.execute(query)).all()}


async def _revenue_stats(db: AsyncSession, since: datetime, currency: str) -> RevenueStats:
    """Revenue per currency; the top-level figures are for ``currency`` only."""
    completed = PaymentTransaction.status == PaymentStatus.COMPLETED.value
    paid = Order.payment_status == PaymentStatus.COMPLETED.value
    amount = func.sum(PaymentTransaction.amount)

    totals = await _by_currency(
        db,
        select(PaymentTransaction.currency, amount)
        .where(completed)
        .group_by(PaymentTransaction.currency),
    )
    period = await _by_currency(
        db,
        select(PaymentTransaction.currency, amount)
        .where(completed, PaymentTransaction.created_at >= since)
        .group_by(PaymentTransaction.currency),
    )
    book_revenue = await _by_currency(
        db,
        select(Order.currency, func.sum(Order.total_amount)).where(paid).group_by(Order.currency),
    )
    royalties = await _by_currency(
        db,
        select(Order.currency, func.sum(Order.total_amount * Book.royalty_rate / 100))
        .join(Book, Book.id == Order.book_id)
        .where(paid)
        .group_by(Order.currency),
    )

    by_currency = {
        code: CurrencyRevenue(
            total=round(totals.get(code, 0.0), 2),
            period=round(period.get(code, 0.0), 2),
            author_earnings=round(royalties.get(code, 0.0), 2),
            platform_fees=round(book_revenue.get(code, 0.0) - royalties.get(code, 0.0), 2),
        )
        for code in sorted(set(totals) | set(book_revenue))
    }
    primary = by_currency.get(currency) or CurrencyRevenue(
        total=0.0, period=0.0, author_earnings=0.0, platform_fees=0.0
    )
    return RevenueStats(currency=currency, **primary.model_dump(), by_currency=by_currency)


async def _blog_stats(db: AsyncSession, since: datetime) -> BlogStats:
    recent = (
        await db.execute(select(BlogPost).order_by(BlogPost.created_at.desc()).limit(5))
    ).scalars().all()
    return BlogStats(
        total=await _count(db, select(func.count(BlogPost.id))),
        new=await _count(db, select(func.count(BlogPost.id)).where(BlogPost.created_at >= since)),
        published=await _count(
            db, select(func.count(BlogPost.id)).where(BlogPost.status == BlogStatus.PUBLISHED.value)
        ),
        recent=[
            RecentPost(id=p.id, title=p.title, slug=p.slug, status=p.status, created_at=p.created_at)
            for p in recent
        ],
    )


async def _recent_activity(db: AsyncSession) -> list[ActivityItem]:
    """Newest orders, registrations, enrollments and reviews, merged."""
    limit = RECENT_ACTIVITY_LIMIT
    items: list[ActivityItem] = []

    orders = await db.execute(
        select(Order.id, Order.order_number, User.name, Order.created_at)
        .join(User, User.id == Order.user_id)
        .order_by(Order.created_at.desc())
        .limit(limit)
    )
    for order_id, number, name, created in orders.all():
        items.append(ActivityItem(
            type="order", id=order_id,
            description=f"{name} placed order {number}", timestamp=as_utc(created),
        ))

    registrations = await db.execute(
        select(EventRegistration.id, User.name, Event.title, EventRegistration.created_at)
        .join(User, User.id == EventRegistration.user_id)
        .join(Event, Event.id == EventRegistration.event_id)
        .order_by(EventRegistration.created_at.desc())
        .limit(limit)
    )
    for reg_id, name, title, created in registrations.all():
        items.append(ActivityItem(
            type="event_registration", id=reg_id,
            description=f"{name} registered for {title}", timestamp=as_utc(created),
        ))

    enrollments = await db.execute(
        select(Enrollment.id, User.name, Course.title, Enrollment.created_at)
        .join(User, User.id == Enrollment.user_id)
        .join(Course, Course.id == Enrollment.course_id)
        .order_by(Enrollment.created_at.desc())
        .limit(limit)
    )
    for enrollment_id, name, title, created in enrollments.all():
        items.append(ActivityItem(
            type="enrollment", id=enrollment_id,
            description=f"{name} enrolled in {title}", timestamp=as_utc(created),
        ))

    reviews = await db.execute(
        select(Review.id, User.name, Book.title, Review.rating, Review.created_at)
        .join(User, User.id == Review.user_id)
        .join(Book, Book.id == Review.book_id)
        .order_by(Review.created_at.desc())
        .limit(limit)
    )
    for review_id, name, title, rating, created in reviews.all():
        items.append(ActivityItem(
            type="review", id=review_id,
            description=f"{name} rated {title} {rating}/5", timestamp=as_utc(created),
        ))

    items.sort(key=lambda item: item.timestamp, reverse=True)
    return items[:limit]


@router.get("/stats", response_model=ApiResponse[AdminStatsResponse])
@limiter.limit("30/minute")
async def get_admin_stats(
    request: Request,
    current_admin: Annotated[User, Depends(get_current_admin_user)],
    time_range: str = Query("30d"),
    currency: str = Query("NGN", min_length=3, max_length=3),
    db: AsyncSession = Depends(get_db),
):
    """
    Platform-wide statistics for the admin dashboard.

    ``time_range`` (7d, 30d, 90d or 1y) bounds the "new" and "period"
    figures; totals always cover all time. Revenue totals are reported in
    ``currency``, with every currency seen broken out under
    ``revenue.by_currency``.

    **Admin access required.**
    """
    if time_range not in TIME_RANGES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid time_range. Must be one of: {', '.join(TIME_RANGES)}",
        )

    now = datetime.now(timezone.utc)
    since = now - TIME_RANGES[time_range]
    currency = currency.upper()

    return ApiResponse(data=AdminStatsResponse(
        users=await _user_stats(db, since),
        books=await _book_stats(db, since),
        orders=await _order_stats(db, since, currency),
        events=await _event_stats(db, since, now),
        courses=await _course_stats(db, since),
        submissions=await _submission_stats(db, since),
        revenue=await _revenue_stats(db, since, currency),
        blog=await _blog_stats(db, since),
        recent_activity=await _recent_activity(db),
        time_range=time_range,
    ))
