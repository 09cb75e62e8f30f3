"""
Course, enrollment and course review API routes.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, status
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from adapters.email.resend_adapter import email_service
from adapters.payments import PaymentProviderError
from api.dependencies import get_current_admin_user, get_current_user, get_optional_user
from api.routes.payments import default_callback_url
from api.schemas.academy import (
    CourseCreateRequest,
    CourseModuleCreateRequest,
    CourseModuleResponse,
    CourseResponse,
    CourseReviewCreateRequest,
    CourseReviewResponse,
    CourseUpdateRequest,
    EnrollmentResponse,
    EnrollRequest,
    EnrollResult,
    ProgressUpdateRequest,
)
from api.schemas.common import ApiResponse
from api.utils import is_uuid
from infrastructure.database.connection import get_db
from infrastructure.database.models import (
    Course,
    CourseLevel,
    CourseModule,
    CourseReview,
    Enrollment,
    EnrollmentStatus,
    PaymentPurpose,
    User,
)
from services.payments import (
    PaymentService,
    UnsupportedProviderError,
    get_payment_service,
    recommended_provider,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/courses", tags=["Courses"])


async def _get_course(db: AsyncSession, course_id: str) -> Course:
    course = await db.get(Course, course_id) if is_uuid(course_id) else None
    if not course:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Course not found",
        )
    return course


async def _course_counts(
    db: AsyncSession, course_ids: list[str]
) -> tuple[dict[str, int], dict[str, int]]:
    """Module and enrollment counts keyed by course id."""
    if not course_ids:
        return {}, {}
    modules = await db.execute(
        select(CourseModule.course_id, func.count(CourseModule.id))
        .where(CourseModule.course_id.in_(course_ids))
        .group_by(CourseModule.course_id)
    )
    enrollments = await db.execute(
        select(Enrollment.course_id, func.count(Enrollment.id))
        .where(
            Enrollment.course_id.in_(course_ids),
            Enrollment.status != EnrollmentStatus.CANCELLED.value,
        )
        .group_by(Enrollment.course_id)
    )
    return dict(modules.all()), dict(enrollments.all())


def _to_response(
    course: Course,
    module_counts: dict[str, int],
    enrollment_counts: dict[str, int],
    modules: Optional[list[CourseModule]] = None,
) -> CourseResponse:
    response = CourseResponse.model_validate(course)
    response.module_count = module_counts.get(course.id, 0)
    response.enrollment_count = enrollment_counts.get(course.id, 0)
    if modules is not None:
        response.modules = [CourseModuleResponse.model_validate(m) for m in modules]
    return response


async def _get_enrollment(db: AsyncSession, user_id: str, course_id: str) -> Optional[Enrollment]:
    result = await db.execute(
        select(Enrollment).where(
            Enrollment.user_id == user_id,
            Enrollment.course_id == course_id,
            Enrollment.status != EnrollmentStatus.CANCELLED.value,
        )
    )
    return result.scalar_one_or_none()


@router.get("", response_model=ApiResponse[list[CourseResponse]])
async def list_courses(
    level: Optional[CourseLevel] = None,
    published: bool = True,
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    current_user: Optional[User] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db),
):
    """Published courses, newest first. Only admins may list unpublished courses."""
    if not published and not (current_user and current_user.is_admin):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )

    query = select(Course).where(Course.is_published == published)
    if level:
        query = query.where(Course.level == level.value)

    courses = (
        await db.execute(query.order_by(Course.created_at.desc()).offset(offset).limit(limit))
    ).scalars().all()
    module_counts, enrollment_counts = await _course_counts(db, [c.id for c in courses])
    return ApiResponse(
        data=[_to_response(c, module_counts, enrollment_counts) for c in courses]
    )


@router.post(
    "",
    response_model=ApiResponse[CourseResponse],
    status_code=status.HTTP_201_CREATED,
)
async def create_course(
    body: CourseCreateRequest,
    admin_user: User = Depends(get_current_admin_user),
    db: AsyncSession = Depends(get_db),
):
    course = Course(
        **body.model_dump(exclude={"level", "instructor_id", "currency"}),
        level=body.level.value,
        currency=body.currency.upper(),
        instructor_id=body.instructor_id or admin_user.id,
    )
    db.add(course)
    await db.commit()
    await db.refresh(course)

    logger.info("Course %s created by %s", course.id, admin_user.id)
    return ApiResponse(data=_to_response(course, {}, {}, modules=[]), message="Course created")


@router.get("/me/enrollments", response_model=ApiResponse[list[EnrollmentResponse]])
async def my_enrollments(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """The current user's enrollments with their courses."""
    rows = (
        await db.execute(
            select(Enrollment, Course)
            .join(Course, Course.id == Enrollment.course_id)
            .where(Enrollment.user_id == current_user.id)
            .order_by(Enrollment.created_at.desc())
        )
    ).all()

    module_counts, enrollment_counts = await _course_counts(db, [c.id for _, c in rows])
    items = []
    for enrollment, course in rows:
        item = EnrollmentResponse.model_validate(enrollment)
        item.course = _to_response(course, module_counts, enrollment_counts)
        items.append(item)
    return ApiResponse(data=items)


@router.get("/{course_id}", response_model=ApiResponse[CourseResponse])
async def get_course(
    course_id: str,
    current_user: Optional[User] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db),
):
    course = await _get_course(db, course_id)
    if not course.is_published and not (current_user and current_user.is_admin):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Course not found",
        )

    modules = (
        await db.execute(
            select(CourseModule)
            .where(CourseModule.course_id == course.id)
            .order_by(CourseModule.position.asc())
        )
    ).scalars().all()
    module_counts, enrollment_counts = await _course_counts(db, [course.id])
    return ApiResponse(data=_to_response(course, module_counts, enrollment_counts, list(modules)))


@router.put("/{course_id}", response_model=ApiResponse[CourseResponse])
async def update_course(
    course_id: str,
    body: CourseUpdateRequest,
    admin_user: User = Depends(get_current_admin_user),
    db: AsyncSession = Depends(get_db),
):
    course = await _get_course(db, course_id)
    for field, value in body.model_dump(exclude_unset=True).items():
        if value is None:
            continue
        if field == "level":
            value = value.value
        elif field == "currency":
            value = value.upper()
        setattr(course, field, value)

    await db.commit()
    await db.refresh(course)
    module_counts, enrollment_counts = await _course_counts(db, [course.id])
    return ApiResponse(
        data=_to_response(course, module_counts, enrollment_counts),
        message="Course updated",
    )


@router.delete("/{course_id}")
async def delete_course(
    course_id: str,
    admin_user: User = Depends(get_current_admin_user),
    db: AsyncSession = Depends(get_db),
) -> dict:
    course = await _get_course(db, course_id)

    await db.execute(delete(CourseReview).where(CourseReview.course_id == course.id))
    await db.execute(delete(Enrollment).where(Enrollment.course_id == course.id))
    await db.execute(delete(CourseModule).where(CourseModule.course_id == course.id))
    await db.delete(course)
    await db.commit()

    logger.info("Course %s deleted by %s", course_id, admin_user.id)
    return {"success": True, "message": "Course deleted"}


@router.post(
    "/{course_id}/modules",
    response_model=ApiResponse[CourseModuleResponse],
    status_code=status.HTTP_201_CREATED,
)
async def add_module(
    course_id: str,
    body: CourseModuleCreateRequest,
    admin_user: User = Depends(get_current_admin_user),
    db: AsyncSession = Depends(get_db),
):
    """Append a module; ``position`` defaults to the end of the course."""
    course = await _get_course(db, course_id)

    position = body.position
    if position is None:
        last = await db.execute(
            select(func.max(CourseModule.position)).where(CourseModule.course_id == course.id)
        )
        current_max = last.scalar()
        position = 0 if current_max is None else current_max + 1

    module = CourseModule(
        course_id=course.id,
        **body.model_dump(exclude={"position"}),
        position=position,
    )
    db.add(module)
    await db.commit()
    await db.refresh(module)
    return ApiResponse(data=CourseModuleResponse.model_validate(module), message="Module added")


@router.post("/{course_id}/enroll", response_model=ApiResponse[EnrollResult])
async def enroll(
    course_id: str,
    body: Optional[EnrollRequest] = Body(None),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    payments: PaymentService = Depends(get_payment_service),
):
    """
    Enroll in a course.

    Free courses enroll immediately. Paid courses return a checkout URL;
    the enrollment is created once the payment is confirmed.
    """
    body = body or EnrollRequest()
    course = await _get_course(db, course_id)

    if not course.is_published:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Course is not available for enrollment",
        )

    if await _get_enrollment(db, current_user.id, course.id):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="You are already enrolled in this course",
        )

    if course.is_free:
        enrollment = Enrollment(user_id=current_user.id, course_id=course.id, amount_paid=0.0)
        db.add(enrollment)
        await db.commit()
        await db.refresh(enrollment)

        await email_service.send_enrollment_email(current_user.email, current_user.name, course.title)
        return ApiResponse(
            data=EnrollResult(
                payment_required=False,
                enrollment=EnrollmentResponse.model_validate(enrollment),
            ),
            message="Enrolled successfully",
        )

    provider = body.provider.value if body.provider else recommended_provider(course.currency)
    try:
        transaction, initialization = await payments.start_payment(
            db,
            provider=provider,
            purpose=PaymentPurpose.COURSE_ENROLLMENT,
            target_id=course.id,
            amount=course.price,
            currency=course.currency,
            user=current_user,
            callback_url=body.callback_url or default_callback_url(provider),
            description=f"Enrollment: {course.title}",
        )
    except UnsupportedProviderError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except PaymentProviderError as e:
        logger.error("Enrollment payment failed for course %s: %s", course.id, e)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Payment initialization failed",
        )
    await db.commit()

    return ApiResponse(
        data=EnrollResult(
            payment_required=True,
            payment_url=initialization.payment_url,
            reference=transaction.reference,
            provider=provider,
            amount=transaction.amount,
            currency=transaction.currency,
        ),
        message="Complete payment to finish enrollment",
    )


@router.patch("/{course_id}/progress", response_model=ApiResponse[EnrollmentResponse])
async def update_progress(
    course_id: str,
    body: ProgressUpdateRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    if not 0 <= body.progress <= 100:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Progress must be between 0 and 100",
        )

    course = await _get_course(db, course_id)
    enrollment = await _get_enrollment(db, current_user.id, course.id)
    if not enrollment:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You are not enrolled in this course",
        )

    enrollment.progress = body.progress
    newly_completed = body.progress == 100 and enrollment.completed_at is None
    if newly_completed:
        enrollment.status = EnrollmentStatus.COMPLETED.value
        enrollment.completed_at = datetime.now(timezone.utc)

    await db.commit()
    await db.refresh(enrollment)

    if newly_completed:
        await email_service.send_course_completion_email(
            current_user.email, current_user.name, course.title
        )
    return ApiResponse(data=EnrollmentResponse.model_validate(enrollment), message="Progress updated")


@router.get("/{course_id}/reviews", response_model=ApiResponse[list[CourseReviewResponse]])
async def list_course_reviews(
    course_id: str,
    db: AsyncSession = Depends(get_db),
):
    course = await _get_course(db, course_id)
    rows = (
        await db.execute(
            select(CourseReview, User.name)
            .join(User, User.id == CourseReview.user_id)
            .where(CourseReview.course_id == course.id)
            .order_by(CourseReview.created_at.desc())
        )
    ).all()

    reviews = []
    for review, name in rows:
        item = CourseReviewResponse.model_validate(review)
        item.user_name = name
        reviews.append(item)
    return ApiResponse(data=reviews)


@router.post(
    "/{course_id}/reviews",
    response_model=ApiResponse[CourseReviewResponse],
    status_code=status.HTTP_201_CREATED,
)
async def create_course_review(
    course_id: str,
    body: CourseReviewCreateRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    course = await _get_course(db, course_id)

    existing = await db.execute(
        select(CourseReview.id).where(
            CourseReview.user_id == current_user.id,
            CourseReview.course_id == course.id,
        )
    )
    if existing.first() is not None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="You have already reviewed this course",
        )

    review = CourseReview(
        user_id=current_user.id,
        course_id=course.id,
        rating=body.rating,
        comment=body.comment,
        is_verified=await _get_enrollment(db, current_user.id, course.id) is not None,
    )
    db.add(review)
    await db.commit()
    await db.refresh(review)

    item = CourseReviewResponse.model_validate(review)
    item.user_name = current_user.name
    return ApiResponse(data=item, message="Review submitted")
