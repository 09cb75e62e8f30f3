"""
Publishing API routes: manuscript submissions, submission fees, the
author dashboard and the admin review queue.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from adapters.email.resend_adapter import email_service
from adapters.payments import PaymentProviderError
from api.dependencies import get_current_admin_user, get_current_user
from api.middleware.rate_limit import get_rate_limit, limiter
from api.routes.payments import default_callback_url
from api.schemas.common import ApiResponse, offset_pagination
from api.schemas.publishing import (
    AuthorDashboardResponse,
    RecentSubmission,
    SubmissionCounts,
    SubmissionCreateRequest,
    SubmissionListData,
    SubmissionPayment,
    SubmissionPayRequest,
    SubmissionResponse,
    SubmissionReviewRequest,
    SubmissionUpdateRequest,
)
from api.utils import is_uuid
from infrastructure.database.connection import get_db
from infrastructure.database.models import (
    Book,
    BookStatus,
    BookSubmission,
    Order,
    PaymentPurpose,
    PaymentStatus,
    SubmissionStatus,
    User,
)
from services.payments import PaymentService, UnsupportedProviderError, get_payment_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/publishing", tags=["Publishing"])
admin_router = APIRouter(prefix="/admin/submissions", tags=["Admin"])

# Decisions an admin may record, keyed by the states they may follow
REVIEW_TRANSITIONS = {
    SubmissionStatus.UNDER_REVIEW: {SubmissionStatus.SUBMITTED},
    SubmissionStatus.APPROVED: {SubmissionStatus.SUBMITTED, SubmissionStatus.UNDER_REVIEW},
    SubmissionStatus.REJECTED: {SubmissionStatus.SUBMITTED, SubmissionStatus.UNDER_REVIEW},
    SubmissionStatus.PUBLISHED: {SubmissionStatus.APPROVED},
}


async def get_submission_for_user(
    db: AsyncSession, submission_id: str, user: User
) -> BookSubmission:
    """Load a submission the user wrote (or any submission for admins), else 404."""
    submission = await db.get(BookSubmission, submission_id) if is_uuid(submission_id) else None
    if not submission or (submission.author_id != user.id and not user.is_admin):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Submission not found",
        )
    return submission


def _require_author(submission: BookSubmission, user: User, action: str) -> None:
    if submission.author_id != user.id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Only the author can {action} this submission",
        )


@router.get("/submissions", response_model=ApiResponse[list[SubmissionResponse]])
async def list_my_submissions(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """The caller's submissions, oldest first."""
    result = await db.execute(
        select(BookSubmission)
        .where(BookSubmission.author_id == current_user.id)
        .order_by(BookSubmission.created_at)
    )
    return ApiResponse(
        data=[SubmissionResponse.model_validate(s) for s in result.scalars().all()]
    )


@router.post(
    "/submissions",
    response_model=ApiResponse[SubmissionResponse],
    status_code=status.HTTP_201_CREATED,
)
async def create_submission(
    body: SubmissionCreateRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Start a manuscript submission.

    The submission stays a draft until its fee is paid through
    ``POST /publishing/submissions/{id}/pay``.
    """
    submission = BookSubmission(author_id=current_user.id, **body.model_dump())
    db.add(submission)
    await db.commit()
    await db.refresh(submission)

    logger.info("Submission %s created by %s", submission.id, current_user.id)
    return ApiResponse(
        data=SubmissionResponse.model_validate(submission),
        message="Submission created successfully. Please proceed to payment to submit for review.",
    )


@router.get("/submissions/{submission_id}", response_model=ApiResponse[SubmissionResponse])
async def get_submission(
    submission_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    submission = await get_submission_for_user(db, submission_id, current_user)
    return ApiResponse(data=SubmissionResponse.model_validate(submission))


@router.put("/submissions/{submission_id}", response_model=ApiResponse[SubmissionResponse])
async def update_submission(
    submission_id: str,
    body: SubmissionUpdateRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Edit a draft or rejected submission.

    Editing a rejected submission whose fee is paid sends it back to the
    review queue.
    """
    submission = await get_submission_for_user(db, submission_id, current_user)
    _require_author(submission, current_user, "edit")
    if not submission.is_editable:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Only draft or rejected submissions can be edited",
        )

    for field, value in body.model_dump(exclude_unset=True).items():
        setattr(submission, field, value)

    if submission.status == SubmissionStatus.REJECTED.value and submission.fee_paid:
        submission.status = SubmissionStatus.SUBMITTED.value
        submission.submitted_at = datetime.now(timezone.utc)
        submission.rejection_reason = None

    await db.commit()
    await db.refresh(submission)
    return ApiResponse(
        data=SubmissionResponse.model_validate(submission),
        message="Submission updated successfully",
    )


@router.delete("/submissions/{submission_id}")
async def delete_submission(
    submission_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> dict:
    """Withdraw a draft whose fee has not been paid."""
    submission = await get_submission_for_user(db, submission_id, current_user)
    _require_author(submission, current_user, "delete")
    if submission.status != SubmissionStatus.DRAFT.value or submission.fee_paid:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Only unpaid drafts can be deleted",
        )

    await db.delete(submission)
    await db.commit()
    logger.info("Submission %s deleted by %s", submission_id, current_user.id)
    return {"success": True, "message": "Submission deleted successfully"}


@router.post(
    "/submissions/{submission_id}/pay",
    response_model=ApiResponse[SubmissionPayment],
)
@limiter.limit(get_rate_limit("payment"))
async def pay_submission_fee(
    request: Request,
    submission_id: str,
    body: Optional[SubmissionPayRequest] = Body(None),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    payments: PaymentService = Depends(get_payment_service),
):
    """Open a checkout for the submission fee. Paying it submits the manuscript for review."""
    body = body or SubmissionPayRequest()
    submission = await get_submission_for_user(db, submission_id, current_user)
    _require_author(submission, current_user, "pay for")
    if submission.fee_paid:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Submission fee already paid",
        )

    provider = body.provider.value
    try:
        transaction, initialization = await payments.start_payment(
            db,
            provider=provider,
            purpose=PaymentPurpose.SUBMISSION_FEE,
            target_id=submission.id,
            amount=submission.submission_fee,
            currency=submission.fee_currency,
            user=current_user,
            callback_url=body.callback_url or default_callback_url(provider),
            description=f'Submission fee for "{submission.title}"',
            metadata={"submission_title": submission.title},
        )
    except UnsupportedProviderError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except PaymentProviderError as e:
        logger.error("Submission fee payment failed for %s: %s", submission.id, e)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Payment initialization failed",
        )

    submission.fee_payment_reference = transaction.reference
    await db.commit()

    return ApiResponse(
        data=SubmissionPayment(
            payment_url=initialization.payment_url,
            reference=transaction.reference,
            provider=provider,
            amount=transaction.amount,
            currency=transaction.currency,
            submission_id=submission.id,
        ),
        message="Payment initialized. Complete payment to submit for review.",
    )


@router.get("/dashboard", response_model=ApiResponse[AuthorDashboardResponse])
async def author_dashboard(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Submission counts, published titles and royalties for the caller."""
    by_status = dict((await db.execute(
        select(BookSubmission.status, func.count(BookSubmission.id))
        .where(BookSubmission.author_id == current_user.id)
        .group_by(BookSubmission.status)
    )).all())
    counts = SubmissionCounts(total=sum(by_status.values()), **by_status)

    book_ids = select(BookSubmission.book_id).where(
        BookSubmission.author_id == current_user.id,
        BookSubmission.book_id.is_not(None),
    )
    published_books = (await db.execute(
        select(func.count(Book.id)).where(
            Book.id.in_(book_ids), Book.status == BookStatus.PUBLISHED.value
        )
    )).scalar() or 0
    sales, earnings = (await db.execute(
        select(
            func.coalesce(func.sum(Order.quantity), 0),
            func.coalesce(func.sum(Order.total_amount * Book.royalty_rate / 100), 0.0),
        )
        .join(Book, Book.id == Order.book_id)
        .where(
            Order.book_id.in_(book_ids),
            Order.payment_status == PaymentStatus.COMPLETED.value,
        )
    )).one()

    recent = (await db.execute(
        select(BookSubmission)
        .where(BookSubmission.author_id == current_user.id)
        .order_by(BookSubmission.created_at.desc())
        .limit(5)
    )).scalars().all()

    return ApiResponse(data=AuthorDashboardResponse(
        submissions=counts,
        published_books=published_books,
        total_sales=int(sales),
        total_earnings=round(float(earnings), 2),
        recent_submissions=[RecentSubmission.model_validate(s) for s in recent],
    ))


# ── Admin review queue ───────────────────────────────────────────────────────


@admin_router.get("", response_model=ApiResponse[SubmissionListData])
async def list_submissions(
    submission_status: Optional[SubmissionStatus] = Query(None, alias="status"),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    current_admin: User = Depends(get_current_admin_user),
    db: AsyncSession = Depends(get_db),
):
    """Every submission, newest first. **Admin access required.**"""
    query = select(BookSubmission)
    if submission_status:
        query = query.where(BookSubmission.status == submission_status.value)

    total = (await db.execute(select(func.count()).select_from(query.subquery()))).scalar() or 0
    rows = (await db.execute(
        query.order_by(BookSubmission.created_at.desc()).offset(offset).limit(limit)
    )).scalars().all()

    return ApiResponse(data=SubmissionListData(
        submissions=[SubmissionResponse.model_validate(s) for s in rows],
        pagination=offset_pagination(total, limit, offset),
    ))


@admin_router.put("/{submission_id}", response_model=ApiResponse[SubmissionResponse])
async def review_submission(
    submission_id: str,
    body: SubmissionReviewRequest,
    current_admin: User = Depends(get_current_admin_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Record a review decision and notify the author.

    A rejection needs a reason; publishing needs the catalog book the
    manuscript became. **Admin access required.**
    """
    submission = await get_submission_for_user(db, submission_id, current_admin)

    allowed_from = REVIEW_TRANSITIONS.get(body.status)
    if allowed_from is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid review status",
        )
    if not submission.fee_paid:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Submission fee has not been paid",
        )
    if SubmissionStatus(submission.status) not in allowed_from:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Cannot move a {submission.status} submission to {body.status.value}",
        )
    if body.status == SubmissionStatus.REJECTED and not body.rejection_reason:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="A rejection reason is required",
        )
    if body.status == SubmissionStatus.PUBLISHED:
        book = await db.get(Book, body.book_id) if body.book_id and is_uuid(body.book_id) else None
        if book is None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Publishing requires an existing catalog book",
            )
        submission.book_id = book.id

    submission.status = body.status.value
    submission.reviewed_at = datetime.now(timezone.utc)
    submission.reviewed_by = current_admin.id
    if body.review_notes is not None:
        submission.review_notes = body.review_notes
    if body.status == SubmissionStatus.REJECTED:
        submission.rejection_reason = body.rejection_reason

    await db.commit()
    await db.refresh(submission)

    author = await db.get(User, submission.author_id)
    if author:
        await email_service.send_submission_review_email(
            to_email=author.email,
            user_name=author.name,
            submission_title=submission.title,
            status=submission.status,
            notes=submission.rejection_reason or submission.review_notes,
        )

    logger.info(
        "Submission %s moved to %s by %s", submission.id, submission.status, current_admin.id
    )
    return ApiResponse(
        data=SubmissionResponse.model_validate(submission),
        message="Submission updated successfully",
    )
