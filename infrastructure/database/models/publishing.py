"""
Publishing models: manuscripts authors submit for review.
"""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import uuid4

from sqlalchemy import DateTime, Float, ForeignKey, Index, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin
from .commerce import PaymentStatus

SUBMISSION_FEE = 5000.0
SUBMISSION_FEE_CURRENCY = "NGN"


class SubmissionStatus(str, Enum):
    """Editorial workflow of a submission."""

    DRAFT = "draft"  # Fee not paid yet
    SUBMITTED = "submitted"
    UNDER_REVIEW = "under_review"
    APPROVED = "approved"
    REJECTED = "rejected"
    PUBLISHED = "published"


class BookSubmission(Base, TimestampMixin):
    """A manuscript an author wants published, plus its review state."""

    __tablename__ = "book_submissions"

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    author_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    # Catalog entry created from this submission once published
    book_id: Mapped[Optional[str]] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("books.id", ondelete="SET NULL"),
        nullable=True,
    )

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    price: Mapped[float] = mapped_column(Float, nullable=False)
    manuscript_file: Mapped[str] = mapped_column(String(1000), nullable=False)
    cover_image: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    synopsis: Mapped[str] = mapped_column(Text, nullable=False)
    author_bio: Mapped[str] = mapped_column(Text, nullable=False)
    target_audience: Mapped[str] = mapped_column(Text, nullable=False)
    marketing_plan: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    status: Mapped[str] = mapped_column(
        String(20), default=SubmissionStatus.DRAFT.value, nullable=False
    )
    submission_fee: Mapped[float] = mapped_column(Float, default=SUBMISSION_FEE, nullable=False)
    fee_currency: Mapped[str] = mapped_column(
        String(3), default=SUBMISSION_FEE_CURRENCY, nullable=False
    )
    fee_payment_status: Mapped[str] = mapped_column(
        String(20), default=PaymentStatus.PENDING.value, nullable=False
    )
    fee_payment_reference: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    submitted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    reviewed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    reviewed_by: Mapped[Optional[str]] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    review_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("ix_book_submissions_status_created", "status", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<BookSubmission(id={self.id}, status={self.status})>"

    @property
    def fee_paid(self) -> bool:
        return self.fee_payment_status == PaymentStatus.COMPLETED.value

    @property
    def is_editable(self) -> bool:
        return self.status in (SubmissionStatus.DRAFT.value, SubmissionStatus.REJECTED.value)
