"""
Manuscript submission and author dashboard schemas.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from infrastructure.database.models.commerce import PaymentProvider
from infrastructure.database.models.publishing import SubmissionStatus

from .common import OffsetPagination


def _require_url(value: Optional[str]) -> Optional[str]:
    if value is not None and not value.startswith(("http://", "https://")):
        raise ValueError("Must be an http(s) URL")
    return value


class SubmissionCreateRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: str = Field(..., min_length=50, max_length=2000)
    category: str = Field(..., min_length=1, max_length=100)
    price: float = Field(..., ge=100, le=1_000_000)
    manuscript_file: str = Field(..., max_length=1000)
    cover_image: Optional[str] = Field(None, max_length=1000)
    synopsis: str = Field(..., min_length=100, max_length=1000)
    author_bio: str = Field(..., min_length=50, max_length=500)
    target_audience: str = Field(..., min_length=20, max_length=300)
    marketing_plan: Optional[str] = Field(None, min_length=50, max_length=1000)

    @field_validator("manuscript_file", "cover_image")
    @classmethod
    def urls(cls, v: Optional[str]) -> Optional[str]:
        return _require_url(v)


class SubmissionUpdateRequest(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = Field(None, min_length=50, max_length=2000)
    category: Optional[str] = Field(None, min_length=1, max_length=100)
    price: Optional[float] = Field(None, ge=100, le=1_000_000)
    manuscript_file: Optional[str] = Field(None, max_length=1000)
    cover_image: Optional[str] = Field(None, max_length=1000)
    synopsis: Optional[str] = Field(None, min_length=100, max_length=1000)
    author_bio: Optional[str] = Field(None, min_length=50, max_length=500)
    target_audience: Optional[str] = Field(None, min_length=20, max_length=300)
    marketing_plan: Optional[str] = Field(None, min_length=50, max_length=1000)

    @field_validator("manuscript_file", "cover_image")
    @classmethod
    def urls(cls, v: Optional[str]) -> Optional[str]:
        return _require_url(v)


class SubmissionReviewRequest(BaseModel):
    """Admin decision on a submission."""

    status: SubmissionStatus
    review_notes: Optional[str] = Field(None, max_length=2000)
    rejection_reason: Optional[str] = Field(None, max_length=2000)
    book_id: Optional[str] = None


class SubmissionPayRequest(BaseModel):
    provider: PaymentProvider = PaymentProvider.PAYSTACK
    callback_url: Optional[str] = Field(None, max_length=1000)


class SubmissionResponse(BaseModel):
    id: str
    author_id: str
    book_id: Optional[str] = None
    title: str
    description: str
    category: str
    price: float
    manuscript_file: str
    cover_image: Optional[str] = None
    synopsis: str
    author_bio: str
    target_audience: str
    marketing_plan: Optional[str] = None
    status: str
    submission_fee: float
    fee_currency: str
    fee_payment_status: str
    fee_payment_reference: Optional[str] = None
    submitted_at: Optional[datetime] = None
    reviewed_at: Optional[datetime] = None
    review_notes: Optional[str] = None
    rejection_reason: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class SubmissionPayment(BaseModel):
    payment_url: str
    reference: str
    provider: str
    amount: float
    currency: str
    submission_id: str


class SubmissionCounts(BaseModel):
    total: int = 0
    draft: int = 0
    submitted: int = 0
    under_review: int = 0
    approved: int = 0
    rejected: int = 0
    published: int = 0


class RecentSubmission(BaseModel):
    id: str
    title: str
    status: str
    submitted_at: Optional[datetime] = None
    reviewed_at: Optional[datetime] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AuthorDashboardResponse(BaseModel):
    submissions: SubmissionCounts
    published_books: int
    total_sales: int
    total_earnings: float
    recent_submissions: list[RecentSubmission]


class SubmissionListData(BaseModel):
    submissions: list[SubmissionResponse]
    pagination: OffsetPagination
