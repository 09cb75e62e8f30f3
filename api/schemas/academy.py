"""
Course, module, enrollment and course review schemas.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from infrastructure.database.models.academy import CourseLevel
from infrastructure.database.models.commerce import PaymentProvider


class CourseCreateRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: str = Field(..., min_length=10)
    price: float = Field(0.0, ge=0)
    currency: str = Field("NGN", min_length=3, max_length=3)
    thumbnail_image: Optional[str] = Field(None, max_length=500)
    duration: int = Field(..., ge=1, description="Length in minutes")
    level: CourseLevel = CourseLevel.BEGINNER
    is_published: bool = False
    instructor_id: Optional[str] = None


class CourseUpdateRequest(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = Field(None, min_length=10)
    price: Optional[float] = Field(None, ge=0)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    thumbnail_image: Optional[str] = Field(None, max_length=500)
    duration: Optional[int] = Field(None, ge=1)
    level: Optional[CourseLevel] = None
    is_published: Optional[bool] = None


class CourseModuleCreateRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    content: Optional[str] = None
    video_url: Optional[str] = Field(None, max_length=500)
    duration: Optional[int] = Field(None, ge=1)
    position: Optional[int] = Field(None, ge=0)
    is_preview: bool = False


class CourseModuleResponse(BaseModel):
    id: str
    course_id: str
    title: str
    content: Optional[str] = None
    video_url: Optional[str] = None
    duration: Optional[int] = None
    position: int
    is_preview: bool

    model_config = ConfigDict(from_attributes=True)


class CourseResponse(BaseModel):
    id: str
    title: str
    description: str
    price: float
    currency: str
    thumbnail_image: Optional[str] = None
    instructor_id: Optional[str] = None
    is_published: bool
    duration: int
    level: str
    created_at: datetime
    updated_at: datetime
    module_count: int = 0
    enrollment_count: int = 0
    modules: Optional[list[CourseModuleResponse]] = None

    model_config = ConfigDict(from_attributes=True)


class EnrollRequest(BaseModel):
    provider: Optional[PaymentProvider] = None
    callback_url: Optional[str] = Field(None, max_length=1000)


class EnrollmentResponse(BaseModel):
    id: str
    user_id: str
    course_id: str
    status: str
    progress: int
    amount_paid: float
    completed_at: Optional[datetime] = None
    created_at: datetime
    course: Optional[CourseResponse] = None

    model_config = ConfigDict(from_attributes=True)


class EnrollResult(BaseModel):
    """Free courses return the enrollment; paid courses return a checkout."""

    payment_required: bool
    enrollment: Optional[EnrollmentResponse] = None
    payment_url: Optional[str] = None
    reference: Optional[str] = None
    provider: Optional[str] = None
    amount: Optional[float] = None
    currency: Optional[str] = None


class ProgressUpdateRequest(BaseModel):
    # Range checked in the route so out-of-range values map to a 400 with a clear message
    progress: int


class CourseReviewCreateRequest(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=5000)


class CourseReviewResponse(BaseModel):
    id: str
    user_id: str
    course_id: str
    rating: int
    comment: Optional[str] = None
    is_verified: bool
    created_at: datetime
    user_name: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)
