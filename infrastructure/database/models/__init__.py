"""
SQLAlchemy database models.
"""

from .academy import Course, CourseLevel, CourseModule, CourseReview, Enrollment, EnrollmentStatus
from .base import Base, TimestampMixin
from .blog import BlogPost, BlogStatus, NewsletterSubscriber
from .catalog import (
    Book,
    BookStatus,
    Category,
    CategoryType,
    ReadingProgress,
    Review,
    ReviewStatus,
    Wishlist,
)
from .commerce import (
    Coupon,
    CouponScope,
    CouponType,
    CouponUsage,
    Order,
    OrderStatus,
    PaymentProvider,
    PaymentPurpose,
    PaymentStatus,
    PaymentTransaction,
)
from .events import Event, EventRegistration, EventStatus, EventType, RegistrationStatus
from .publishing import SUBMISSION_FEE, BookSubmission, SubmissionStatus
from .user import User, UserRole, UserStatus

__all__ = [
    "Base",
    "TimestampMixin",
    "User",
    "UserRole",
    "UserStatus",
    "Category",
    "CategoryType",
    "Book",
    "BookStatus",
    "Review",
    "ReviewStatus",
    "Wishlist",
    "ReadingProgress",
    "Order",
    "OrderStatus",
    "PaymentStatus",
    "PaymentProvider",
    "PaymentPurpose",
    "PaymentTransaction",
    "Coupon",
    "CouponScope",
    "CouponType",
    "CouponUsage",
    "BookSubmission",
    "SubmissionStatus",
    "SUBMISSION_FEE",
    "Course",
    "CourseLevel",
    "CourseModule",
    "CourseReview",
    "Enrollment",
    "EnrollmentStatus",
    "Event",
    "EventType",
    "EventStatus",
    "EventRegistration",
    "RegistrationStatus",
    "BlogPost",
    "BlogStatus",
    "NewsletterSubscriber",
]
