"""
Admin API schemas for platform statistics and monitoring.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

# ============================================================================
# Dashboard statistics
# ============================================================================


class UserStats(BaseModel):
    total: int = Field(..., description="All registered users")
    new: int = Field(..., description="Users created within the range")
    active: int = Field(..., description="Users who logged in within the range")
    by_role: dict[str, int]


class TopBook(BaseModel):
    id: str
    title: str
    author: str
    sales_count: int
    total_revenue: float


class BookStats(BaseModel):
    total: int
    new: int
    published: int
    by_status: dict[str, int]
    top_selling: list[TopBook]


class RecentOrder(BaseModel):
    id: str
    order_number: str
    total_amount: float
    currency: str
    status: str
    payment_status: str
    created_at: datetime
    customer_name: Optional[str] = None
    book_title: Optional[str] = None


class OrderStats(BaseModel):
    total: int
    total_revenue: float
    new: int
    new_revenue: float
    completed: int
    by_status: dict[str, int]
    recent: list[RecentOrder]


class UpcomingEvent(BaseModel):
    id: str
    title: str
    start_date: datetime
    registration_count: int


class EventStats(BaseModel):
    total: int
    new: int
    upcoming: int
    total_registrations: int
    recent: list[UpcomingEvent]


class TopCourse(BaseModel):
    id: str
    title: str
    enrollment_count: int


class CourseStats(BaseModel):
    total: int
    new: int
    published: int
    total_enrollments: int
    top_courses: list[TopCourse]


class CurrencyRevenue(BaseModel):
    total: float = Field(..., description="Sum of all successful payment transactions")
    period: float = Field(..., description="Successful payments within the range")
    author_earnings: float = Field(..., description="Royalty share of paid book orders")
    platform_fees: float


class RevenueStats(CurrencyRevenue):
    currency: str = Field(..., description="Currency of the top-level figures")
    by_currency: dict[str, CurrencyRevenue]


class RecentSubmissionItem(BaseModel):
    id: str
    title: str
    status: str
    author_name: Optional[str] = None
    created_at: datetime


class SubmissionStats(BaseModel):
    total: int
    new: int
    by_status: dict[str, int]
    pending_review: int = Field(..., description="Paid submissions waiting for a decision")
    recent: list[RecentSubmissionItem]


class RecentPost(BaseModel):
    id: str
    title: str
    slug: str
    status: str
    created_at: datetime


class BlogStats(BaseModel):
    total: int
    new: int
    published: int
    recent: list[RecentPost]


class ActivityItem(BaseModel):
    type: str
    id: str
    description: str
    timestamp: datetime


class AdminStatsResponse(BaseModel):
    users: UserStats
    books: BookStats
    orders: OrderStats
    events: EventStats
    courses: CourseStats
    submissions: SubmissionStats
    revenue: RevenueStats
    blog: BlogStats
    recent_activity: list[ActivityItem]
    time_range: str


# ============================================================================
# Monitoring
# ============================================================================


class MonitoringActionRequest(BaseModel):
    """``resolve`` needs ``alert_id``; ``clear_cache`` and ``cleanup_logs`` take no arguments."""

    action: str = Field(..., min_length=1, max_length=50)
    alert_id: Optional[str] = None


class MonitoringOverview(BaseModel):
    status: str
    total_requests: int
    error_rate: float
    average_response_time: float
    cache_hit_rate: float
    active_alerts: int


class HealthCheck(BaseModel):
    status: str
    details: dict[str, Any] = Field(default_factory=dict)


class SystemHealth(BaseModel):
    status: str
    checks: dict[str, HealthCheck]
    payment_providers: dict[str, bool]


class MonitoringResponse(BaseModel):
    overview: MonitoringOverview
    performance: dict[str, Any]
    errors: dict[str, Any]
    cache: dict[str, Any]
    database: Optional[dict[str, int]] = None
    system: SystemHealth
    time_window: int
    timestamp: datetime
