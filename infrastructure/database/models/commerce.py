"""
Commerce models: book orders, coupons and payment transactions.
"""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import uuid4

from sqlalchemy import JSON, Boolean, DateTime, Float, ForeignKey, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin


class OrderStatus(str, Enum):
    """Fulfilment status of an order."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    """Payment state shared by orders, registrations and transactions."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class PaymentProvider(str, Enum):
    PAYSTACK = "paystack"
    FLUTTERWAVE = "flutterwave"


class PaymentPurpose(str, Enum):
    """What a payment transaction pays for."""

    BOOK_ORDER = "book_order"
    COURSE_ENROLLMENT = "course_enrollment"
    EVENT_REGISTRATION = "event_registration"
    SUBMISSION_FEE = "submission_fee"


class Order(Base, TimestampMixin):
    """A purchase of a single book."""

    __tablename__ = "orders"

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    order_number: Mapped[str] = mapped_column(
        String(50), unique=True, nullable=False, index=True
    )
    user_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    book_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("books.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    quantity: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    total_amount: Mapped[float] = mapped_column(Float, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="NGN", nullable=False)
    discount_amount: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    coupon_code: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    status: Mapped[str] = mapped_column(
        String(50), default=OrderStatus.PENDING.value, nullable=False
    )
    payment_status: Mapped[str] = mapped_column(
        String(50), default=PaymentStatus.PENDING.value, nullable=False
    )
    payment_provider: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    payment_reference: Mapped[Optional[str]] = mapped_column(
        String(100), nullable=True, index=True
    )
    paid_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    shipping_address: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    billing_address: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    tracking_number: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("ix_orders_user_created", "user_id", "created_at"),
        Index("ix_orders_status", "status", "payment_status"),
    )

    def __repr__(self) -> str:
        return f"<Order(number={self.order_number}, status={self.status})>"

    @property
    def is_paid(self) -> bool:
        return self.payment_status == PaymentStatus.COMPLETED.value


class PaymentTransaction(Base, TimestampMixin):
    """One attempt to collect money through a payment provider."""

    __tablename__ = "payment_transactions"

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    reference: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    provider: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(
        String(50), default=PaymentStatus.PENDING.value, nullable=False
    )
    amount: Mapped[float] = mapped_column(Float, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="NGN", nullable=False)
    customer_email: Mapped[str] = mapped_column(String(255), nullable=False)

    user_id: Mapped[Optional[str]] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    purpose: Mapped[str] = mapped_column(String(50), nullable=False)
    # Id of the order, course or event registration this pays for
    target_id: Mapped[str] = mapped_column(String(64), nullable=False)

    payment_url: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    extra_metadata: Mapped[Optional[dict]] = mapped_column("metadata", JSON, nullable=True)
    provider_response: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    verified_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    __table_args__ = (
        Index("ix_payment_transactions_target", "purpose", "target_id"),
        Index("ix_payment_transactions_status_created", "status", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<PaymentTransaction(reference={self.reference}, provider={self.provider}, "
            f"status={self.status})>"
        )


class CouponType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class CouponScope(str, Enum):
    """Which books a coupon can be redeemed against."""

    ALL = "all"
    BOOKS = "books"
    SPECIFIC = "specific"


class Coupon(Base, TimestampMixin):
    """A discount code redeemable when placing a book order."""

    __tablename__ = "coupons"

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    # Stored upper-case
    code: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    value: Mapped[float] = mapped_column(Float, nullable=False)
    min_order_amount: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    max_discount_amount: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    usage_limit: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    user_limit: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    usage_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    applies_to: Mapped[str] = mapped_column(
        String(20), default=CouponScope.ALL.value, nullable=False
    )
    # Book ids for the "specific" scope
    applicable_items: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)

    starts_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_by: Mapped[Optional[str]] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<Coupon(code={self.code}, type={self.type}, value={self.value})>"


class CouponUsage(Base, TimestampMixin):
    """One redemption of a coupon on an order."""

    __tablename__ = "coupon_usage"

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    coupon_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("coupons.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    order_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
    )
    discount_amount: Mapped[float] = mapped_column(Float, nullable=False)

    __table_args__ = (
        Index("ix_coupon_usage_coupon_user", "coupon_id", "user_id"),
    )
