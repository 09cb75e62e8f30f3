"""
Order and payment schemas.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from infrastructure.database.models.commerce import (
    CouponScope,
    CouponType,
    OrderStatus,
    PaymentProvider,
)

from .catalog import BookSummary
from .common import OffsetPagination


class Address(BaseModel):
    line1: str = Field(..., min_length=1, max_length=255)
    line2: Optional[str] = Field(None, max_length=255)
    city: str = Field(..., min_length=1, max_length=100)
    state: Optional[str] = Field(None, max_length=100)
    postal_code: Optional[str] = Field(None, max_length=20)
    country: str = Field(..., min_length=2, max_length=100)
    phone: Optional[str] = Field(None, max_length=50)


class OrderCreateRequest(BaseModel):
    book_id: str
    coupon_code: Optional[str] = Field(None, min_length=1, max_length=50)
    shipping_address: Optional[Address] = None
    billing_address: Optional[Address] = None
    notes: Optional[str] = Field(None, max_length=1000)


class OrderUpdateRequest(BaseModel):
    """Admins may change anything here; owners may only cancel."""

    status: Optional[OrderStatus] = None
    tracking_number: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = Field(None, max_length=1000)


class OrderResponse(BaseModel):
    id: str
    order_number: str
    user_id: str
    book_id: str
    quantity: int
    total_amount: float
    discount_amount: float = 0.0
    coupon_code: Optional[str] = None
    currency: str
    status: str
    payment_status: str
    payment_provider: Optional[str] = None
    payment_reference: Optional[str] = None
    paid_at: Optional[datetime] = None
    shipping_address: Optional[dict[str, Any]] = None
    billing_address: Optional[dict[str, Any]] = None
    tracking_number: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    book: Optional[BookSummary] = None

    model_config = ConfigDict(from_attributes=True)


class OrderListData(BaseModel):
    orders: list[OrderResponse]
    pagination: OffsetPagination


# ============================================================================
# Payments
# ============================================================================


class PaymentInitializeRequest(BaseModel):
    order_id: str
    provider: PaymentProvider = PaymentProvider.PAYSTACK
    currency: str = Field("NGN", min_length=3, max_length=3)
    callback_url: Optional[str] = Field(None, max_length=1000)

    @field_validator("currency")
    @classmethod
    def upper_currency(cls, v: str) -> str:
        return v.upper()


class PaymentInitializeResponse(BaseModel):
    payment_url: str
    reference: str
    provider: str
    amount: float
    currency: str
    order_id: str
    access_code: Optional[str] = None


class PaymentTransactionResponse(BaseModel):
    id: str
    reference: str
    provider: str
    status: str
    amount: float
    currency: str
    purpose: str
    target_id: str
    payment_url: Optional[str] = None
    verified_at: Optional[datetime] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PaymentVerifyResponse(BaseModel):
    transaction: PaymentTransactionResponse
    successful: bool
    provider_status: str


# ============================================================================
# Coupons
# ============================================================================


class CouponCreateRequest(BaseModel):
    code: str = Field(..., min_length=3, max_length=50, pattern=r"^[A-Za-z0-9_-]+$")
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    type: CouponType
    value: float = Field(..., gt=0)
    min_order_amount: float = Field(0.0, ge=0)
    max_discount_amount: Optional[float] = Field(None, gt=0)
    usage_limit: Optional[int] = Field(None, ge=1)
    user_limit: int = Field(1, ge=1)
    applies_to: CouponScope = CouponScope.ALL
    applicable_items: Optional[list[str]] = None
    starts_at: datetime
    expires_at: Optional[datetime] = None
    is_active: bool = True

    @field_validator("code")
    @classmethod
    def upper_code(cls, v: str) -> str:
        return v.upper()


class CouponUpdateRequest(BaseModel):
    """The code and type of a coupon are fixed once created."""

    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    value: Optional[float] = Field(None, gt=0)
    min_order_amount: Optional[float] = Field(None, ge=0)
    max_discount_amount: Optional[float] = Field(None, gt=0)
    usage_limit: Optional[int] = Field(None, ge=1)
    user_limit: Optional[int] = Field(None, ge=1)
    applies_to: Optional[CouponScope] = None
    applicable_items: Optional[list[str]] = None
    starts_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    is_active: Optional[bool] = None


class CouponResponse(BaseModel):
    id: str
    code: str
    name: str
    description: Optional[str] = None
    type: str
    value: float
    min_order_amount: float
    max_discount_amount: Optional[float] = None
    usage_limit: Optional[int] = None
    user_limit: int
    usage_count: int
    applies_to: str
    applicable_items: Optional[list[str]] = None
    starts_at: datetime
    expires_at: Optional[datetime] = None
    is_active: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class CouponListData(BaseModel):
    coupons: list[CouponResponse]
    pagination: OffsetPagination


class CouponValidateRequest(BaseModel):
    code: str = Field(..., min_length=1, max_length=50)
    order_amount: float = Field(..., gt=0)
    book_id: Optional[str] = None


class CouponSummary(BaseModel):
    id: str
    code: str
    name: str
    type: str
    value: float

    model_config = ConfigDict(from_attributes=True)


class CouponValidateResponse(BaseModel):
    coupon: CouponSummary
    discount: float
    final_amount: float
