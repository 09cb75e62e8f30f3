"""
Coupon redemption rules.

A coupon is checked against the customer, the book and the order amount
before any discount is applied. ``CouponError`` carries the message shown
to the customer.
"""

import logging
from datetime import UTC, datetime
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from infrastructure.database.models import (
    Coupon,
    CouponScope,
    CouponType,
    CouponUsage,
    Order,
    User,
)

logger = logging.getLogger(__name__)


class CouponError(Exception):
    """A coupon cannot be redeemed; the message is safe to show."""

    pass


def _utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    return value if value.tzinfo else value.replace(tzinfo=UTC)


def normalize_code(code: str) -> str:
    return code.strip().upper()


def calculate_discount(coupon: Coupon, amount: float) -> float:
    """Discount for ``amount``, capped by the coupon maximum and the amount itself."""
    if coupon.type == CouponType.PERCENTAGE.value:
        discount = amount * coupon.value / 100
        if coupon.max_discount_amount is not None:
            discount = min(discount, coupon.max_discount_amount)
    else:
        discount = coupon.value
    return round(min(discount, amount), 2)


def applies_to_book(coupon: Coupon, book_id: Optional[str]) -> bool:
    if coupon.applies_to == CouponScope.SPECIFIC.value:
        return book_id is not None and book_id in (coupon.applicable_items or [])
    return True


async def get_coupon_by_code(db: AsyncSession, code: str) -> Optional[Coupon]:
    result = await db.execute(select(Coupon).where(Coupon.code == normalize_code(code)))
    return result.scalar_one_or_none()


async def redeemable_coupon(
    db: AsyncSession,
    code: str,
    user: User,
    amount: float,
    book_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> tuple[Coupon, float]:
    """
    Check every redemption rule and return the coupon with its discount.

    Raises:
        CouponError: With the first rule the coupon fails
    """
    now = now or datetime.now(UTC)
    coupon = await get_coupon_by_code(db, code)
    if coupon is None:
        raise CouponError("Invalid coupon code")
    if not coupon.is_active:
        raise CouponError("This coupon is no longer active")
    if now < _utc(coupon.starts_at):
        raise CouponError("This coupon is not yet available")
    if coupon.expires_at and now > _utc(coupon.expires_at):
        raise CouponError("This coupon has expired")
    if amount < coupon.min_order_amount:
        raise CouponError(f"Minimum order amount of {coupon.min_order_amount:g} required")
    if coupon.usage_limit is not None and coupon.usage_count >= coupon.usage_limit:
        raise CouponError("This coupon has reached its usage limit")

    used = (await db.execute(
        select(func.count(CouponUsage.id)).where(
            CouponUsage.coupon_id == coupon.id,
            CouponUsage.user_id == user.id,
        )
    )).scalar() or 0
    if used >= coupon.user_limit:
        times = "time" if coupon.user_limit == 1 else "times"
        raise CouponError(f"You have already used this coupon {coupon.user_limit} {times}")

    if not applies_to_book(coupon, book_id):
        raise CouponError("This coupon is not applicable to the items in your order")

    return coupon, calculate_discount(coupon, amount)


def record_usage(
    db: AsyncSession, coupon: Coupon, user: User, order: Order, discount: float
) -> CouponUsage:
    """Count a redemption against the coupon's limits. The caller commits."""
    coupon.usage_count += 1
    usage = CouponUsage(
        coupon_id=coupon.id,
        user_id=user.id,
        order_id=order.id,
        discount_amount=discount,
    )
    db.add(usage)
    logger.info("Coupon %s redeemed by %s on order %s", coupon.code, user.id, order.order_number)
    return usage
