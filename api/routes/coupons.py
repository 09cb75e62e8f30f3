"""
Coupon API routes: customer validation and admin management.
"""

import logging
from datetime import UTC, datetime
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_current_admin_user, get_current_user
from api.middleware.rate_limit import limiter
from api.schemas.commerce import (
    CouponCreateRequest,
    CouponListData,
    CouponResponse,
    CouponSummary,
    CouponUpdateRequest,
    CouponValidateRequest,
    CouponValidateResponse,
)
from api.schemas.common import ApiResponse, offset_pagination
from api.utils import is_uuid
from infrastructure.database.connection import get_db
from infrastructure.database.models import Coupon, CouponScope, CouponType, User
from services.coupons import CouponError, get_coupon_by_code, redeemable_coupon

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/coupons", tags=["Coupons"])
admin_router = APIRouter(prefix="/admin/coupons", tags=["Admin"])


def _check_terms(
    coupon_type: str,
    value: float,
    applies_to: str,
    applicable_items: Optional[list[str]],
) -> None:
    if coupon_type == CouponType.PERCENTAGE.value and value > 100:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="A percentage coupon cannot exceed 100",
        )
    if applies_to == CouponScope.SPECIFIC.value and not applicable_items:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Specific coupons need at least one applicable book",
        )


async def _get_coupon(db: AsyncSession, coupon_id: str) -> Coupon:
    coupon = await db.get(Coupon, coupon_id) if is_uuid(coupon_id) else None
    if not coupon:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Coupon not found",
        )
    return coupon


@router.post("/validate", response_model=ApiResponse[CouponValidateResponse])
@limiter.limit("30/minute")
async def validate_coupon(
    request: Request,
    body: CouponValidateRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Preview the discount a coupon gives on an order amount without redeeming it."""
    try:
        coupon, discount = await redeemable_coupon(
            db, body.code, current_user, body.order_amount, body.book_id
        )
    except CouponError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return ApiResponse(data=CouponValidateResponse(
        coupon=CouponSummary.model_validate(coupon),
        discount=discount,
        final_amount=round(body.order_amount - discount, 2),
    ))


# ── Admin management ─────────────────────────────────────────────────────────


@admin_router.get("", response_model=ApiResponse[CouponListData])
async def list_coupons(
    coupon_status: Optional[Literal["active", "expired", "inactive"]] = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    current_admin: User = Depends(get_current_admin_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Coupons, newest first.

    ``status=active`` keeps coupons that are switched on, started and not
    expired; ``expired`` keeps switched-on coupons past their expiry.
    **Admin access required.**
    """
    now = datetime.now(UTC)
    query = select(Coupon)
    if coupon_status == "active":
        query = query.where(
            Coupon.is_active.is_(True),
            Coupon.starts_at <= now,
            or_(Coupon.expires_at.is_(None), Coupon.expires_at > now),
        )
    elif coupon_status == "expired":
        query = query.where(Coupon.is_active.is_(True), Coupon.expires_at < now)
    elif coupon_status == "inactive":
        query = query.where(Coupon.is_active.is_(False))

    total = (await db.execute(select(func.count()).select_from(query.subquery()))).scalar() or 0
    rows = (await db.execute(
        query.order_by(Coupon.created_at.desc()).offset(offset).limit(limit)
    )).scalars().all()

    return ApiResponse(data=CouponListData(
        coupons=[CouponResponse.model_validate(c) for c in rows],
        pagination=offset_pagination(total, limit, offset),
    ))


@admin_router.post(
    "",
    response_model=ApiResponse[CouponResponse],
    status_code=status.HTTP_201_CREATED,
)
async def create_coupon(
    body: CouponCreateRequest,
    current_admin: User = Depends(get_current_admin_user),
    db: AsyncSession = Depends(get_db),
):
    """Create a coupon. Codes are stored upper-case. **Admin access required.**"""
    _check_terms(body.type.value, body.value, body.applies_to.value, body.applicable_items)
    if await get_coupon_by_code(db, body.code):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Coupon code already exists",
        )

    coupon = Coupon(
        **body.model_dump(exclude={"type", "applies_to"}),
        type=body.type.value,
        applies_to=body.applies_to.value,
        created_by=current_admin.id,
    )
    db.add(coupon)
    await db.commit()
    await db.refresh(coupon)

    logger.info("Coupon %s created by %s", coupon.code, current_admin.id)
    return ApiResponse(
        data=CouponResponse.model_validate(coupon),
        message="Coupon created successfully",
    )


@admin_router.get("/{coupon_id}", response_model=ApiResponse[CouponResponse])
async def get_coupon(
    coupon_id: str,
    current_admin: User = Depends(get_current_admin_user),
    db: AsyncSession = Depends(get_db),
):
    return ApiResponse(data=CouponResponse.model_validate(await _get_coupon(db, coupon_id)))


@admin_router.put("/{coupon_id}", response_model=ApiResponse[CouponResponse])
async def update_coupon(
    coupon_id: str,
    body: CouponUpdateRequest,
    current_admin: User = Depends(get_current_admin_user),
    db: AsyncSession = Depends(get_db),
):
    """Change a coupon's terms or switch it off. **Admin access required.**"""
    coupon = await _get_coupon(db, coupon_id)
    updates = body.model_dump(exclude_unset=True)
    if updates.get("applies_to") is not None:
        updates["applies_to"] = updates["applies_to"].value

    _check_terms(
        coupon.type,
        updates.get("value") or coupon.value,
        updates.get("applies_to") or coupon.applies_to,
        updates["applicable_items"] if "applicable_items" in updates else coupon.applicable_items,
    )
    for field, value in updates.items():
        setattr(coupon, field, value)

    await db.commit()
    await db.refresh(coupon)
    return ApiResponse(
        data=CouponResponse.model_validate(coupon),
        message="Coupon updated successfully",
    )


@admin_router.delete("/{coupon_id}")
async def delete_coupon(
    coupon_id: str,
    current_admin: User = Depends(get_current_admin_user),
    db: AsyncSession = Depends(get_db),
) -> dict:
    """Delete a coupon and its redemption history. **Admin access required.**"""
    coupon = await _get_coupon(db, coupon_id)
    await db.delete(coupon)
    await db.commit()
    logger.info("Coupon %s deleted by %s", coupon.code, current_admin.id)
    return {"success": True, "message": "Coupon deleted successfully"}
