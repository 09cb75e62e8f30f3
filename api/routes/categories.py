"""
Category API routes.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_current_admin_user
from api.schemas.catalog import CategoryCreateRequest, CategoryResponse, CategoryUpdateRequest
from api.schemas.common import ApiResponse
from api.utils import like_pattern, slugify, unique_slug
from infrastructure.database.connection import get_db
from infrastructure.database.models import Category, CategoryType, User

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/categories", tags=["Categories"])


async def _get_category(db: AsyncSession, category_id: str) -> Category:
    category = await db.get(Category, category_id)
    if not category:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Category not found",
        )
    return category


async def _ensure_name_free(
    db: AsyncSession, name: str, type_: str, exclude_id: Optional[str] = None
) -> None:
    query = select(Category.id).where(
        func.lower(Category.name) == name.strip().lower(),
        Category.type == type_,
    )
    if exclude_id:
        query = query.where(Category.id != exclude_id)
    if (await db.execute(query)).first() is not None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="A category with this name already exists",
        )


@router.get("", response_model=ApiResponse[list[CategoryResponse]])
async def list_categories(
    type: Optional[CategoryType] = None,
    search: Optional[str] = Query(None, max_length=100),
    active: Optional[bool] = None,
    db: AsyncSession = Depends(get_db),
):
    """List categories, alphabetically."""
    query = select(Category)
    if type:
        query = query.where(Category.type == type.value)
    if active is not None:
        query = query.where(Category.is_active == active)
    if search:
        pattern = like_pattern(search)
        query = query.where(or_(
            Category.name.ilike(pattern, escape="\\"),
            Category.description.ilike(pattern, escape="\\"),
        ))

    result = await db.execute(query.order_by(Category.name.asc()))
    categories = result.scalars().all()
    return ApiResponse(data=[CategoryResponse.model_validate(c) for c in categories])


@router.post(
    "",
    response_model=ApiResponse[CategoryResponse],
    status_code=status.HTTP_201_CREATED,
)
async def create_category(
    body: CategoryCreateRequest,
    admin_user: User = Depends(get_current_admin_user),
    db: AsyncSession = Depends(get_db),
):
    await _ensure_name_free(db, body.name, body.type.value)

    category = Category(
        name=body.name.strip(),
        slug=await unique_slug(db, Category, slugify(body.name)),
        description=body.description,
        type=body.type.value,
        color=body.color,
        is_active=body.is_active,
    )
    db.add(category)
    await db.commit()
    await db.refresh(category)

    logger.info("Category %s created by %s", category.slug, admin_user.id)
    return ApiResponse(data=CategoryResponse.model_validate(category), message="Category created")


@router.put("/{category_id}", response_model=ApiResponse[CategoryResponse])
async def update_category(
    category_id: str,
    body: CategoryUpdateRequest,
    admin_user: User = Depends(get_current_admin_user),
    db: AsyncSession = Depends(get_db),
):
    category = await _get_category(db, category_id)
    updates = body.model_dump(exclude_unset=True)

    if updates.get("name") and updates["name"].strip().lower() != category.name.lower():
        await _ensure_name_free(db, updates["name"], category.type, exclude_id=category.id)
        category.slug = await unique_slug(
            db, Category, slugify(updates["name"]), exclude_id=category.id
        )

    for field, value in updates.items():
        if value is None and field == "name":
            continue
        setattr(category, field, value.strip() if field == "name" else value)

    await db.commit()
    await db.refresh(category)
    return ApiResponse(data=CategoryResponse.model_validate(category), message="Category updated")


@router.delete("/{category_id}")
async def delete_category(
    category_id: str,
    admin_user: User = Depends(get_current_admin_user),
    db: AsyncSession = Depends(get_db),
) -> dict:
    category = await _get_category(db, category_id)
    await db.delete(category)
    await db.commit()
    return {"success": True, "message": "Category deleted"}
