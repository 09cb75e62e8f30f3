"""
Response envelope shared by every endpoint.

Successful responses are ``{"success": true, "data": ..., "message": ...}``;
errors are rendered by the exception handlers in ``main`` as
``{"success": false, "error": ...}``.
"""

from typing import Generic, Optional, TypeVar

from pydantic import BaseModel, Field

T = TypeVar("T")


class ApiResponse(BaseModel, Generic[T]):
    """Success envelope."""

    success: bool = True
    data: Optional[T] = None
    message: Optional[str] = None


class ErrorResponse(BaseModel):
    """Error envelope (documentation only; produced by exception handlers)."""

    success: bool = False
    error: str
    details: Optional[list] = None
    error_id: Optional[str] = None


class PagePagination(BaseModel):
    """Page-number pagination block."""

    page: int
    limit: int
    total: int
    total_pages: int
    has_next_page: bool
    has_prev_page: bool


class OffsetPagination(BaseModel):
    """Limit/offset pagination block."""

    total: int
    limit: int
    offset: int
    has_more: bool = Field(..., description="More rows exist past this page")


def offset_pagination(total: int, limit: int, offset: int) -> OffsetPagination:
    return OffsetPagination(
        total=total,
        limit=limit,
        offset=offset,
        has_more=offset + limit < total,
    )
