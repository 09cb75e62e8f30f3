"""
Catalog schemas: categories, books, reviews, wishlist and reading progress.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from infrastructure.database.models.catalog import BookStatus, CategoryType

from .common import ApiResponse, OffsetPagination, PagePagination

# ============================================================================
# Categories
# ============================================================================


class CategoryCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    type: CategoryType = CategoryType.BOOK
    color: Optional[str] = Field(None, max_length=20)
    is_active: bool = True


class CategoryUpdateRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    color: Optional[str] = Field(None, max_length=20)
    is_active: Optional[bool] = None


class CategoryResponse(BaseModel):
    id: str
    name: str
    slug: str
    description: Optional[str] = None
    type: str
    color: Optional[str] = None
    is_active: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ============================================================================
# Books
# ============================================================================


class BookCreateRequest(BaseModel):
    """Payload for adding a book to the catalog."""

    title: str = Field(..., min_length=1, max_length=200)
    author: str = Field(..., min_length=1, max_length=100)
    description: str = Field(..., min_length=10, max_length=2000)
    excerpt: Optional[str] = Field(None, max_length=5000)
    price: float = Field(0.0, ge=0, le=1_000_000)
    is_free: bool = False
    currency: str = Field("NGN", min_length=3, max_length=3)
    category: str = Field(..., min_length=1, max_length=100)
    status: BookStatus = BookStatus.DRAFT
    slug: Optional[str] = Field(None, max_length=250)
    cover_image: Optional[str] = Field(None, max_length=500)
    book_file: Optional[str] = Field(None, max_length=500)
    tags: list[str] = Field(default_factory=list)
    stock: Optional[int] = Field(None, ge=0)
    is_available: bool = True
    isbn: Optional[str] = Field(None, max_length=20)
    page_count: Optional[int] = Field(None, ge=1)
    language: str = Field("English", max_length=50)
    royalty_rate: float = Field(70.0, ge=0, le=100)
    author_id: Optional[str] = None

    @model_validator(mode="after")
    def check_price(self) -> "BookCreateRequest":
        if self.is_free:
            self.price = 0.0
        elif self.price <= 0:
            raise ValueError("Paid books must have a price greater than 0")
        return self


class BookUpdateRequest(BaseModel):
    """Partial update; omitted fields are left unchanged."""

    title: Optional[str] = Field(None, min_length=1, max_length=200)
    author: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, min_length=10, max_length=2000)
    excerpt: Optional[str] = Field(None, max_length=5000)
    price: Optional[float] = Field(None, ge=0, le=1_000_000)
    is_free: Optional[bool] = None
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    category: Optional[str] = Field(None, min_length=1, max_length=100)
    status: Optional[BookStatus] = None
    slug: Optional[str] = Field(None, min_length=1, max_length=250)
    cover_image: Optional[str] = Field(None, max_length=500)
    book_file: Optional[str] = Field(None, max_length=500)
    tags: Optional[list[str]] = None
    stock: Optional[int] = Field(None, ge=0)
    is_available: Optional[bool] = None
    isbn: Optional[str] = Field(None, max_length=20)
    page_count: Optional[int] = Field(None, ge=1)
    language: Optional[str] = Field(None, max_length=50)
    royalty_rate: Optional[float] = Field(None, ge=0, le=100)


class BookSummary(BaseModel):
    id: str
    title: str
    slug: str
    author: str
    price: float
    currency: str
    is_free: bool
    cover_image: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class BookDownloadResponse(BaseModel):
    book_id: str
    book_title: str
    download_url: str
    is_free: bool
    order_number: Optional[str] = None


class BookResponse(BaseModel):
    id: str
    title: str
    slug: str
    author: str
    author_id: Optional[str] = None
    description: str
    excerpt: Optional[str] = None
    price: float
    is_free: bool
    currency: str
    cover_image: Optional[str] = None
    category: str
    tags: Optional[list[str]] = None
    stock: Optional[int] = None
    is_available: bool
    isbn: Optional[str] = None
    page_count: Optional[int] = None
    language: str
    status: str
    published_at: Optional[datetime] = None
    royalty_rate: float
    sales_count: int
    created_at: datetime
    updated_at: datetime
    average_rating: float = 0.0
    review_count: int = 0

    model_config = ConfigDict(from_attributes=True)


class BookListData(BaseModel):
    books: list[BookResponse]
    pagination: PagePagination


class BookListResponse(ApiResponse[BookListData]):
    """Book list envelope; ``cached`` tells whether it came from the cache."""

    cached: bool = False


# ============================================================================
# Reviews
# ============================================================================


class ReviewCreateRequest(BaseModel):
    book_id: str
    rating: int = Field(..., ge=1, le=5)
    title: Optional[str] = Field(None, max_length=200)
    comment: Optional[str] = Field(None, max_length=5000)


class ReviewUpdateRequest(BaseModel):
    rating: Optional[int] = Field(None, ge=1, le=5)
    title: Optional[str] = Field(None, max_length=200)
    comment: Optional[str] = Field(None, max_length=5000)


class ReviewResponse(BaseModel):
    id: str
    user_id: str
    book_id: str
    rating: int
    title: Optional[str] = None
    comment: Optional[str] = None
    is_verified_purchase: bool
    status: str
    created_at: datetime
    updated_at: datetime
    user_name: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class ReviewStatistics(BaseModel):
    total_reviews: int
    average_rating: float
    rating_distribution: dict[int, int]


class ReviewListData(BaseModel):
    reviews: list[ReviewResponse]
    pagination: OffsetPagination
    statistics: Optional[ReviewStatistics] = None


# ============================================================================
# Wishlist
# ============================================================================


class WishlistAddRequest(BaseModel):
    book_id: str


class WishlistItemResponse(BaseModel):
    id: str
    book_id: str
    created_at: datetime
    book: Optional[BookSummary] = None


# ============================================================================
# Reading progress
# ============================================================================


class ReadingProgressUpdateRequest(BaseModel):
    """Upsert payload. ``percentage`` is derived from pages when omitted."""

    book_id: str
    current_page: int = Field(0, ge=0)
    total_pages: Optional[int] = Field(None, ge=1)
    percentage: Optional[float] = Field(None, ge=0, le=100)
    notes: Optional[str] = Field(None, max_length=10000)
    is_completed: Optional[bool] = None


class ReadingProgressResponse(BaseModel):
    id: str
    book_id: str
    current_page: int
    total_pages: Optional[int] = None
    percentage: float
    notes: Optional[str] = None
    is_completed: bool
    completed_at: Optional[datetime] = None
    last_read_at: Optional[datetime] = None
    book: Optional[BookSummary] = None

    model_config = ConfigDict(from_attributes=True)


class ReadingSummary(BaseModel):
    total_books: int
    completed_books: int
    currently_reading: int


class ReadingProgressListData(BaseModel):
    progress: list[ReadingProgressResponse]
    summary: ReadingSummary
