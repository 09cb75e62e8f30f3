"""
Blog post and newsletter schemas.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from infrastructure.database.models.blog import BlogStatus

from .common import OffsetPagination


class BlogPostCreateRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    content: str = Field(..., min_length=1)
    excerpt: str = Field(..., min_length=1, max_length=1000)
    slug: Optional[str] = Field(None, max_length=300)
    cover_image: Optional[str] = Field(None, max_length=500)
    status: BlogStatus = BlogStatus.DRAFT
    category: Optional[str] = Field(None, max_length=100)
    tags: list[str] = Field(default_factory=list)
    seo_title: Optional[str] = Field(None, max_length=255)
    seo_description: Optional[str] = Field(None, max_length=500)


class BlogPostUpdateRequest(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    content: Optional[str] = Field(None, min_length=1)
    excerpt: Optional[str] = Field(None, min_length=1, max_length=1000)
    slug: Optional[str] = Field(None, min_length=1, max_length=300)
    cover_image: Optional[str] = Field(None, max_length=500)
    status: Optional[BlogStatus] = None
    category: Optional[str] = Field(None, max_length=100)
    tags: Optional[list[str]] = None
    seo_title: Optional[str] = Field(None, max_length=255)
    seo_description: Optional[str] = Field(None, max_length=500)


class BlogPostResponse(BaseModel):
    id: str
    title: str
    slug: str
    excerpt: str
    content: str
    content_html: Optional[str] = None
    cover_image: Optional[str] = None
    status: str
    category: Optional[str] = None
    tags: Optional[list[str]] = None
    author_id: Optional[str] = None
    seo_title: Optional[str] = None
    seo_description: Optional[str] = None
    published_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class BlogPostListData(BaseModel):
    posts: list[BlogPostResponse]
    pagination: OffsetPagination


class NewsletterSubscribeRequest(BaseModel):
    email: EmailStr
    name: Optional[str] = Field(None, max_length=255)


class NewsletterStatus(BaseModel):
    email: str
    is_subscribed: bool
    already_subscribed: bool = False
    reactivated: bool = False
    subscribed_at: Optional[datetime] = None
