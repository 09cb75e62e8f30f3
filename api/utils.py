"""
Shared API utility functions.
"""

import random
import re
import string
import time
from datetime import UTC, datetime
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession


def escape_like(value: str) -> str:
    """Escape LIKE wildcards for safe use in SQL LIKE/ILIKE patterns."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def like_pattern(value: str) -> str:
    return f"%{escape_like(value.strip())}%"


def slugify(text: str) -> str:
    """Convert text to URL-safe slug."""
    text = text.lower().strip()
    text = re.sub(r"[^\w\s-]", "", text)
    text = re.sub(r"[\s_-]+", "-", text)
    text = re.sub(r"^-+|-+$", "", text)
    return text[:200]


async def unique_slug(
    db: AsyncSession,
    model: Any,
    base: str,
    exclude_id: Optional[str] = None,
) -> str:
    """
    Return ``base`` or the first free ``base-N`` for ``model.slug``.

    Args:
        db: Database session
        model: ORM class with a ``slug`` column
        base: Desired slug, already slugified
        exclude_id: Row to ignore (the row being updated)
    """
    base = base or "untitled"
    candidate = base
    counter = 1
    while True:
        query = select(model.id).where(model.slug == candidate)
        if exclude_id:
            query = query.where(model.id != exclude_id)
        if (await db.execute(query)).first() is None:
            return candidate
        candidate = f"{base}-{counter}"
        counter += 1


def generate_order_number() -> str:
    """``ORD-`` + last 6 digits of the ms timestamp + 6 random uppercase characters."""
    stamp = str(int(time.time() * 1000))[-6:]
    suffix = "".join(random.choices(string.ascii_uppercase + string.digits, k=6))
    return f"ORD-{stamp}{suffix}"


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes (as returned by SQLite) as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def pagination(page: int, limit: int, total: int) -> dict[str, Any]:
    total_pages = (total + limit - 1) // limit if total else 0
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "total_pages": total_pages,
        "has_next_page": page < total_pages,
        "has_prev_page": page > 1,
    }


def is_uuid(value: str) -> bool:
    """True when ``value`` parses as a UUID (guards lookups on UUID columns)."""
    try:
        UUID(value)
    except ValueError:
        return False
    return True
