"""
API dependencies for authentication and authorization.
"""

from typing import Annotated

from fastapi import Depends, HTTPException, status

from api.routes.auth import get_current_user, get_optional_user
from infrastructure.database.models.user import User

__all__ = [
    "get_current_user",
    "get_optional_user",
    "get_current_admin_user",
    "get_current_author_user",
]


async def get_current_admin_user(
    current_user: Annotated[User, Depends(get_current_user)],
) -> User:
    """
    Dependency to get the current authenticated admin user.

    Ensures the user has the admin role.
    """
    if not current_user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return current_user


async def get_current_author_user(
    current_user: Annotated[User, Depends(get_current_user)],
) -> User:
    """Authors and admins may manage editorial content."""
    if not current_user.is_author:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Author access required",
        )
    return current_user
