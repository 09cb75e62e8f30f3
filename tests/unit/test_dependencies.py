"""
Unit tests for role-based access dependencies and user state helpers.

- get_current_admin_user requires the admin role
- get_current_author_user accepts authors and admins
"""

from datetime import datetime, timezone
from uuid import uuid4

import pytest
from fastapi import HTTPException, status

import api.routes  # noqa: F401  (load routes first; api.dependencies is part of an import cycle with api.routes)
from api.dependencies import get_current_admin_user, get_current_author_user
from infrastructure.database.models import User
from infrastructure.database.models.user import UserRole, UserStatus


def build_user(role: str, user_status: str = UserStatus.ACTIVE.value) -> User:
    return User(
        id=str(uuid4()),
        email=f"{role}@example.com",
        password_hash="hashed_password",
        name=f"{role.title()} User",
        role=role,
        status=user_status,
        email_verified=True,
    )


@pytest.fixture
def reader():
    return build_user(UserRole.READER.value)


@pytest.fixture
def author():
    return build_user(UserRole.AUTHOR.value)


@pytest.fixture
def admin():
    return build_user(UserRole.ADMIN.value)


class TestGetCurrentAdminUser:
    async def test_admin_granted(self, admin):
        assert await get_current_admin_user(current_user=admin) is admin

    @pytest.mark.parametrize("role", [UserRole.READER.value, UserRole.AUTHOR.value])
    async def test_others_denied(self, role):
        with pytest.raises(HTTPException) as exc_info:
            await get_current_admin_user(current_user=build_user(role))

        assert exc_info.value.status_code == status.HTTP_403_FORBIDDEN
        assert exc_info.value.detail == "Admin access required"


class TestGetCurrentAuthorUser:
    async def test_author_granted(self, author):
        assert await get_current_author_user(current_user=author) is author

    async def test_admin_granted(self, admin):
        assert await get_current_author_user(current_user=admin) is admin

    async def test_reader_denied(self, reader):
        with pytest.raises(HTTPException) as exc_info:
            await get_current_author_user(current_user=reader)

        assert exc_info.value.status_code == status.HTTP_403_FORBIDDEN
        assert exc_info.value.detail == "Author access required"


class TestUserState:
    def test_active_user(self, reader):
        assert reader.is_active is True
        assert reader.is_admin is False
        assert reader.is_author is False

    @pytest.mark.parametrize(
        "user_status", [UserStatus.PENDING.value, UserStatus.SUSPENDED.value]
    )
    def test_inactive_statuses(self, user_status):
        assert build_user(UserRole.READER.value, user_status).is_active is False

    def test_soft_deleted_user(self, admin):
        admin.deleted_at = datetime.now(timezone.utc)
        assert admin.is_active is False
