"""
API request and response schemas.
"""

from .auth import (
    LoginRequest,
    PasswordChangeRequest,
    PasswordResetConfirm,
    PasswordResetRequest,
    RefreshTokenRequest,
    RegisterRequest,
    TokenResponse,
    UserResponse,
)
from .common import ApiResponse, ErrorResponse, OffsetPagination, PagePagination

__all__ = [
    "ApiResponse",
    "ErrorResponse",
    "OffsetPagination",
    "PagePagination",
    "LoginRequest",
    "RegisterRequest",
    "TokenResponse",
    "UserResponse",
    "PasswordResetRequest",
    "PasswordResetConfirm",
    "PasswordChangeRequest",
    "RefreshTokenRequest",
]
