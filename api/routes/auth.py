"""
Authentication API routes.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Annotated, Optional

from fastapi import APIRouter, Body, Depends, Header, HTTPException, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from adapters.email.resend_adapter import email_service
from api.middleware.rate_limit import get_rate_limit, limiter
from api.schemas.auth import (
    EmailVerificationRequest,
    LoginRequest,
    PasswordChangeRequest,
    PasswordResetConfirm,
    PasswordResetRequest,
    RefreshTokenRequest,
    RegisterRequest,
    ResendVerificationRequest,
    TokenResponse,
    UserResponse,
    UserUpdateRequest,
)
from api.schemas.common import ApiResponse
from api.utils import as_utc
from core.security.password import password_hasher
from core.security.tokens import TokenPayload, TokenService
from infrastructure.config.settings import settings
from infrastructure.database.connection import get_db
from infrastructure.database.models.user import User, UserStatus

logger = logging.getLogger(__name__)


def _get_cookie_kwargs() -> dict:
    """Cookie attributes for the current deployment.

    Cross-site deployments (production, or a non-localhost frontend) need
    ``SameSite=None; Secure``; local development keeps ``Lax`` over HTTP.
    """
    is_deployed = not any(
        h in settings.frontend_url for h in ("localhost", "127.0.0.1", "0.0.0.0")
    )
    cross_site = settings.is_production or is_deployed
    return dict(
        httponly=True,
        secure=cross_site,
        samesite="none" if cross_site else "lax",
        path="/",
    )


def _set_auth_cookies(response: JSONResponse, access_token: str, refresh_token: str) -> None:
    kwargs = _get_cookie_kwargs()
    response.set_cookie(
        "access_token", access_token,
        max_age=settings.jwt_access_token_expire_minutes * 60, **kwargs,
    )
    response.set_cookie(
        "refresh_token", refresh_token,
        max_age=settings.jwt_refresh_token_expire_days * 86400, **kwargs,
    )


def _clear_auth_cookies(response: JSONResponse) -> None:
    kwargs = _get_cookie_kwargs()
    response.delete_cookie("access_token", **kwargs)
    response.delete_cookie("refresh_token", **kwargs)


def _token_response(user: User, message: Optional[str] = None) -> JSONResponse:
    """Issue a token pair in the body and as HttpOnly cookies."""
    access_token, refresh_token = token_service.create_token_pair(
        user_id=user.id,
        email=user.email,
        role=user.role,
    )
    tokens = TokenResponse(
        access_token=access_token,
        refresh_token=refresh_token,
        expires_in=settings.jwt_access_token_expire_minutes * 60,
    )
    response = JSONResponse(
        content=ApiResponse[TokenResponse](data=tokens, message=message).model_dump(mode="json")
    )
    _set_auth_cookies(response, access_token, refresh_token)
    return response


def _issued_before_password_change(payload: TokenPayload, user: User) -> bool:
    if not payload.iat or not user.password_changed_at:
        return False
    # JWT iat has one-second resolution
    changed = as_utc(user.password_changed_at).replace(microsecond=0)
    return payload.iat < changed


router = APIRouter(prefix="/auth", tags=["Authentication"])

token_service = TokenService(
    secret_key=settings.jwt_secret_key,
    algorithm=settings.jwt_algorithm,
    access_token_expire_minutes=settings.jwt_access_token_expire_minutes,
    refresh_token_expire_days=settings.jwt_refresh_token_expire_days,
)


def _extract_token(request: Request, authorization: Optional[str]) -> Optional[str]:
    """Bearer header first, then the access_token cookie."""
    if authorization and authorization.startswith("Bearer "):
        token = authorization.split(" ", 1)[1].strip()
        if token:
            return token
    return request.cookies.get("access_token")


async def get_current_user(
    request: Request,
    authorization: Annotated[str | None, Header()] = None,
    db: AsyncSession = Depends(get_db),
) -> User:
    """
    Dependency to get the current authenticated user.

    Accepts a Bearer token in the Authorization header or the HttpOnly
    ``access_token`` cookie set at login.
    """
    token = _extract_token(request, authorization)
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload = token_service.verify_access_token(token)
    if not payload:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    result = await db.execute(select(User).where(User.id == payload.sub))
    user = result.scalar_one_or_none()

    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is not active",
        )

    if _issued_before_password_change(payload, user):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token invalidated due to security event",
            headers={"WWW-Authenticate": "Bearer"},
        )

    request.state.user_id = user.id
    return user


async def get_optional_user(
    request: Request,
    authorization: Annotated[str | None, Header()] = None,
    db: AsyncSession = Depends(get_db),
) -> Optional[User]:
    """Like ``get_current_user`` but returns None instead of raising."""
    try:
        return await get_current_user(request, authorization, db)
    except HTTPException:
        return None


@router.post(
    "/register",
    response_model=ApiResponse[UserResponse],
    status_code=status.HTTP_201_CREATED,
)
@limiter.limit(get_rate_limit("auth"))
async def register(
    request: Request,
    register_data: RegisterRequest,
    db: AsyncSession = Depends(get_db),
):
    """
    Register a new reader account.

    The account stays pending until the emailed verification link is used.
    """
    email = register_data.email.lower()
    result = await db.execute(select(User).where(User.email == email))
    if result.scalar_one_or_none():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="An account with this email already exists",
        )

    user = User(
        email=email,
        name=register_data.name,
        phone=register_data.phone,
        password_hash=password_hasher.hash(register_data.password),
        status=UserStatus.PENDING.value,
    )
    db.add(user)
    await db.flush()

    verification_token = token_service.create_email_verification_token(user.id, user.email)
    user.email_verification_token = verification_token
    user.email_verification_expires = datetime.now(timezone.utc) + timedelta(hours=24)
    await db.commit()
    await db.refresh(user)

    await email_service.send_verification_email(
        to_email=user.email,
        user_name=user.name,
        verification_token=verification_token,
    )

    logger.info("Registered user %s", user.id)
    return ApiResponse(
        data=UserResponse.model_validate(user),
        message="Registration successful. Please check your email to verify your account.",
    )


@router.post("/login", response_model=ApiResponse[TokenResponse])
@limiter.limit(get_rate_limit("auth"))
async def login(
    request: Request,
    login_data: LoginRequest,
    db: AsyncSession = Depends(get_db),
):
    """Authenticate with email and password."""
    result = await db.execute(select(User).where(User.email == login_data.email.lower()))
    user = result.scalar_one_or_none()

    # Run bcrypt even for unknown emails so response time doesn't reveal which exist
    if user is None:
        password_hasher.burn(login_data.password)
        password_ok = False
    else:
        password_ok = password_hasher.verify(login_data.password, user.password_hash)

    if not user or not password_ok:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )

    if user.status == UserStatus.PENDING.value:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Please verify your email address before logging in",
        )
    if user.status == UserStatus.SUSPENDED.value:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account has been suspended",
        )
    if user.status == UserStatus.DELETED.value or not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account is inactive",
        )

    user.last_login = datetime.now(timezone.utc)
    user.login_count += 1
    await db.commit()

    return _token_response(user, message="Login successful")


@router.post("/refresh", response_model=ApiResponse[TokenResponse])
@limiter.limit(get_rate_limit("auth"))
async def refresh_token(
    request: Request,
    body: Optional[RefreshTokenRequest] = Body(None),
    db: AsyncSession = Depends(get_db),
):
    """Exchange a refresh token (cookie or body) for a new token pair."""
    token = request.cookies.get("refresh_token") or (body.refresh_token if body else None)
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Refresh token required",
        )

    payload = token_service.verify_refresh_token(token)
    if not payload:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired refresh token",
        )

    result = await db.execute(select(User).where(User.id == payload.sub))
    user = result.scalar_one_or_none()
    if not user or not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found or inactive",
        )

    if _issued_before_password_change(payload, user):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token invalidated due to password change. Please log in again.",
        )

    return _token_response(user)


@router.get("/me", response_model=ApiResponse[UserResponse])
async def get_me(current_user: Annotated[User, Depends(get_current_user)]):
    return ApiResponse(data=UserResponse.model_validate(current_user))


@router.put("/me", response_model=ApiResponse[UserResponse])
async def update_me(
    update_data: UserUpdateRequest,
    current_user: Annotated[User, Depends(get_current_user)],
    db: AsyncSession = Depends(get_db),
):
    """Update the profile fields of the current user."""
    for field, value in update_data.model_dump(exclude_unset=True).items():
        if field == "name" and value is None:
            continue
        setattr(current_user, field, value)

    await db.commit()
    await db.refresh(current_user)
    return ApiResponse(data=UserResponse.model_validate(current_user), message="Profile updated")


@router.post("/password/reset-request", status_code=status.HTTP_202_ACCEPTED)
@limiter.limit(get_rate_limit("password_reset"))
async def request_password_reset(
    request: Request,
    reset_data: PasswordResetRequest,
    db: AsyncSession = Depends(get_db),
) -> dict:
    """Send a reset link. Always succeeds so callers cannot probe for emails."""
    result = await db.execute(select(User).where(User.email == reset_data.email.lower()))
    user = result.scalar_one_or_none()

    if user and user.is_active:
        reset_token = token_service.create_password_reset_token(user.id)
        user.password_reset_token = reset_token
        user.password_reset_expires = datetime.now(timezone.utc) + timedelta(hours=1)
        await db.commit()

        await email_service.send_password_reset_email(
            to_email=user.email,
            user_name=user.name,
            reset_token=reset_token,
        )

    return {"success": True, "message": "If the email exists, a password reset link has been sent"}


@router.post("/password/reset")
@limiter.limit(get_rate_limit("password_reset"))
async def reset_password(
    request: Request,
    body: PasswordResetConfirm,
    db: AsyncSession = Depends(get_db),
) -> dict:
    """Set a new password using a single-use reset token."""
    user_id = token_service.verify_password_reset_token(body.token)
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid or expired reset token",
        )

    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if not user or not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid or expired reset token",
        )

    if user.password_reset_token != body.token:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid or already used reset token",
        )

    expires = as_utc(user.password_reset_expires)
    if expires and expires < datetime.now(timezone.utc):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Password reset token has expired",
        )

    user.password_hash = password_hasher.hash(body.new_password)
    user.password_reset_token = None
    user.password_reset_expires = None
    user.password_changed_at = datetime.now(timezone.utc)
    await db.commit()

    return {"success": True, "message": "Password has been reset successfully"}


@router.post("/password/change")
@limiter.limit("5/minute")
async def change_password(
    request: Request,
    body: PasswordChangeRequest,
    current_user: Annotated[User, Depends(get_current_user)],
    db: AsyncSession = Depends(get_db),
) -> dict:
    if not password_hasher.verify(body.current_password, current_user.password_hash):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Current password is incorrect",
        )

    current_user.password_hash = password_hasher.hash(body.new_password)
    current_user.password_changed_at = datetime.now(timezone.utc)
    await db.commit()

    return {"success": True, "message": "Password has been changed successfully"}


@router.post("/verify-email")
@limiter.limit(get_rate_limit("email_verification"))
async def verify_email(
    request: Request,
    body: EmailVerificationRequest,
    db: AsyncSession = Depends(get_db),
) -> dict:
    """Activate a pending account."""
    decoded = token_service.verify_email_verification_token(body.token)
    if not decoded:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid or expired verification token",
        )

    user_id, email = decoded
    result = await db.execute(select(User).where(User.id == user_id, User.email == email))
    user = result.scalar_one_or_none()
    if not user:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid verification token",
        )

    if user.email_verified:
        return {"success": True, "message": "Email is already verified"}

    user.email_verified = True
    if user.status == UserStatus.PENDING.value:
        user.status = UserStatus.ACTIVE.value
    user.email_verification_token = None
    user.email_verification_expires = None
    await db.commit()

    await email_service.send_welcome_email(to_email=user.email, user_name=user.name)

    return {"success": True, "message": "Email has been verified successfully"}


@router.post("/resend-verification", status_code=status.HTTP_202_ACCEPTED)
@limiter.limit(get_rate_limit("email_verification"))
async def resend_verification(
    request: Request,
    body: ResendVerificationRequest,
    db: AsyncSession = Depends(get_db),
) -> dict:
    result = await db.execute(select(User).where(User.email == body.email.lower()))
    user = result.scalar_one_or_none()

    if user and not user.email_verified:
        verification_token = token_service.create_email_verification_token(user.id, user.email)
        user.email_verification_token = verification_token
        user.email_verification_expires = datetime.now(timezone.utc) + timedelta(hours=24)
        await db.commit()

        await email_service.send_verification_email(
            to_email=user.email,
            user_name=user.name,
            verification_token=verification_token,
        )

    return {
        "success": True,
        "message": "If the email exists and is not verified, a verification link has been sent",
    }


@router.post("/logout")
@limiter.limit("20/minute")
async def logout(
    request: Request,
    current_user: Annotated[User, Depends(get_current_user)],
) -> JSONResponse:
    """
    Clear the auth cookies.

    Access tokens are stateless and remain valid until they expire; a
    password change invalidates every token issued before it.
    """
    response = JSONResponse(content={"success": True, "message": "Logged out successfully"})
    _clear_auth_cookies(response)
    return response
