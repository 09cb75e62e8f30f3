"""
Newsletter subscription API routes.
"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from pydantic import EmailStr
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from adapters.email.resend_adapter import email_service
from api.middleware.rate_limit import get_rate_limit, limiter
from api.schemas.blog import NewsletterStatus, NewsletterSubscribeRequest
from api.schemas.common import ApiResponse
from infrastructure.database.connection import get_db
from infrastructure.database.models import NewsletterSubscriber

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/newsletter", tags=["Newsletter"])


async def _find(db: AsyncSession, email: str) -> NewsletterSubscriber | None:
    result = await db.execute(
        select(NewsletterSubscriber).where(NewsletterSubscriber.email == email.lower())
    )
    return result.scalar_one_or_none()


@router.post(
    "/subscribe",
    response_model=ApiResponse[NewsletterStatus],
    status_code=status.HTTP_201_CREATED,
)
@limiter.limit(get_rate_limit("contact"))
async def subscribe(
    request: Request,
    response: Response,
    body: NewsletterSubscribeRequest,
    db: AsyncSession = Depends(get_db),
):
    """
    Subscribe an email address.

    New addresses get 201 and a welcome email. Active subscribers and
    returning ones get 200 with ``already_subscribed`` or ``reactivated``.
    """
    subscriber = await _find(db, body.email)

    if subscriber and subscriber.is_active:
        response.status_code = status.HTTP_200_OK
        return ApiResponse(
            data=NewsletterStatus(
                email=subscriber.email,
                is_subscribed=True,
                already_subscribed=True,
                subscribed_at=subscriber.created_at,
            ),
            message="You are already subscribed",
        )

    if subscriber:
        subscriber.is_active = True
        subscriber.unsubscribed_at = None
        if body.name:
            subscriber.name = body.name
        await db.commit()
        await db.refresh(subscriber)

        response.status_code = status.HTTP_200_OK
        return ApiResponse(
            data=NewsletterStatus(
                email=subscriber.email,
                is_subscribed=True,
                reactivated=True,
                subscribed_at=subscriber.created_at,
            ),
            message="Welcome back! Your subscription has been reactivated",
        )

    subscriber = NewsletterSubscriber(email=body.email.lower(), name=body.name)
    db.add(subscriber)
    await db.commit()
    await db.refresh(subscriber)

    await email_service.send_newsletter_welcome_email(subscriber.email, subscriber.name)
    logger.info("Newsletter subscriber added: %s", subscriber.id)

    return ApiResponse(
        data=NewsletterStatus(
            email=subscriber.email,
            is_subscribed=True,
            subscribed_at=subscriber.created_at,
        ),
        message="Subscribed successfully",
    )


@router.get("/subscribe", response_model=ApiResponse[NewsletterStatus])
async def subscription_status(
    email: EmailStr = Query(...),
    db: AsyncSession = Depends(get_db),
):
    subscriber = await _find(db, email)
    return ApiResponse(data=NewsletterStatus(
        email=email.lower(),
        is_subscribed=bool(subscriber and subscriber.is_active),
        subscribed_at=subscriber.created_at if subscriber else None,
    ))


@router.post("/unsubscribe", response_model=ApiResponse[NewsletterStatus])
@limiter.limit(get_rate_limit("contact"))
async def unsubscribe(
    request: Request,
    email: EmailStr = Query(...),
    db: AsyncSession = Depends(get_db),
):
    subscriber = await _find(db, email)
    if not subscriber:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Email is not subscribed",
        )

    if subscriber.is_active:
        subscriber.is_active = False
        subscriber.unsubscribed_at = datetime.now(timezone.utc)
        await db.commit()
        await db.refresh(subscriber)

    return ApiResponse(
        data=NewsletterStatus(email=subscriber.email, is_subscribed=False),
        message="You have been unsubscribed",
    )
