"""
Event and event registration API routes.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, status
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from adapters.email.resend_adapter import email_service
from adapters.payments import generate_reference
from api.dependencies import get_current_admin_user, get_current_user, get_optional_user
from api.schemas.common import ApiResponse, offset_pagination
from api.schemas.events import (
    EventCreateRequest,
    EventListData,
    EventRegisterRequest,
    EventRegistrationResponse,
    EventResponse,
    EventUpdateRequest,
    RegistrationStatusData,
)
from api.utils import as_utc, is_uuid
from infrastructure.database.connection import get_db
from infrastructure.database.models import (
    Event,
    EventRegistration,
    EventStatus,
    EventType,
    PaymentPurpose,
    PaymentStatus,
    RegistrationStatus,
    User,
)
from services.payments import PaymentService, get_payment_service, recommended_provider

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/events", tags=["Events"])

# Registrations can no longer be cancelled this close to the start
CANCELLATION_CUTOFF = timedelta(hours=24)


async def _get_event(db: AsyncSession, event_id: str) -> Event:
    event = await db.get(Event, event_id) if is_uuid(event_id) else None
    if not event:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Event not found",
        )
    return event


async def _registration_counts(db: AsyncSession, event_ids: list[str]) -> dict[str, int]:
    if not event_ids:
        return {}
    result = await db.execute(
        select(EventRegistration.event_id, func.count(EventRegistration.id))
        .where(
            EventRegistration.event_id.in_(event_ids),
            EventRegistration.status != RegistrationStatus.CANCELLED.value,
        )
        .group_by(EventRegistration.event_id)
    )
    return dict(result.all())


async def _active_registration(
    db: AsyncSession, event_id: str, user_id: str
) -> Optional[EventRegistration]:
    result = await db.execute(
        select(EventRegistration)
        .where(
            EventRegistration.event_id == event_id,
            EventRegistration.user_id == user_id,
            EventRegistration.status != RegistrationStatus.CANCELLED.value,
        )
        .order_by(EventRegistration.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


def _to_response(event: Event, counts: dict[str, int]) -> EventResponse:
    response = EventResponse.model_validate(event)
    response.registration_count = counts.get(event.id, 0)
    return response


@router.get("", response_model=ApiResponse[EventListData])
async def list_events(
    type: Optional[EventType] = None,
    event_status: str = Query("published", alias="status"),
    upcoming: bool = False,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    current_user: Optional[User] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db),
):
    """
    List events, latest start date first.

    ``status=all`` disables the status filter. Only admins may list
    events that are not published.
    """
    if event_status != "all" and event_status not in {s.value for s in EventStatus}:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid status. Must be one of: all, {', '.join(s.value for s in EventStatus)}",
        )
    is_admin = current_user is not None and current_user.is_admin
    if event_status != EventStatus.PUBLISHED.value and not is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )

    query = select(Event)
    if event_status != "all":
        query = query.where(Event.status == event_status)
    if type:
        query = query.where(Event.type == type.value)
    if upcoming:
        query = query.where(Event.start_date > datetime.now(timezone.utc))

    total = (await db.execute(select(func.count()).select_from(query.subquery()))).scalar() or 0
    events = (
        await db.execute(query.order_by(Event.start_date.desc()).offset(offset).limit(limit))
    ).scalars().all()
    counts = await _registration_counts(db, [e.id for e in events])

    return ApiResponse(data=EventListData(
        events=[_to_response(e, counts) for e in events],
        pagination=offset_pagination(total, limit, offset),
    ))


@router.post(
    "",
    response_model=ApiResponse[EventResponse],
    status_code=status.HTTP_201_CREATED,
)
async def create_event(
    body: EventCreateRequest,
    admin_user: User = Depends(get_current_admin_user),
    db: AsyncSession = Depends(get_db),
):
    event = Event(
        **body.model_dump(exclude={"type", "status", "currency"}),
        type=body.type.value,
        status=body.status.value,
        currency=body.currency.upper(),
        is_free=body.price <= 0,
        organizer_id=admin_user.id,
    )
    db.add(event)
    await db.commit()
    await db.refresh(event)

    logger.info("Event %s created by %s", event.id, admin_user.id)
    return ApiResponse(data=_to_response(event, {}), message="Event created")


@router.get("/{event_id}", response_model=ApiResponse[EventResponse])
async def get_event(
    event_id: str,
    current_user: Optional[User] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db),
):
    event = await _get_event(db, event_id)
    if event.status == EventStatus.DRAFT.value and not (current_user and current_user.is_admin):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Event not found",
        )
    counts = await _registration_counts(db, [event.id])
    return ApiResponse(data=_to_response(event, counts))


@router.put("/{event_id}", response_model=ApiResponse[EventResponse])
async def update_event(
    event_id: str,
    body: EventUpdateRequest,
    admin_user: User = Depends(get_current_admin_user),
    db: AsyncSession = Depends(get_db),
):
    event = await _get_event(db, event_id)
    nullable = {
        "short_description", "registration_deadline", "location", "meeting_url",
        "max_attendees", "featured_image", "agenda",
    }
    for field, value in body.model_dump(exclude_unset=True).items():
        if value is None and field not in nullable:
            continue
        if field in ("type", "status"):
            value = value.value
        setattr(event, field, value)

    if as_utc(event.end_date) < as_utc(event.start_date):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="end_date must be after start_date",
        )
    event.is_free = event.price <= 0

    await db.commit()
    await db.refresh(event)
    counts = await _registration_counts(db, [event.id])
    return ApiResponse(data=_to_response(event, counts), message="Event updated")


@router.delete("/{event_id}")
async def delete_event(
    event_id: str,
    admin_user: User = Depends(get_current_admin_user),
    db: AsyncSession = Depends(get_db),
) -> dict:
    event = await _get_event(db, event_id)
    await db.execute(delete(EventRegistration).where(EventRegistration.event_id == event.id))
    await db.delete(event)
    await db.commit()

    logger.info("Event %s deleted by %s", event_id, admin_user.id)
    return {"success": True, "message": "Event deleted"}


@router.post(
    "/{event_id}/register",
    response_model=ApiResponse[EventRegistrationResponse],
    status_code=status.HTTP_201_CREATED,
)
async def register_for_event(
    event_id: str,
    body: Optional[EventRegisterRequest] = Body(None),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    payments: PaymentService = Depends(get_payment_service),
):
    """
    Reserve a seat.

    Free events are confirmed immediately. Paid events get a pending
    registration and a pending transaction whose ``EVT-`` reference the
    client pays against.
    """
    body = body or EventRegisterRequest()
    event = await _get_event(db, event_id)
    if event.status != EventStatus.PUBLISHED.value:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Event not found",
        )

    now = datetime.now(timezone.utc)
    deadline = as_utc(event.registration_deadline)
    if deadline and deadline < now:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Registration deadline has passed",
        )
    if as_utc(event.start_date) <= now:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Event has already started",
        )

    if await _active_registration(db, event.id, current_user.id):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="You are already registered for this event",
        )

    if event.max_attendees is not None:
        taken = (await _registration_counts(db, [event.id])).get(event.id, 0)
        if taken >= event.max_attendees:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Event is fully booked",
            )

    registration = EventRegistration(
        event_id=event.id,
        user_id=current_user.id,
        status=RegistrationStatus.REGISTERED.value,
        payment_method=body.payment_method,
        special_requests=body.special_requests,
    )
    db.add(registration)

    if event.is_free:
        registration.payment_status = PaymentStatus.COMPLETED.value
        registration.amount_paid = 0.0
    else:
        registration.payment_status = PaymentStatus.PENDING.value
        registration.payment_reference = generate_reference("EVT")
        await db.flush()
        provider = (
            body.payment_method
            if body.payment_method in payments.providers
            else recommended_provider(event.currency)
        )
        payments.record_transaction(
            db,
            reference=registration.payment_reference,
            provider=provider,
            purpose=PaymentPurpose.EVENT_REGISTRATION,
            target_id=registration.id,
            amount=event.price,
            currency=event.currency,
            user=current_user,
            metadata={"event_id": event.id},
        )

    await db.commit()
    await db.refresh(registration)

    await email_service.send_event_registration_email(
        to_email=current_user.email,
        user_name=current_user.name,
        event_title=event.title,
        start_date=as_utc(event.start_date).isoformat(),
        location=event.location,
        payment_pending=not event.is_free,
    )

    return ApiResponse(
        data=EventRegistrationResponse.model_validate(registration),
        message="Registered successfully",
    )


@router.get("/{event_id}/register", response_model=ApiResponse[RegistrationStatusData])
async def registration_status(
    event_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    event = await _get_event(db, event_id)
    registration = await _active_registration(db, event.id, current_user.id)
    return ApiResponse(data=RegistrationStatusData(
        is_registered=registration is not None,
        registration=(
            EventRegistrationResponse.model_validate(registration) if registration else None
        ),
    ))


@router.delete("/{event_id}/register")
async def cancel_registration(
    event_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> dict:
    event = await _get_event(db, event_id)
    registration = await _active_registration(db, event.id, current_user.id)
    if not registration:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="You are not registered for this event",
        )

    if as_utc(event.start_date) - datetime.now(timezone.utc) < CANCELLATION_CUTOFF:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Registrations cannot be cancelled within 24 hours of the event",
        )

    registration.status = RegistrationStatus.CANCELLED.value
    await db.commit()
    return {"success": True, "message": "Registration cancelled"}
