"""
Event and registration schemas.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from infrastructure.database.models.events import EventStatus, EventType

from .common import OffsetPagination


class EventCreateRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: str = Field(..., min_length=1)
    short_description: Optional[str] = Field(None, max_length=500)
    type: EventType = EventType.WORKSHOP
    status: EventStatus = EventStatus.DRAFT
    start_date: datetime
    end_date: datetime
    timezone: str = Field("Africa/Lagos", max_length=50)
    registration_deadline: Optional[datetime] = None
    location: Optional[str] = Field(None, max_length=500)
    is_online: bool = False
    meeting_url: Optional[str] = Field(None, max_length=500)
    max_attendees: Optional[int] = Field(None, ge=1)
    price: float = Field(0.0, ge=0)
    currency: str = Field("NGN", min_length=3, max_length=3)
    featured_image: Optional[str] = Field(None, max_length=500)
    agenda: Optional[list[Any]] = None

    @model_validator(mode="after")
    def check_dates(self) -> "EventCreateRequest":
        if self.end_date < self.start_date:
            raise ValueError("end_date must be after start_date")
        if self.registration_deadline and self.registration_deadline > self.end_date:
            raise ValueError("registration_deadline must be before the event ends")
        return self


class EventUpdateRequest(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = Field(None, min_length=1)
    short_description: Optional[str] = Field(None, max_length=500)
    type: Optional[EventType] = None
    status: Optional[EventStatus] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    timezone: Optional[str] = Field(None, max_length=50)
    registration_deadline: Optional[datetime] = None
    location: Optional[str] = Field(None, max_length=500)
    is_online: Optional[bool] = None
    meeting_url: Optional[str] = Field(None, max_length=500)
    max_attendees: Optional[int] = Field(None, ge=1)
    price: Optional[float] = Field(None, ge=0)
    featured_image: Optional[str] = Field(None, max_length=500)
    agenda: Optional[list[Any]] = None


class EventResponse(BaseModel):
    id: str
    title: str
    description: str
    short_description: Optional[str] = None
    type: str
    status: str
    start_date: datetime
    end_date: datetime
    timezone: str
    registration_deadline: Optional[datetime] = None
    location: Optional[str] = None
    is_online: bool
    meeting_url: Optional[str] = None
    max_attendees: Optional[int] = None
    price: float
    currency: str
    is_free: bool
    featured_image: Optional[str] = None
    agenda: Optional[list[Any]] = None
    organizer_id: Optional[str] = None
    created_at: datetime
    registration_count: int = 0

    model_config = ConfigDict(from_attributes=True)


class EventListData(BaseModel):
    events: list[EventResponse]
    pagination: OffsetPagination


class EventRegisterRequest(BaseModel):
    special_requests: Optional[str] = Field(None, max_length=2000)
    payment_method: Optional[str] = Field(None, max_length=50)


class EventRegistrationResponse(BaseModel):
    id: str
    event_id: str
    user_id: str
    status: str
    payment_status: str
    payment_method: Optional[str] = None
    payment_reference: Optional[str] = None
    amount_paid: float
    special_requests: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class RegistrationStatusData(BaseModel):
    is_registered: bool
    registration: Optional[EventRegistrationResponse] = None
