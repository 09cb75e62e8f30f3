"""
Event models: events and attendee registrations.
"""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import uuid4

from sqlalchemy import JSON, Boolean, DateTime, Float, ForeignKey, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin


class EventType(str, Enum):
    WORKSHOP = "workshop"
    WEBINAR = "webinar"
    BOOK_LAUNCH = "book_launch"
    MASTERCLASS = "masterclass"
    MEET_GREET = "meet_greet"
    CONFERENCE = "conference"


class EventStatus(str, Enum):
    DRAFT = "draft"
    PUBLISHED = "published"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class RegistrationStatus(str, Enum):
    REGISTERED = "registered"
    ATTENDED = "attended"
    CANCELLED = "cancelled"


class Event(Base, TimestampMixin):
    """A scheduled event that users can register for."""

    __tablename__ = "events"

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    short_description: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    type: Mapped[str] = mapped_column(String(50), default=EventType.WORKSHOP.value, nullable=False)
    status: Mapped[str] = mapped_column(
        String(50), default=EventStatus.DRAFT.value, nullable=False
    )

    # Schedule
    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    timezone: Mapped[str] = mapped_column(String(50), default="Africa/Lagos", nullable=False)
    registration_deadline: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Venue
    location: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    is_online: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    meeting_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    # Tickets
    max_attendees: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    price: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="NGN", nullable=False)
    is_free: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    featured_image: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    agenda: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    organizer_id: Mapped[Optional[str]] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    __table_args__ = (Index("ix_events_status_start", "status", "start_date"),)

    def __repr__(self) -> str:
        return f"<Event(id={self.id}, title={self.title}, status={self.status})>"


class EventRegistration(Base, TimestampMixin):
    """A user's seat at an event."""

    __tablename__ = "event_registrations"

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    event_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("events.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    status: Mapped[str] = mapped_column(
        String(20), default=RegistrationStatus.REGISTERED.value, nullable=False
    )
    payment_status: Mapped[str] = mapped_column(String(20), default="pending", nullable=False)
    payment_method: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    payment_reference: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    amount_paid: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    special_requests: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (Index("ix_event_registrations_event_user", "event_id", "user_id"),)

    def __repr__(self) -> str:
        return f"<EventRegistration(event_id={self.event_id}, user_id={self.user_id})>"
