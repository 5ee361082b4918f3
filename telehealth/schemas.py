"""Response models shared by the route modules.

Field names are snake_case in Python and camelCase on the wire.
"""

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from telehealth.models.booking import BOOKING_STATUS_SCHEDULED, DEFAULT_SESSION_TYPE, Booking
from telehealth.models.provider import Provider
from telehealth.models.user import User


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class UserResponse(CamelModel):
    id: int
    email: str
    name: str
    role: str
    phone: str | None = None
    created_at: datetime | None = None


class ProviderResponse(CamelModel):
    id: int
    name: str
    email: str
    phone: str | None = None
    specialty: str | None = None
    title: str | None = None
    bio: str | None = None
    hourly_rate: float = 0
    rating: float = 0
    sessions_completed: int = 0
    reviews_count: int = 0
    verified: bool = False
    status: str = 'pending'
    availability: dict[str, Any] = {}
    created_at: datetime | None = None
    updated_at: datetime | None = None


class BookingResponse(CamelModel):
    id: int
    user_id: int
    provider_id: int
    provider_name: str | None = None
    provider_title: str | None = None
    provider_specialty: str | None = None
    user_name: str | None = None
    user_email: str | None = None
    user_phone: str | None = None
    appointment_date: datetime
    session_type: str
    notes: str | None = None
    status: str
    reason: str | None = None
    reschedule_count: int = 0
    rescheduled_from: datetime | None = None
    created_at: datetime | None = None


def as_utc(value: datetime | None) -> datetime | None:
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def serialize_user(user: User) -> UserResponse:
    return UserResponse(
        id=user.id,
        email=user.email,
        name=user.name,
        role=user.role or 'user',
        phone=user.phone,
        created_at=user.created_at,
    )


def serialize_provider(provider: Provider) -> ProviderResponse:
    return ProviderResponse(
        id=provider.id,
        name=provider.name,
        email=provider.email,
        phone=provider.phone,
        specialty=provider.specialty,
        title=provider.title,
        bio=provider.bio,
        hourly_rate=float(provider.hourly_rate or 0),
        rating=float(provider.rating or 0),
        sessions_completed=provider.sessions_completed or 0,
        reviews_count=provider.reviews_count or 0,
        verified=bool(provider.verified),
        status=provider.status or 'pending',
        availability=provider.availability or {},
        created_at=provider.created_at,
        updated_at=provider.updated_at,
    )


def serialize_booking(booking: Booking, provider: Provider | None = None, user: User | None = None) -> BookingResponse:
    return BookingResponse(
        id=booking.id,
        user_id=booking.user_id,
        provider_id=booking.provider_id,
        provider_name=provider.name if provider else None,
        provider_title=provider.title if provider else None,
        provider_specialty=provider.specialty if provider else None,
        user_name=user.name if user else None,
        user_email=user.email if user else None,
        user_phone=user.phone if user else None,
        appointment_date=as_utc(booking.appointment_date),
        session_type=booking.session_type or DEFAULT_SESSION_TYPE,
        notes=booking.notes,
        status=booking.status or BOOKING_STATUS_SCHEDULED,
        reason=booking.reason,
        reschedule_count=booking.reschedule_count or 0,
        rescheduled_from=as_utc(booking.rescheduled_from),
        created_at=booking.created_at,
    )
