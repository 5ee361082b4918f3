import logging
from datetime import date, datetime, timedelta
from typing import Any

from fastapi import APIRouter, Depends, Query, status
from pydantic import field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from telehealth.auth.dependencies import get_current_provider
from telehealth.database import ensure_database_ready, get_db
from telehealth.errors import APIError, database_unavailable
from telehealth.models.booking import BOOKING_STATUS_SCHEDULED, Booking
from telehealth.models.provider import Provider
from telehealth.models.user import User
from telehealth.schemas import BookingResponse, CamelModel, ProviderResponse, serialize_booking, serialize_provider
from telehealth.services.availability import (
    SESSION_DURATION_MINUTES,
    calendar_week,
    dump_weekly_availability,
    format_slot,
    generate_available_slots,
    parse_weekly_availability,
    utc_now,
    validate_slot_range,
)

router = APIRouter(tags=['providers'])
logger = logging.getLogger(__name__)

DEFAULT_SLOT_WINDOW_DAYS = 7
PROVIDER_STATUS_READY = 'ready'
PROVIDER_STATUS_PENDING = 'pending'


class ProviderListResponse(CamelModel):
    providers: list[ProviderResponse]


class ProviderEnvelope(CamelModel):
    provider: ProviderResponse
    message: str | None = None


class AvailabilityResponse(CamelModel):
    provider_id: int
    availability: dict[str, Any]


class AvailableSlotResponse(CamelModel):
    date: str
    time: str
    datetime: str


class AvailableSlotsResponse(CamelModel):
    provider_id: int
    start_date: date
    end_date: date
    slots: list[AvailableSlotResponse]


class CalendarDayResponse(CamelModel):
    date: str
    day_name: str
    slot_count: int
    is_today: bool


class CalendarWeekResponse(CamelModel):
    provider_id: int
    days: list[CalendarDayResponse]


class ProviderBookingsResponse(CamelModel):
    bookings: list[BookingResponse]


class UpdateAvailabilityRequest(CamelModel):
    availability: dict[str, Any]


class UpdateProviderProfileRequest(CamelModel):
    name: str | None = None
    phone: str | None = None
    specialty: str | None = None
    title: str | None = None
    bio: str | None = None
    hourly_rate: float | None = None

    @field_validator('name')
    @classmethod
    def validate_name(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip()
        if not normalized:
            raise ValueError('Name cannot be blank.')
        return normalized

    @field_validator('hourly_rate')
    @classmethod
    def validate_hourly_rate(cls, value: float | None) -> float | None:
        if value is not None and value < 0:
            raise ValueError('Hourly rate cannot be negative.')
        return value


def get_provider_or_404(provider_id: int, db: Session) -> Provider:
    provider = db.query(Provider).filter(Provider.id == provider_id).first()
    if provider is None:
        raise APIError(status.HTTP_404_NOT_FOUND, 'Provider not found', code='PROVIDER_NOT_FOUND')
    return provider


def get_provider_bookings_between(provider_id: int, range_start: datetime, range_end: datetime, db: Session) -> list[Booking]:
    # Widen by one session so bookings straddling the range edges still block slots.
    session = timedelta(minutes=SESSION_DURATION_MINUTES)
    return db.query(Booking).filter(
        Booking.provider_id == provider_id,
        Booking.status == BOOKING_STATUS_SCHEDULED,
        Booking.appointment_date > range_start - session,
        Booking.appointment_date < range_end + session,
    ).all()


def compute_provider_slots(provider: Provider, start_date: date, end_date: date, now: datetime, db: Session) -> list[datetime]:
    try:
        schedule = parse_weekly_availability(provider.availability)
    except ValueError:
        logger.warning('Provider %s has unreadable availability; offering no slots', provider.id)
        return []

    bookings = get_provider_bookings_between(
        provider.id,
        datetime.combine(start_date, datetime.min.time()),
        datetime.combine(end_date + timedelta(days=1), datetime.min.time()),
        db,
    )
    return generate_available_slots(schedule, bookings, start_date, end_date, now)


@router.get('/providers', response_model=ProviderListResponse)
def list_providers(
    provider_status: str | None = Query(default=None, alias='status'),
    verified: bool | None = Query(default=None),
    specialty: str | None = Query(default=None),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        query = db.query(Provider).filter(Provider.status == (provider_status or PROVIDER_STATUS_READY))
        if verified is not None:
            query = query.filter(Provider.verified.is_(verified))
        if specialty:
            query = query.filter(Provider.specialty.ilike(f'%{specialty.strip()}%'))

        providers = query.order_by(Provider.created_at.desc(), Provider.id.desc()).all()
        return ProviderListResponse(providers=[serialize_provider(provider) for provider in providers])
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('/providers/{provider_id}/availability', response_model=AvailabilityResponse)
def get_provider_availability_by_id(provider_id: int, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        provider = get_provider_or_404(provider_id, db)
        return AvailabilityResponse(provider_id=provider.id, availability=provider.availability or {})
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('/providers/{provider_id}/available-slots', response_model=AvailableSlotsResponse)
def list_available_slots(
    provider_id: int,
    start_date: date | None = Query(default=None, alias='startDate'),
    end_date: date | None = Query(default=None, alias='endDate'),
    db: Session = Depends(get_db),
):
    now = utc_now()
    start_date = start_date or now.date()
    end_date = end_date or start_date + timedelta(days=DEFAULT_SLOT_WINDOW_DAYS)

    try:
        validate_slot_range(start_date, end_date)
    except ValueError as exc:
        raise APIError(status.HTTP_400_BAD_REQUEST, str(exc), code='INVALID_DATE_RANGE') from exc

    ensure_database_ready()

    try:
        provider = get_provider_or_404(provider_id, db)
        slots = compute_provider_slots(provider, start_date, end_date, now, db)
        return AvailableSlotsResponse(
            provider_id=provider.id,
            start_date=start_date,
            end_date=end_date,
            slots=[AvailableSlotResponse(**format_slot(slot)) for slot in slots],
        )
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('/providers/{provider_id}/calendar-week', response_model=CalendarWeekResponse)
def get_calendar_week(
    provider_id: int,
    week_of: date | None = Query(default=None, alias='weekOf'),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        now = utc_now()
        reference_date = week_of or now.date()
        monday = reference_date - timedelta(days=reference_date.weekday())
        provider = get_provider_or_404(provider_id, db)
        slots = compute_provider_slots(provider, monday, monday + timedelta(days=6), now, db)

        return CalendarWeekResponse(
            provider_id=provider.id,
            days=[CalendarDayResponse(**day) for day in calendar_week(reference_date, slots, today=now.date())],
        )
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('/provider/profile', response_model=ProviderEnvelope)
def get_provider_profile(provider: Provider = Depends(get_current_provider)):
    return ProviderEnvelope(provider=serialize_provider(provider))


@router.put('/provider/profile', response_model=ProviderEnvelope)
def update_provider_profile(
    data: UpdateProviderProfileRequest,
    provider: Provider = Depends(get_current_provider),
    db: Session = Depends(get_db),
):
    try:
        for field_name in ('name', 'phone', 'specialty', 'title', 'bio', 'hourly_rate'):
            value = getattr(data, field_name)
            if value is not None:
                setattr(provider, field_name, value)

        db.commit()
        db.refresh(provider)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc

    return ProviderEnvelope(provider=serialize_provider(provider), message='Profile updated successfully')


@router.get('/provider/availability', response_model=AvailabilityResponse)
def get_provider_availability(provider: Provider = Depends(get_current_provider)):
    return AvailabilityResponse(provider_id=provider.id, availability=provider.availability or {})


@router.put('/provider/availability', response_model=ProviderEnvelope)
def update_provider_availability(
    data: UpdateAvailabilityRequest,
    provider: Provider = Depends(get_current_provider),
    db: Session = Depends(get_db),
):
    try:
        schedule = parse_weekly_availability(data.availability)
    except ValueError as exc:
        raise APIError(status.HTTP_400_BAD_REQUEST, str(exc), code='INVALID_AVAILABILITY') from exc

    # Publishing at least one open day makes the provider bookable.
    has_open_day = any(window.enabled for window in schedule.values())

    try:
        provider.availability = dump_weekly_availability(schedule)
        provider.status = PROVIDER_STATUS_READY if has_open_day else PROVIDER_STATUS_PENDING
        if has_open_day:
            provider.verified = True
        db.commit()
        db.refresh(provider)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc

    logger.info('Provider %s availability updated (status=%s)', provider.id, provider.status)
    return ProviderEnvelope(provider=serialize_provider(provider), message='Availability updated successfully')


@router.get('/provider/bookings', response_model=ProviderBookingsResponse)
def list_provider_bookings(
    provider: Provider = Depends(get_current_provider),
    db: Session = Depends(get_db),
):
    try:
        rows = db.query(Booking, User).join(User, User.id == Booking.user_id).filter(
            Booking.provider_id == provider.id,
            Booking.status == BOOKING_STATUS_SCHEDULED,
            Booking.appointment_date > utc_now(),
        ).order_by(Booking.appointment_date.asc()).all()

        return ProviderBookingsResponse(
            bookings=[serialize_booking(booking, provider=provider, user=user) for booking, user in rows]
        )
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc
