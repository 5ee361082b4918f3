import logging
from datetime import datetime, timedelta

from fastapi import APIRouter, Depends, Query, status
from fastapi.concurrency import run_in_threadpool
from pydantic import field_validator
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from telehealth.auth.dependencies import get_current_user
from telehealth.core import config
from telehealth.database import ensure_database_ready, get_db
from telehealth.errors import APIError, database_unavailable
from telehealth.models.booking import (
    BOOKING_STATUS_CANCELLED,
    BOOKING_STATUS_COMPLETED,
    BOOKING_STATUS_SCHEDULED,
    DEFAULT_SESSION_TYPE,
    Booking,
)
from telehealth.models.provider import Provider
from telehealth.models.review import MAX_REVIEW_RATING, MIN_REVIEW_RATING, MIN_REVIEW_TEXT_LENGTH, Review
from telehealth.models.user import User
from telehealth.schemas import BookingResponse, CamelModel, serialize_booking
from telehealth.services.availability import (
    SESSION_DURATION_MINUTES,
    can_cancel_for_free,
    find_conflicting_booking,
    is_slot_offered,
    is_within_cancellation_fee_window,
    overlaps_booking,
    parse_weekly_availability,
    to_utc_naive,
    utc_now,
)
from telehealth.services.video import get_video_service
from telehealth.services.video_room import VideoConfigurationError, VideoServiceError

router = APIRouter(tags=['bookings'])
logger = logging.getLogger(__name__)

MAX_BOOKING_NOTES_LENGTH = 1000
MAX_CANCEL_REASON_LENGTH = 500


def normalize_notes(value: str | None, max_length: int) -> str | None:
    if value is None:
        return None

    normalized = value.strip()
    if not normalized:
        return None

    if len(normalized) > max_length:
        raise ValueError(f'Text must be {max_length} characters or fewer.')

    return normalized


class CreateBookingRequest(CamelModel):
    provider_id: int
    appointment_date: datetime
    session_type: str | None = None
    notes: str | None = None

    @field_validator('appointment_date')
    @classmethod
    def validate_appointment_date(cls, value: datetime) -> datetime:
        return to_utc_naive(value).replace(second=0, microsecond=0)

    @field_validator('session_type')
    @classmethod
    def validate_session_type(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip() or None

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        return normalize_notes(value, MAX_BOOKING_NOTES_LENGTH)


class CancelBookingRequest(CamelModel):
    booking_id: int
    reason: str

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str) -> str:
        normalized = normalize_notes(value, MAX_CANCEL_REASON_LENGTH)
        if normalized is None:
            raise ValueError('Cancellation reason is required.')
        return normalized


class RescheduleBookingRequest(CamelModel):
    booking_id: int
    new_appointment_date: datetime

    @field_validator('new_appointment_date')
    @classmethod
    def validate_new_appointment_date(cls, value: datetime) -> datetime:
        return to_utc_naive(value).replace(second=0, microsecond=0)


class BookingListResponse(CamelModel):
    bookings: list[BookingResponse]


class BookingEnvelope(CamelModel):
    booking: BookingResponse
    message: str


class CancellationDetails(CamelModel):
    charged: bool
    fee: int
    free_cancellation: bool


class CancelBookingResponse(BookingEnvelope):
    cancellation: CancellationDetails


class ConflictCheckResponse(CamelModel):
    has_conflict: bool
    conflict: BookingResponse | None = None


class VideoJoinResponse(CamelModel):
    booking_id: int
    vendor: str
    room_name: str
    room_url: str
    token: str | None = None
    is_owner: bool
    expires_at: datetime


class SubmitReviewRequest(CamelModel):
    rating: int
    review_text: str

    @field_validator('rating')
    @classmethod
    def validate_rating(cls, value: int) -> int:
        if not MIN_REVIEW_RATING <= value <= MAX_REVIEW_RATING:
            raise ValueError(f'Rating must be between {MIN_REVIEW_RATING} and {MAX_REVIEW_RATING}.')
        return value

    @field_validator('review_text')
    @classmethod
    def validate_review_text(cls, value: str) -> str:
        normalized = value.strip()
        if len(normalized) < MIN_REVIEW_TEXT_LENGTH:
            raise ValueError(f'Review must be at least {MIN_REVIEW_TEXT_LENGTH} characters.')
        return normalized


class ReviewResponse(CamelModel):
    id: int
    booking_id: int
    provider_id: int
    rating: int
    review_text: str
    created_at: datetime | None = None


class SubmitReviewResponse(CamelModel):
    review: ReviewResponse
    provider_rating: float
    provider_reviews_count: int
    message: str


def get_user_active_bookings(user_id: int, db: Session) -> list[Booking]:
    return db.query(Booking).filter(
        Booking.user_id == user_id,
        Booking.status == BOOKING_STATUS_SCHEDULED,
    ).all()


def get_provider_active_bookings(provider_id: int, db: Session) -> list[Booking]:
    return db.query(Booking).filter(
        Booking.provider_id == provider_id,
        Booking.status == BOOKING_STATUS_SCHEDULED,
    ).all()


def load_providers(provider_ids: set[int], db: Session) -> dict[int, Provider]:
    if not provider_ids:
        return {}
    providers = db.query(Provider).filter(Provider.id.in_(provider_ids)).all()
    return {provider.id: provider for provider in providers}


def serialize_user_bookings(bookings: list[Booking], db: Session) -> list[BookingResponse]:
    providers = load_providers({booking.provider_id for booking in bookings}, db)
    return [serialize_booking(booking, provider=providers.get(booking.provider_id)) for booking in bookings]


def conflict_error(conflict: Booking, db: Session) -> APIError:
    provider = db.query(Provider).filter(Provider.id == conflict.provider_id).first()
    return APIError(
        status.HTTP_409_CONFLICT,
        'You already have an appointment within an hour of this time.',
        code='BOOKING_CONFLICT',
        extra={'conflict': serialize_booking(conflict, provider=provider).model_dump(mode='json', by_alias=True)},
    )


def validate_requested_slot(
    provider: Provider,
    appointment_date: datetime,
    user_id: int,
    now: datetime,
    db: Session,
    booking_id: int | None = None,
) -> None:
    if appointment_date <= now:
        raise APIError(
            status.HTTP_400_BAD_REQUEST,
            'Appointments must be scheduled in the future.',
            code='INVALID_DATE',
        )

    try:
        schedule = parse_weekly_availability(provider.availability)
    except ValueError:
        schedule = {}

    if not is_slot_offered(schedule, appointment_date):
        raise APIError(
            status.HTTP_400_BAD_REQUEST,
            "The selected time is outside the provider's availability.",
            code='SLOT_UNAVAILABLE',
        )

    conflict = find_conflicting_booking(
        appointment_date,
        get_user_active_bookings(user_id, db),
        ignore_booking_id=booking_id,
    )
    if conflict:
        raise conflict_error(conflict, db)

    provider_bookings = [
        booking for booking in get_provider_active_bookings(provider.id, db)
        if booking.id != booking_id
    ]
    if overlaps_booking(appointment_date, provider_bookings):
        raise APIError(status.HTTP_409_CONFLICT, 'This time is already booked.', code='SLOT_TAKEN')


def get_participant_booking(booking_id: int, current_user: User, db: Session) -> tuple[Booking, Provider, bool]:
    """Return the booking, its provider and whether ``current_user`` is the provider."""
    booking = db.query(Booking).filter(Booking.id == booking_id).first()
    if booking is None:
        raise APIError(status.HTTP_404_NOT_FOUND, 'Booking not found', code='BOOKING_NOT_FOUND')

    provider = db.query(Provider).filter(Provider.id == booking.provider_id).first()
    is_provider = provider is not None and provider.user_id == current_user.id

    if not is_provider and booking.user_id != current_user.id:
        raise APIError(
            status.HTTP_403_FORBIDDEN,
            'Only the patient or provider of this booking can access it.',
            code='FORBIDDEN',
        )

    if provider is None:
        raise APIError(status.HTTP_404_NOT_FOUND, 'Provider not found', code='PROVIDER_NOT_FOUND')

    return booking, provider, is_provider


@router.post('/bookings', response_model=BookingEnvelope, status_code=status.HTTP_201_CREATED)
def create_booking(
    data: CreateBookingRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        provider = db.query(Provider).filter(Provider.id == data.provider_id).first()
        if provider is None:
            raise APIError(status.HTTP_404_NOT_FOUND, 'Provider not found', code='PROVIDER_NOT_FOUND')

        if provider.status != 'ready':
            raise APIError(
                status.HTTP_400_BAD_REQUEST,
                'Provider is not ready to accept bookings',
                code='PROVIDER_NOT_READY',
            )

        validate_requested_slot(provider, data.appointment_date, current_user.id, utc_now(), db)

        booking = Booking(
            user_id=current_user.id,
            provider_id=provider.id,
            appointment_date=data.appointment_date,
            session_type=data.session_type or DEFAULT_SESSION_TYPE,
            notes=data.notes,
            status=BOOKING_STATUS_SCHEDULED,
            reschedule_count=0,
        )
        db.add(booking)
        db.commit()
        db.refresh(booking)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc

    logger.info('Booking %s created for user %s with provider %s', booking.id, current_user.id, provider.id)
    return BookingEnvelope(
        booking=serialize_booking(booking, provider=provider),
        message='Booking created successfully',
    )


@router.get('/bookings', response_model=BookingListResponse)
def list_bookings(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        bookings = db.query(Booking).filter(
            Booking.user_id == current_user.id,
        ).order_by(Booking.appointment_date.desc()).all()

        return BookingListResponse(bookings=serialize_user_bookings(bookings, db))
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('/bookings/upcoming', response_model=BookingListResponse)
def list_upcoming_bookings(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        bookings = db.query(Booking).filter(
            Booking.user_id == current_user.id,
            Booking.status == BOOKING_STATUS_SCHEDULED,
            Booking.appointment_date > utc_now(),
        ).order_by(Booking.appointment_date.asc()).all()

        return BookingListResponse(bookings=serialize_user_bookings(bookings, db))
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('/bookings/conflicts', response_model=ConflictCheckResponse)
def check_booking_conflict(
    appointment_date: datetime = Query(..., alias='appointmentDate'),
    exclude_booking_id: int | None = Query(default=None, alias='excludeBookingId'),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        conflict = find_conflicting_booking(
            to_utc_naive(appointment_date),
            get_user_active_bookings(current_user.id, db),
            ignore_booking_id=exclude_booking_id,
        )
        if conflict is None:
            return ConflictCheckResponse(has_conflict=False)

        provider = db.query(Provider).filter(Provider.id == conflict.provider_id).first()
        return ConflictCheckResponse(has_conflict=True, conflict=serialize_booking(conflict, provider=provider))
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.post('/bookings/cancel', response_model=CancelBookingResponse)
def cancel_booking(
    data: CancelBookingRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        booking = db.query(Booking).filter(Booking.id == data.booking_id).first()
        if booking is None or booking.user_id != current_user.id:
            raise APIError(
                status.HTTP_404_NOT_FOUND,
                'Booking not found or access denied',
                code='BOOKING_NOT_FOUND',
            )

        if booking.status == BOOKING_STATUS_CANCELLED:
            raise APIError(status.HTTP_409_CONFLICT, 'Booking is already cancelled.', code='INVALID_STATUS')
        if booking.status == BOOKING_STATUS_COMPLETED:
            raise APIError(status.HTTP_409_CONFLICT, 'Completed bookings cannot be cancelled.', code='INVALID_STATUS')

        now = utc_now()
        if booking.appointment_date <= now:
            raise APIError(
                status.HTTP_400_BAD_REQUEST,
                'Appointments that have already started cannot be cancelled.',
                code='APPOINTMENT_STARTED',
            )

        charged = is_within_cancellation_fee_window(booking.appointment_date, now)
        booking.status = BOOKING_STATUS_CANCELLED
        booking.reason = data.reason
        booking.cancelled_at = now
        booking.late_cancellation = charged
        db.commit()
        db.refresh(booking)

        provider = db.query(Provider).filter(Provider.id == booking.provider_id).first()
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc

    if charged:
        logger.info('Booking %s cancelled inside the fee window', booking.id)

    return CancelBookingResponse(
        booking=serialize_booking(booking, provider=provider),
        cancellation=CancellationDetails(
            charged=charged,
            fee=config.LATE_CANCELLATION_FEE if charged else 0,
            free_cancellation=can_cancel_for_free(booking.appointment_date, now),
        ),
        message='Booking cancelled successfully',
    )


@router.post('/bookings/reschedule', response_model=BookingEnvelope)
def reschedule_booking(
    data: RescheduleBookingRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        booking, provider, is_provider = get_participant_booking(data.booking_id, current_user, db)

        if booking.status != BOOKING_STATUS_SCHEDULED:
            raise APIError(
                status.HTTP_409_CONFLICT,
                'Only scheduled bookings can be rescheduled.',
                code='INVALID_STATUS',
            )

        if data.new_appointment_date == booking.appointment_date:
            raise APIError(
                status.HTTP_400_BAD_REQUEST,
                'The new time must differ from the current appointment time.',
                code='INVALID_DATE',
            )

        now = utc_now()
        validate_requested_slot(provider, data.new_appointment_date, booking.user_id, now, db, booking_id=booking.id)

        previous_date = booking.appointment_date
        rescheduled_by = 'provider' if is_provider else 'user'
        history = list(booking.reschedule_history or [])
        history.append({
            'from': previous_date.isoformat(),
            'to': data.new_appointment_date.isoformat(),
            'by': rescheduled_by,
            'at': now.isoformat(),
        })

        booking.appointment_date = data.new_appointment_date
        booking.rescheduled_from = previous_date
        booking.rescheduled_at = now
        booking.rescheduled_by = rescheduled_by
        booking.reschedule_history = history
        booking.reschedule_count = (booking.reschedule_count or 0) + 1
        db.commit()
        db.refresh(booking)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc

    logger.info('Booking %s rescheduled by %s', booking.id, rescheduled_by)
    return BookingEnvelope(
        booking=serialize_booking(booking, provider=provider),
        message='Booking rescheduled successfully',
    )


def prepare_video_join(booking_id: int, current_user: User, db: Session) -> tuple[int, datetime, str, bool]:
    """Check the join window and return ``(booking_id, expires_at, display_name, is_owner)``."""
    ensure_database_ready()

    try:
        booking, provider, is_provider = get_participant_booking(booking_id, current_user, db)
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc

    if booking.status != BOOKING_STATUS_SCHEDULED:
        raise APIError(
            status.HTTP_409_CONFLICT,
            f'This booking is {booking.status} and can no longer be joined.',
            code='BOOKING_NOT_ACTIVE',
        )

    now = utc_now()
    session_end = booking.appointment_date + timedelta(minutes=SESSION_DURATION_MINUTES)
    if now < booking.appointment_date - timedelta(minutes=config.VIDEO_JOIN_EARLY_MINUTES):
        raise APIError(
            status.HTTP_400_BAD_REQUEST,
            f'The session can be joined {config.VIDEO_JOIN_EARLY_MINUTES} minutes before it starts.',
            code='SESSION_NOT_STARTED',
        )
    if now > session_end + timedelta(minutes=config.VIDEO_ROOM_GRACE_MINUTES):
        raise APIError(status.HTTP_400_BAD_REQUEST, 'This session has ended.', code='SESSION_ENDED')

    expires_at = session_end + timedelta(minutes=config.VIDEO_ROOM_GRACE_MINUTES)
    if is_provider:
        display_name = provider.name or 'Provider'
    else:
        display_name = current_user.name or 'User'

    return booking.id, expires_at, display_name, is_provider


@router.post('/bookings/{booking_id}/video/join', response_model=VideoJoinResponse)
async def join_video_session(
    booking_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    # Database work stays off the event loop; only the vendor calls are awaited here.
    booking_id, expires_at, display_name, is_owner = await run_in_threadpool(
        prepare_video_join, booking_id, current_user, db,
    )

    try:
        video_service = get_video_service()
        room = await video_service.ensure_room_for_booking(
            booking_id,
            expires_at=expires_at,
            user_name=display_name,
        )
        token = await video_service.create_meeting_token(
            room.room_name,
            user_name=display_name,
            is_owner=is_owner,
            expires_at=expires_at,
        )
    except VideoConfigurationError as exc:
        logger.error('Video vendor is not configured: %s', exc)
        raise APIError(
            status.HTTP_503_SERVICE_UNAVAILABLE,
            'Video sessions are not configured.',
            code='VIDEO_NOT_CONFIGURED',
        ) from exc
    except VideoServiceError as exc:
        logger.warning('Video vendor error for booking %s: %s (%s)', booking_id, exc.message, exc.status_code)
        raise APIError(
            status.HTTP_502_BAD_GATEWAY,
            f'Video service error: {exc.message}',
            code='VIDEO_SERVICE_ERROR',
        ) from exc

    return VideoJoinResponse(
        booking_id=booking_id,
        vendor=video_service.vendor,
        room_name=room.room_name,
        room_url=room.room_url,
        token=token,
        is_owner=is_owner,
        expires_at=expires_at,
    )


@router.post('/bookings/{booking_id}/video/complete', response_model=BookingEnvelope)
def complete_video_session(
    booking_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        booking, provider, _ = get_participant_booking(booking_id, current_user, db)

        if booking.status != BOOKING_STATUS_SCHEDULED:
            raise APIError(
                status.HTTP_409_CONFLICT,
                f'This booking is already {booking.status}.',
                code='INVALID_STATUS',
            )

        now = utc_now()
        if now < booking.appointment_date:
            raise APIError(
                status.HTTP_400_BAD_REQUEST,
                'A session cannot be completed before it starts.',
                code='SESSION_NOT_STARTED',
            )

        booking.status = BOOKING_STATUS_COMPLETED
        booking.completed_at = now
        provider.sessions_completed = (provider.sessions_completed or 0) + 1
        db.commit()
        db.refresh(booking)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc

    logger.info('Booking %s marked completed', booking.id)
    return BookingEnvelope(
        booking=serialize_booking(booking, provider=provider),
        message='Session completed successfully',
    )


def refresh_provider_rating(provider: Provider, db: Session) -> None:
    review_count, average_rating = db.query(
        func.count(Review.id),
        func.avg(Review.rating),
    ).filter(Review.provider_id == provider.id).one()

    provider.reviews_count = review_count or 0
    provider.rating = round(float(average_rating or 0), 2)


@router.post('/bookings/{booking_id}/review', response_model=SubmitReviewResponse)
def submit_session_review(
    booking_id: int,
    data: SubmitReviewRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        booking = db.query(Booking).filter(Booking.id == booking_id).first()
        if booking is None or booking.user_id != current_user.id:
            raise APIError(
                status.HTTP_404_NOT_FOUND,
                'Booking not found or access denied',
                code='BOOKING_NOT_FOUND',
            )

        if booking.status != BOOKING_STATUS_COMPLETED:
            raise APIError(
                status.HTTP_409_CONFLICT,
                'Only completed sessions can be reviewed.',
                code='INVALID_STATUS',
            )

        provider = db.query(Provider).filter(Provider.id == booking.provider_id).first()
        if provider is None:
            raise APIError(status.HTTP_404_NOT_FOUND, 'Provider not found', code='PROVIDER_NOT_FOUND')

        review = db.query(Review).filter(Review.booking_id == booking.id).first()
        if review is None:
            review = Review(user_id=current_user.id, provider_id=provider.id, booking_id=booking.id)
            db.add(review)
        review.rating = data.rating
        review.review_text = data.review_text
        db.flush()

        refresh_provider_rating(provider, db)
        db.commit()
        db.refresh(review)
        db.refresh(provider)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc

    logger.info('Review saved for booking %s (provider %s now %s)', booking.id, provider.id, provider.rating)
    return SubmitReviewResponse(
        review=ReviewResponse.model_validate(review),
        provider_rating=float(provider.rating or 0),
        provider_reviews_count=provider.reviews_count or 0,
        message='Review submitted successfully',
    )
