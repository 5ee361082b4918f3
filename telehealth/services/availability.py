"""Slot computation and booking policy for provider weekly availability.

Providers publish a weekly schedule (one window per weekday). Bookable slots
are derived from that schedule on the fly, minus the provider's active
bookings; nothing here touches the database.

All datetimes are naive UTC. Aware values are converted with :func:`to_utc_naive`
before they are compared.
"""

import json
from collections.abc import Iterable, Mapping
from datetime import date, datetime, time, timedelta, timezone
from typing import Any

from pydantic import BaseModel, field_serializer, model_validator

from telehealth.models.booking import BOOKING_STATUS_SCHEDULED

SESSION_DURATION_MINUTES = 60
SLOT_INCREMENT_MINUTES = 30
CONFLICT_THRESHOLD_MINUTES = 60
FREE_CANCELLATION_HOURS = 2
MAX_SLOT_RANGE_DAYS = 31
DAY_NAMES = ('monday', 'tuesday', 'wednesday', 'thursday', 'friday', 'saturday', 'sunday')


class DayAvailability(BaseModel):
    enabled: bool = True
    start: time
    end: time

    @model_validator(mode='after')
    def validate_window(self) -> 'DayAvailability':
        # Disabled days keep whatever window was last saved.
        if self.enabled and self.start >= self.end:
            raise ValueError('Availability start time must be before end time.')
        return self

    @field_serializer('start', 'end')
    def serialize_clock(self, value: time) -> str:
        return value.strftime('%H:%M')


def to_utc_naive(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_weekly_availability(raw: Any) -> dict[str, DayAvailability]:
    """Validate a weekly schedule and key it by lower-case day name.

    ``raw`` may be a JSON string, a mapping, or ``None`` (no availability).
    Raises ``ValueError`` for unknown day names or malformed windows.
    """
    if raw is None:
        return {}

    if isinstance(raw, str):
        try:
            raw = json.loads(raw) if raw.strip() else {}
        except json.JSONDecodeError as exc:
            raise ValueError('Availability must be valid JSON.') from exc

    if not isinstance(raw, Mapping):
        raise ValueError('Availability must be an object keyed by day name.')

    schedule: dict[str, DayAvailability] = {}
    for day_name, window in raw.items():
        normalized_day = str(day_name).strip().lower()
        if normalized_day not in DAY_NAMES:
            raise ValueError(f'Unknown day name: {day_name}.')
        schedule[normalized_day] = DayAvailability.model_validate(window)

    return schedule


def dump_weekly_availability(schedule: Mapping[str, DayAvailability]) -> dict[str, dict]:
    return {day_name: schedule[day_name].model_dump() for day_name in DAY_NAMES if day_name in schedule}


def get_day_window(schedule: Mapping[str, DayAvailability], day: date) -> DayAvailability | None:
    window = schedule.get(DAY_NAMES[day.weekday()])
    if window is None or not window.enabled:
        return None
    return window


def validate_slot_range(start_date: date, end_date: date) -> None:
    if end_date < start_date:
        raise ValueError('End date must be on or after start date.')
    if (end_date - start_date).days >= MAX_SLOT_RANGE_DAYS:
        raise ValueError(f'Date range cannot exceed {MAX_SLOT_RANGE_DAYS} days.')


def active_bookings(bookings: Iterable[Any]) -> list[Any]:
    return [booking for booking in bookings if (booking.status or BOOKING_STATUS_SCHEDULED) == BOOKING_STATUS_SCHEDULED]


def overlaps_booking(slot_start: datetime, bookings: Iterable[Any]) -> bool:
    session = timedelta(minutes=SESSION_DURATION_MINUTES)
    slot_end = slot_start + session
    for booking in bookings:
        booking_start = to_utc_naive(booking.appointment_date)
        if slot_start < booking_start + session and booking_start < slot_end:
            return True
    return False


def iterate_day_slots(window: DayAvailability, day: date) -> list[datetime]:
    slots: list[datetime] = []
    current = datetime.combine(day, window.start)
    window_end = datetime.combine(day, window.end)
    session = timedelta(minutes=SESSION_DURATION_MINUTES)

    while current + session <= window_end:
        slots.append(current)
        current += timedelta(minutes=SLOT_INCREMENT_MINUTES)

    return slots


def generate_available_slots(
    schedule: Mapping[str, DayAvailability],
    bookings: Iterable[Any],
    start_date: date,
    end_date: date,
    now: datetime,
) -> list[datetime]:
    """Return the open slot starts between ``start_date`` and ``end_date`` inclusive.

    A slot is open when it lies inside the day's enabled window, starts after
    ``now`` and its session does not overlap an active booking.
    """
    now = to_utc_naive(now)
    blocking = active_bookings(bookings)
    slots: list[datetime] = []
    current_day = start_date

    while current_day <= end_date:
        window = get_day_window(schedule, current_day)
        if window is not None:
            for slot_start in iterate_day_slots(window, current_day):
                if slot_start > now and not overlaps_booking(slot_start, blocking):
                    slots.append(slot_start)
        current_day += timedelta(days=1)

    return slots


def format_slot(slot_start: datetime) -> dict[str, str]:
    return {
        'date': slot_start.strftime('%Y-%m-%d'),
        'time': slot_start.strftime('%H:%M'),
        'datetime': slot_start.strftime('%Y-%m-%dT%H:%M:%S.000Z'),
    }


def is_slot_offered(schedule: Mapping[str, DayAvailability], appointment_date: datetime) -> bool:
    appointment_date = to_utc_naive(appointment_date)
    window = get_day_window(schedule, appointment_date.date())
    if window is None:
        return False
    return appointment_date in iterate_day_slots(window, appointment_date.date())


def find_conflicting_booking(
    appointment_date: datetime,
    bookings: Iterable[Any],
    ignore_booking_id: int | None = None,
) -> Any | None:
    """First active booking starting less than an hour from ``appointment_date``."""
    appointment_date = to_utc_naive(appointment_date)
    threshold = timedelta(minutes=CONFLICT_THRESHOLD_MINUTES)

    for booking in active_bookings(bookings):
        if ignore_booking_id is not None and booking.id == ignore_booking_id:
            continue
        if abs(appointment_date - to_utc_naive(booking.appointment_date)) < threshold:
            return booking

    return None


def hours_until(appointment_date: datetime, now: datetime) -> float:
    return (to_utc_naive(appointment_date) - to_utc_naive(now)).total_seconds() / 3600


def is_within_cancellation_fee_window(appointment_date: datetime, now: datetime) -> bool:
    remaining = hours_until(appointment_date, now)
    return 0 < remaining <= FREE_CANCELLATION_HOURS


def can_cancel_for_free(appointment_date: datetime, now: datetime) -> bool:
    return hours_until(appointment_date, now) > FREE_CANCELLATION_HOURS


def calendar_week(reference_date: date, slots: Iterable[datetime], today: date | None = None) -> list[dict]:
    """Seven day entries, Monday through Sunday of the week holding ``reference_date``."""
    today = today or utc_now().date()
    monday = reference_date - timedelta(days=reference_date.weekday())

    slot_counts: dict[date, int] = {}
    for slot_start in slots:
        slot_counts[slot_start.date()] = slot_counts.get(slot_start.date(), 0) + 1

    week = []
    for offset in range(7):
        day = monday + timedelta(days=offset)
        week.append({
            'date': day.isoformat(),
            'dayName': DAY_NAMES[day.weekday()].capitalize()[:3],
            'slotCount': slot_counts.get(day, 0),
            'isToday': day == today,
        })
    return week
