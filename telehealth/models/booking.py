"""Booking model definitions."""

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Integer, String, Text, func
from telehealth.database import Base

BOOKING_STATUS_SCHEDULED = "scheduled"
BOOKING_STATUS_COMPLETED = "completed"
BOOKING_STATUS_CANCELLED = "cancelled"
DEFAULT_SESSION_TYPE = "Video Consultation"


class Booking(Base):
    """Represents a scheduled appointment between a user and a provider.

    Rows are never deleted; cancellation and completion only change ``status``.
    """
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    provider_id = Column(Integer, ForeignKey("providers.id"), nullable=False, index=True)
    appointment_date = Column(DateTime, nullable=False)
    session_type = Column(String, default=DEFAULT_SESSION_TYPE)
    notes = Column(Text)
    status = Column(String, default=BOOKING_STATUS_SCHEDULED)
    reason = Column(String)
    cancelled_at = Column(DateTime)
    late_cancellation = Column(Boolean)
    completed_at = Column(DateTime)
    rescheduled_from = Column(DateTime)
    rescheduled_at = Column(DateTime)
    rescheduled_by = Column(String(30))
    reschedule_history = Column(JSON)
    reschedule_count = Column(Integer, default=0)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
