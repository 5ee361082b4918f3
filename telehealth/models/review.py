"""Review model definitions."""

from sqlalchemy import Column, DateTime, ForeignKey, Integer, Text, func
from telehealth.database import Base

MIN_REVIEW_RATING = 1
MAX_REVIEW_RATING = 5
MIN_REVIEW_TEXT_LENGTH = 10


class Review(Base):
    """A patient's rating of a completed session; one per booking."""
    __tablename__ = "reviews"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    provider_id = Column(Integer, ForeignKey("providers.id"), nullable=False, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False, unique=True, index=True)
    rating = Column(Integer, nullable=False)
    review_text = Column(Text, nullable=False)
    created_at = Column(DateTime, server_default=func.now())
