"""Provider model definitions."""

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Integer, Numeric, String, Text, func
from telehealth.database import Base


class Provider(Base):
    """Represents a care provider offering video consultations."""
    __tablename__ = "providers"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    email = Column(String, unique=True, index=True, nullable=False)
    phone = Column(String)
    specialty = Column(String)
    title = Column(String)
    bio = Column(Text)
    hourly_rate = Column(Numeric(10, 2), default=0)
    rating = Column(Numeric(3, 2), default=0)
    sessions_completed = Column(Integer, default=0)
    reviews_count = Column(Integer, default=0)
    verified = Column(Boolean, default=False)
    status = Column(String, default="pending")  # pending/ready
    availability = Column(JSON)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
