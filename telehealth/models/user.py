"""User model definitions."""

from sqlalchemy import Column, DateTime, Integer, String, func
from telehealth.database import Base


class User(Base):
    """Represents an application user."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    name = Column(String, nullable=False)
    phone = Column(String)
    hashed_password = Column(String)
    role = Column(String, default="user")  # user/provider
    created_at = Column(DateTime, server_default=func.now())
    last_login = Column(DateTime)
