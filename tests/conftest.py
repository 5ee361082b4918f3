import os
from datetime import datetime

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')

from telehealth.auth.passwords import hash_password  # noqa: E402
from telehealth.database import Base  # noqa: E402
from telehealth.models.booking import Booking  # noqa: E402
from telehealth.models.provider import Provider  # noqa: E402
from telehealth.models.review import Review  # noqa: E402,F401
from telehealth.models.user import User  # noqa: E402

WEEKDAY_AVAILABILITY = {
    day: {'enabled': True, 'start': '09:00', 'end': '17:00'}
    for day in ('monday', 'tuesday', 'wednesday', 'thursday', 'friday')
}
WEEKDAY_AVAILABILITY['saturday'] = {'enabled': False, 'start': '10:00', 'end': '14:00'}


@pytest.fixture
def db():
    engine = create_engine(
        'sqlite:///:memory:',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    session = testing_session_local()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def patient(db) -> User:
    user = User(email='patient@example.com', name='Pat Patient', phone='555-0100', role='user',
                hashed_password=hash_password('secret-password'))
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def other_patient(db) -> User:
    user = User(email='other@example.com', name='Olive Other', phone='555-0101', role='user')
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def provider_user(db) -> User:
    user = User(email='dr.rao@example.com', name='Dr. Rao', phone='555-0199', role='provider')
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def provider(db, provider_user) -> Provider:
    record = Provider(
        user_id=provider_user.id,
        name='Dr. Rao',
        email=provider_user.email,
        specialty='Counselling',
        title='Clinical Psychologist',
        hourly_rate=80,
        status='ready',
        verified=True,
        availability=WEEKDAY_AVAILABILITY,
    )
    db.add(record)
    db.commit()
    db.refresh(record)
    return record


@pytest.fixture
def make_booking(db):
    def _make_booking(user: User, provider: Provider, appointment_date: datetime, status: str = 'scheduled') -> Booking:
        booking = Booking(
            user_id=user.id,
            provider_id=provider.id,
            appointment_date=appointment_date,
            session_type='Video Consultation',
            status=status,
            reschedule_count=0,
        )
        db.add(booking)
        db.commit()
        db.refresh(booking)
        return booking

    return _make_booking
