from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker

from telehealth.core import config
from telehealth.errors import database_unavailable


connect_args = {"check_same_thread": False} if config.DATABASE_URL.startswith("sqlite") else {}
engine = create_engine(config.DATABASE_URL, connect_args=connect_args)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


_schema_lock = Lock()
_booking_schema_checked = False
_provider_schema_checked = False


def ensure_booking_schema() -> None:
    global _booking_schema_checked

    if _booking_schema_checked:
        return

    with _schema_lock:
        if _booking_schema_checked:
            return

        inspector = inspect(engine)

        if 'bookings' not in inspector.get_table_names():
            _booking_schema_checked = True
            return

        existing_columns = {column['name'] for column in inspector.get_columns('bookings')}
        migration_steps = [
            ('reason', 'ALTER TABLE bookings ADD COLUMN reason VARCHAR'),
            ('cancelled_at', 'ALTER TABLE bookings ADD COLUMN cancelled_at TIMESTAMP'),
            ('late_cancellation', 'ALTER TABLE bookings ADD COLUMN late_cancellation BOOLEAN'),
            ('completed_at', 'ALTER TABLE bookings ADD COLUMN completed_at TIMESTAMP'),
            ('rescheduled_from', 'ALTER TABLE bookings ADD COLUMN rescheduled_from TIMESTAMP'),
            ('rescheduled_at', 'ALTER TABLE bookings ADD COLUMN rescheduled_at TIMESTAMP'),
            ('rescheduled_by', 'ALTER TABLE bookings ADD COLUMN rescheduled_by VARCHAR(30)'),
            ('reschedule_history', 'ALTER TABLE bookings ADD COLUMN reschedule_history JSON'),
            ('reschedule_count', 'ALTER TABLE bookings ADD COLUMN reschedule_count INTEGER DEFAULT 0'),
        ]

        with engine.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    connection.execute(text(statement))
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_bookings_provider_date ON bookings(provider_id, appointment_date)')
            )
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_bookings_user_status ON bookings(user_id, status)')
            )

        _booking_schema_checked = True


def ensure_provider_schema() -> None:
    global _provider_schema_checked

    if _provider_schema_checked:
        return

    with _schema_lock:
        if _provider_schema_checked:
            return

        inspector = inspect(engine)

        if 'providers' not in inspector.get_table_names():
            _provider_schema_checked = True
            return

        existing_columns = {column['name'] for column in inspector.get_columns('providers')}
        migration_steps = [
            ('availability', 'ALTER TABLE providers ADD COLUMN availability JSON'),
            ('sessions_completed', 'ALTER TABLE providers ADD COLUMN sessions_completed INTEGER DEFAULT 0'),
            ('reviews_count', 'ALTER TABLE providers ADD COLUMN reviews_count INTEGER DEFAULT 0'),
        ]

        with engine.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    connection.execute(text(statement))
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_providers_status ON providers(status)')
            )

        _provider_schema_checked = True


def ensure_database_ready() -> None:
    try:
        ensure_provider_schema()
        ensure_booking_schema()
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc
