import logging

from fastapi import APIRouter, Depends, status
from pydantic import field_validator
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from telehealth.auth import jwt_handler
from telehealth.auth.dependencies import get_current_user
from telehealth.auth.passwords import hash_password, verify_password
from telehealth.database import ensure_database_ready, get_db
from telehealth.errors import APIError, database_unavailable
from telehealth.models.provider import Provider
from telehealth.models.user import User
from telehealth.schemas import CamelModel, UserResponse, serialize_user
from telehealth.services.availability import utc_now

router = APIRouter(tags=['auth'])
logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6


def normalize_email(value: str) -> str:
    normalized = value.strip().lower()
    if not normalized or '@' not in normalized:
        raise ValueError('A valid email address is required.')
    return normalized


def require_text(value: str, field_label: str) -> str:
    normalized = value.strip()
    if not normalized:
        raise ValueError(f'{field_label} is required.')
    return normalized


class RegisterRequest(CamelModel):
    email: str
    password: str
    name: str
    phone: str

    @field_validator('email')
    @classmethod
    def validate_email(cls, value: str) -> str:
        return normalize_email(value)

    @field_validator('password')
    @classmethod
    def validate_password(cls, value: str) -> str:
        if len(value) < MIN_PASSWORD_LENGTH:
            raise ValueError(f'Password must be at least {MIN_PASSWORD_LENGTH} characters.')
        return value

    @field_validator('name')
    @classmethod
    def validate_name(cls, value: str) -> str:
        return require_text(value, 'Name')

    @field_validator('phone')
    @classmethod
    def validate_phone(cls, value: str) -> str:
        return require_text(value, 'Phone number')


class RegisterProviderRequest(RegisterRequest):
    specialty: str | None = None
    title: str | None = None
    bio: str | None = None
    hourly_rate: float = 0

    @field_validator('hourly_rate')
    @classmethod
    def validate_hourly_rate(cls, value: float) -> float:
        if value < 0:
            raise ValueError('Hourly rate cannot be negative.')
        return value


class LoginRequest(CamelModel):
    email: str
    password: str

    @field_validator('email')
    @classmethod
    def validate_email(cls, value: str) -> str:
        return normalize_email(value)


class UpdateProfileRequest(CamelModel):
    name: str | None = None
    phone: str | None = None

    @field_validator('name')
    @classmethod
    def validate_name(cls, value: str | None) -> str | None:
        return None if value is None else require_text(value, 'Name')


class AuthResponse(CamelModel):
    user: UserResponse
    token: str
    message: str


class ProfileResponse(CamelModel):
    user: UserResponse


def _email_taken(db: Session, email: str) -> APIError | None:
    if db.query(User).filter(User.email == email).first():
        return APIError(status.HTTP_409_CONFLICT, 'Email already registered', code='EMAIL_EXISTS')
    return None


@router.post('/register', response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
def register(data: RegisterRequest, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        conflict = _email_taken(db, data.email)
        if conflict:
            raise conflict

        user = User(
            email=data.email,
            name=data.name,
            phone=data.phone,
            hashed_password=hash_password(data.password),
            role='user',
        )
        db.add(user)
        db.commit()
        db.refresh(user)
    except IntegrityError as exc:
        db.rollback()
        raise APIError(status.HTTP_409_CONFLICT, 'Email already registered', code='EMAIL_EXISTS') from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc

    logger.info('Registered user %s', user.id)
    return AuthResponse(
        user=serialize_user(user),
        token=jwt_handler.create_user_token(user),
        message='Registration successful',
    )


@router.post('/register/provider', response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
def register_provider(data: RegisterProviderRequest, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        conflict = _email_taken(db, data.email)
        if conflict:
            raise conflict

        user = User(
            email=data.email,
            name=data.name,
            phone=data.phone,
            hashed_password=hash_password(data.password),
            role='provider',
        )
        db.add(user)
        db.flush()

        db.add(Provider(
            user_id=user.id,
            name=data.name,
            email=data.email,
            phone=data.phone,
            specialty=data.specialty,
            title=data.title,
            bio=data.bio,
            hourly_rate=data.hourly_rate,
            status='pending',
            verified=False,
        ))
        db.commit()
        db.refresh(user)
    except IntegrityError as exc:
        db.rollback()
        raise APIError(status.HTTP_409_CONFLICT, 'Email already registered', code='EMAIL_EXISTS') from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc

    logger.info('Registered provider account %s', user.id)
    return AuthResponse(
        user=serialize_user(user),
        token=jwt_handler.create_user_token(user),
        message='Provider registration successful',
    )


@router.post('/login', response_model=AuthResponse)
def login(data: LoginRequest, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        user = db.query(User).filter(User.email == data.email).first()
        if user is None:
            raise APIError(
                status.HTTP_401_UNAUTHORIZED,
                'User not found. Please check your email or sign up.',
                code='USER_NOT_FOUND',
            )

        if not verify_password(data.password, user.hashed_password):
            logger.info('Rejected login for user %s', user.id)
            raise APIError(status.HTTP_401_UNAUTHORIZED, 'Invalid email or password', code='INVALID_CREDENTIALS')

        user.last_login = utc_now()
        db.commit()
        db.refresh(user)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc

    return AuthResponse(
        user=serialize_user(user),
        token=jwt_handler.create_user_token(user),
        message='Login successful',
    )


@router.get('/profile', response_model=ProfileResponse)
def get_profile(current_user: User = Depends(get_current_user)):
    return ProfileResponse(user=serialize_user(current_user))


@router.put('/profile', response_model=ProfileResponse)
def update_profile(
    data: UpdateProfileRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        if data.name is not None:
            current_user.name = data.name
        if data.phone is not None:
            current_user.phone = data.phone.strip() or None
        db.commit()
        db.refresh(current_user)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc

    return ProfileResponse(user=serialize_user(current_user))
