import pytest
from fastapi.security import HTTPAuthorizationCredentials
from pydantic import ValidationError

from telehealth.auth import jwt_handler
from telehealth.auth.dependencies import get_current_provider, get_current_user
from telehealth.errors import APIError
from telehealth.models.provider import Provider
from telehealth.models.user import User
from telehealth.routes import auth_routes
from telehealth.routes.auth_routes import (
    LoginRequest,
    RegisterProviderRequest,
    RegisterRequest,
    UpdateProfileRequest,
    login,
    register,
    register_provider,
    update_profile,
)


@pytest.fixture(autouse=True)
def database_ready(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(auth_routes, 'ensure_database_ready', lambda: None)


def _bearer(token: str) -> HTTPAuthorizationCredentials:
    return HTTPAuthorizationCredentials(scheme='Bearer', credentials=token)


def test_register_hashes_password_and_returns_token(db) -> None:
    response = register(
        data=RegisterRequest(email=' New.Patient@Example.com ', password='secret-password', name='New Patient',
                             phone='555-0123'),
        db=db,
    )

    user = db.query(User).filter(User.email == 'new.patient@example.com').one()
    assert user.hashed_password != 'secret-password'
    assert user.role == 'user'
    assert response.user.id == user.id
    payload = jwt_handler.decode_access_token(response.token)
    assert payload['sub'] == str(user.id)
    assert payload['role'] == 'user'


def test_register_rejects_duplicate_email(db, patient) -> None:
    with pytest.raises(APIError) as exception_info:
        register(
            data=RegisterRequest(email='patient@example.com', password='another-secret', name='Copy', phone='555'),
            db=db,
        )

    assert exception_info.value.status_code == 409
    assert exception_info.value.code == 'EMAIL_EXISTS'


@pytest.mark.parametrize(
    'payload',
    [
        {'email': 'patient@example.com', 'password': '123', 'name': 'Pat', 'phone': '555'},
        {'email': 'not-an-email', 'password': 'secret-password', 'name': 'Pat', 'phone': '555'},
        {'email': 'patient@example.com', 'password': 'secret-password', 'name': '  ', 'phone': '555'},
    ],
)
def test_register_request_validates_fields(payload: dict) -> None:
    with pytest.raises(ValidationError):
        RegisterRequest(**payload)


def test_register_provider_creates_pending_provider_profile(db) -> None:
    response = register_provider(
        data=RegisterProviderRequest(
            email='dr.iyer@example.com',
            password='secret-password',
            name='Dr. Iyer',
            phone='555-0142',
            specialty='Nutrition',
            hourly_rate=60,
        ),
        db=db,
    )

    provider = db.query(Provider).filter(Provider.email == 'dr.iyer@example.com').one()
    assert response.user.role == 'provider'
    assert provider.user_id == response.user.id
    assert provider.status == 'pending'
    assert provider.verified is False
    assert provider.specialty == 'Nutrition'


def test_login_returns_token_and_records_last_login(db, patient) -> None:
    response = login(data=LoginRequest(email='PATIENT@example.com', password='secret-password'), db=db)

    assert response.message == 'Login successful'
    assert jwt_handler.decode_access_token(response.token)['email'] == 'patient@example.com'
    db.refresh(patient)
    assert patient.last_login is not None


@pytest.mark.parametrize(
    ('email', 'password', 'code'),
    [
        ('patient@example.com', 'wrong-password', 'INVALID_CREDENTIALS'),
        ('nobody@example.com', 'secret-password', 'USER_NOT_FOUND'),
    ],
)
def test_login_rejects_bad_credentials(db, patient, email: str, password: str, code: str) -> None:
    with pytest.raises(APIError) as exception_info:
        login(data=LoginRequest(email=email, password=password), db=db)

    assert exception_info.value.status_code == 401
    assert exception_info.value.code == code


def test_login_rejects_accounts_without_password(db, other_patient) -> None:
    with pytest.raises(APIError) as exception_info:
        login(data=LoginRequest(email='other@example.com', password='anything'), db=db)

    assert exception_info.value.code == 'INVALID_CREDENTIALS'


def test_update_profile_changes_name_and_phone(db, patient) -> None:
    response = update_profile(data=UpdateProfileRequest(name='Pat P.', phone='555-0999'), current_user=patient, db=db)

    assert response.user.name == 'Pat P.'
    assert response.user.phone == '555-0999'


def test_get_current_user_resolves_token_subject(db, patient) -> None:
    token = jwt_handler.create_user_token(patient)

    assert get_current_user(credentials=_bearer(token), db=db).id == patient.id


@pytest.mark.parametrize(
    'credentials',
    [
        None,
        _bearer('not-a-jwt'),
        _bearer(jwt_handler.create_access_token(subject='abc')),
        _bearer(jwt_handler.create_access_token(subject='999')),
        _bearer(jwt_handler.create_access_token(subject='1', expires_minutes=-5)),
    ],
)
def test_get_current_user_rejects_invalid_tokens(db, patient, credentials) -> None:
    with pytest.raises(APIError) as exception_info:
        get_current_user(credentials=credentials, db=db)

    assert exception_info.value.status_code == 401
    assert exception_info.value.code == 'UNAUTHORIZED'


def test_get_current_provider_requires_provider_profile(db, patient, provider_user, provider) -> None:
    assert get_current_provider(current_user=provider_user, db=db).id == provider.id

    with pytest.raises(APIError) as exception_info:
        get_current_provider(current_user=patient, db=db)

    assert exception_info.value.code == 'PROVIDER_NOT_FOUND'
