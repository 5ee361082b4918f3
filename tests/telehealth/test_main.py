from datetime import datetime

import pytest
from fastapi.testclient import TestClient

from telehealth.database import get_db
from telehealth.main import app
from telehealth.routes import auth_routes, booking_routes, provider_routes

NOW = datetime(2026, 1, 5, 8, 0)


@pytest.fixture
def client(db, monkeypatch: pytest.MonkeyPatch):
    for module in (auth_routes, booking_routes, provider_routes):
        monkeypatch.setattr(module, 'ensure_database_ready', lambda: None)
    monkeypatch.setattr(booking_routes, 'utc_now', lambda: NOW)
    monkeypatch.setattr(provider_routes, 'utc_now', lambda: NOW)

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def _login(client: TestClient) -> dict:
    response = client.post('/users/login', json={'email': 'patient@example.com', 'password': 'secret-password'})
    assert response.status_code == 200
    return {'Authorization': f"Bearer {response.json()['token']}"}


def test_root_reports_status_and_video_vendor(client) -> None:
    response = client.get('/')

    assert response.status_code == 200
    assert set(response.json()) == {'status', 'videoVendor'}


def test_profile_without_token_returns_error_body(client) -> None:
    response = client.get('/users/profile')

    assert response.status_code == 401
    assert response.json()['error']['code'] == 'UNAUTHORIZED'
    assert response.json()['error']['status'] == 401


def test_invalid_payload_returns_validation_error(client) -> None:
    response = client.post('/users/login', json={})

    assert response.status_code == 400
    body = response.json()['error']
    assert body['code'] == 'VALIDATION_ERROR'
    assert 'body.email' in body['fields']


def test_booking_flow_uses_camel_case_wire_format(client, patient, provider) -> None:
    headers = _login(client)

    slots = client.get(
        f'/users/providers/{provider.id}/available-slots',
        params={'startDate': '2026-01-05', 'endDate': '2026-01-05'},
    ).json()
    assert slots['slots'][0] == {'date': '2026-01-05', 'time': '09:00', 'datetime': '2026-01-05T09:00:00.000Z'}

    created = client.post(
        '/users/bookings',
        json={'providerId': provider.id, 'appointmentDate': slots['slots'][0]['datetime'], 'notes': 'First visit'},
        headers=headers,
    )
    assert created.status_code == 201
    booking = created.json()['booking']
    assert booking['providerName'] == 'Dr. Rao'
    assert booking['sessionType'] == 'Video Consultation'

    conflict = client.post(
        '/users/bookings',
        json={'providerId': provider.id, 'appointmentDate': '2026-01-05T09:30:00Z'},
        headers=headers,
    )
    assert conflict.status_code == 409
    assert conflict.json()['error']['code'] == 'BOOKING_CONFLICT'
    assert conflict.json()['error']['conflict']['id'] == booking['id']

    cancelled = client.post(
        '/users/bookings/cancel',
        json={'bookingId': booking['id'], 'reason': 'Schedule change'},
        headers=headers,
    )
    assert cancelled.status_code == 200
    # One hour ahead falls inside the late-cancellation window.
    assert cancelled.json()['cancellation'] == {'charged': True, 'fee': 10, 'freeCancellation': False}
