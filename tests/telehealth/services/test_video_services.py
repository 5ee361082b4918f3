import asyncio
import json
from datetime import datetime, timezone
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from telehealth.core import config
from telehealth.services.daily_video import DailyVideoService, safe_room_name
from telehealth.services.jitsi_video import JitsiVideoService, generate_room_name
from telehealth.services.video import get_video_service
from telehealth.services.video_room import VideoConfigurationError, VideoServiceError

EXPIRES_AT = datetime(2026, 1, 5, 11, 30)
EXPIRES_AT_EPOCH = int(EXPIRES_AT.replace(tzinfo=timezone.utc).timestamp())


class _RecordingDaily:
    """Fake Daily REST API that records every request it receives."""

    def __init__(self, room_status: int = 200):
        self.room_status = room_status
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if request.method == 'GET' and path.startswith('/v1/rooms/'):
            room_name = path.rsplit('/', 1)[-1]
            if self.room_status == 200:
                return httpx.Response(200, json={'name': room_name, 'url': f'https://clinic.daily.co/{room_name}'})
            if self.room_status == 404:
                return httpx.Response(404, json={'error': 'not-found', 'info': f'room {room_name} was not found'})
            return httpx.Response(self.room_status, json={'error': 'server-error'})

        if request.method == 'POST' and path == '/v1/rooms':
            body = json.loads(request.content)
            return httpx.Response(200, json={'name': body['name'], 'url': f'https://clinic.daily.co/{body["name"]}'})

        if request.method == 'POST' and path == '/v1/meeting-tokens':
            return httpx.Response(200, json={'token': 'signed-meeting-token'})

        return httpx.Response(400, json={'error': 'unexpected request'})

    def calls(self, method: str, path: str) -> list[httpx.Request]:
        return [request for request in self.requests if request.method == method and request.url.path == path]


def _daily_service(fake: _RecordingDaily) -> DailyVideoService:
    return DailyVideoService(api_key='test-key', domain='clinic.daily.co', transport=httpx.MockTransport(fake))


def test_safe_room_name_normalizes_to_lowercase_hyphenated() -> None:
    assert safe_room_name('  Aarohaa Booking__42!! ') == 'aarohaa-booking-42'
    assert safe_room_name('--a--b--') == 'a-b'


def test_ensure_room_for_booking_reuses_existing_room_without_post() -> None:
    fake = _RecordingDaily(room_status=200)

    room = asyncio.run(_daily_service(fake).ensure_room_for_booking(42, expires_at=EXPIRES_AT))

    assert room.room_name == 'aarohaa-booking-42'
    assert room.room_url == 'https://clinic.daily.co/aarohaa-booking-42'
    assert len(fake.calls('GET', '/v1/rooms/aarohaa-booking-42')) == 1
    assert fake.calls('POST', '/v1/rooms') == []
    assert fake.requests[0].headers['authorization'] == 'Bearer test-key'


def test_ensure_room_for_booking_creates_private_room_after_404() -> None:
    fake = _RecordingDaily(room_status=404)

    room = asyncio.run(_daily_service(fake).ensure_room_for_booking(42, expires_at=EXPIRES_AT))

    created = fake.calls('POST', '/v1/rooms')
    assert len(created) == 1
    assert json.loads(created[0].content) == {
        'name': 'aarohaa-booking-42',
        'privacy': 'private',
        'properties': {'exp': EXPIRES_AT_EPOCH},
    }
    assert [request.method for request in fake.requests] == ['GET', 'POST']
    assert room.room_url == 'https://clinic.daily.co/aarohaa-booking-42'


def test_ensure_room_for_booking_raises_on_other_errors_without_post() -> None:
    fake = _RecordingDaily(room_status=500)

    with pytest.raises(VideoServiceError) as exception_info:
        asyncio.run(_daily_service(fake).ensure_room_for_booking(42))

    assert exception_info.value.status_code == 500
    assert exception_info.value.message == 'server-error'
    assert fake.calls('POST', '/v1/rooms') == []


def test_ensure_room_for_booking_wraps_transport_failures() -> None:
    def unreachable(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError('connection refused', request=request)

    service = DailyVideoService(api_key='test-key', domain='clinic.daily.co', transport=httpx.MockTransport(unreachable))

    with pytest.raises(VideoServiceError) as exception_info:
        asyncio.run(service.ensure_room_for_booking(42))

    assert exception_info.value.status_code == 502


def test_create_meeting_token_scopes_token_to_room_and_owner_flag() -> None:
    fake = _RecordingDaily()

    token = asyncio.run(
        _daily_service(fake).create_meeting_token(
            'aarohaa-booking-42',
            user_name='Dr. Rao',
            is_owner=True,
            expires_at=EXPIRES_AT,
        )
    )

    assert token == 'signed-meeting-token'
    body = json.loads(fake.calls('POST', '/v1/meeting-tokens')[0].content)
    assert body == {
        'properties': {
            'room_name': 'aarohaa-booking-42',
            'user_name': 'Dr. Rao',
            'is_owner': True,
            'exp': EXPIRES_AT_EPOCH,
        }
    }


def test_daily_service_requires_api_key_and_domain() -> None:
    with pytest.raises(VideoConfigurationError):
        DailyVideoService(api_key='', domain='clinic.daily.co')

    with pytest.raises(VideoConfigurationError):
        DailyVideoService(api_key='test-key', domain='')


def test_generate_room_name_strips_unsafe_characters() -> None:
    assert generate_room_name(42) == 'aarohaa-booking-42'
    assert generate_room_name('4 2/x', suffix='retry') == 'aarohaa-booking-42x-retry'


def test_jitsi_room_url_includes_display_name_and_english_interface() -> None:
    room = asyncio.run(
        JitsiVideoService(domain='meet.jit.si').ensure_room_for_booking(7, expires_at=EXPIRES_AT, user_name='Pat Patient')
    )
    parsed = urlparse(room.room_url)
    params = parse_qs(parsed.query)

    assert room.room_name == 'aarohaa-booking-7'
    assert parsed.netloc == 'meet.jit.si'
    assert parsed.path == '/aarohaa-booking-7'
    assert json.loads(params['userInfo'][0]) == {'displayName': 'Pat Patient'}
    assert params['lang'] == ['en']
    assert params['config.lang'] == ['en']
    assert params['interfaceConfig.lang'] == ['en']
    assert room.config == {'privacy': 'private', 'expiresAt': '2026-01-05T11:30:00'}


def test_jitsi_meeting_token_is_not_issued() -> None:
    token = asyncio.run(JitsiVideoService().create_meeting_token('aarohaa-booking-7', is_owner=True))

    assert token is None


def test_get_video_service_follows_configured_vendor(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config, 'VIDEO_VENDOR', 'jitsi')
    assert get_video_service().vendor == 'jitsi'

    monkeypatch.setattr(config, 'VIDEO_VENDOR', 'daily')
    monkeypatch.setattr(config, 'DAILY_API_KEY', 'test-key')
    monkeypatch.setattr(config, 'DAILY_DOMAIN', 'clinic.daily.co')
    service = get_video_service()

    assert isinstance(service, DailyVideoService)
    assert service.vendor == 'daily'


def test_daily_room_lookup_ignores_display_name() -> None:
    fake = _RecordingDaily(room_status=200)

    room = asyncio.run(_daily_service(fake).ensure_room_for_booking(42, user_name='Pat Patient'))

    assert room.room_name == 'aarohaa-booking-42'
    assert [request.method for request in fake.requests] == ['GET']
