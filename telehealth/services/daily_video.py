"""Daily.co room provisioning and meeting tokens.

Rooms are named after the booking id, so the GET-then-create sequence in
:meth:`DailyVideoService.ensure_room_for_booking` is idempotent without any
local state. Providers always receive owner (host) tokens.
"""

import logging
import re
from datetime import datetime
from typing import Any

import httpx

from telehealth.core import config
from telehealth.services.video_room import (
    ROOM_NAME_PREFIX,
    VideoConfigurationError,
    VideoRoom,
    VideoServiceError,
    to_epoch_seconds,
)

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT_SECONDS = 10.0


def safe_room_name(name: str) -> str:
    # Daily room names: lowercase letters, digits and hyphens.
    normalized = re.sub(r'[^a-z0-9-]', '-', str(name).strip().lower())
    normalized = re.sub(r'-+', '-', normalized)
    return normalized.strip('-')


def _without_none(values: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in values.items() if value is not None}


class DailyVideoService:
    vendor = 'daily'

    def __init__(
        self,
        api_key: str | None = None,
        domain: str | None = None,
        base_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key if api_key is not None else config.DAILY_API_KEY
        self.domain = domain if domain is not None else config.DAILY_DOMAIN
        self.base_url = base_url or config.DAILY_API_BASE_URL
        self.transport = transport

        if not self.api_key:
            raise VideoConfigurationError('DAILY_API_KEY is required')
        if not self.domain:
            raise VideoConfigurationError('DAILY_DOMAIN is required')

    async def _request(self, path: str, method: str = 'GET', body: dict | None = None) -> dict | None:
        headers = {
            'Authorization': f'Bearer {self.api_key}',
            'Content-Type': 'application/json',
        }

        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                transport=self.transport,
                timeout=REQUEST_TIMEOUT_SECONDS,
            ) as client:
                response = await client.request(method, path, headers=headers, json=body)
        except httpx.RequestError as exc:
            logger.warning('Daily API %s %s failed: %s', method, path, exc)
            raise VideoServiceError(502, 'Daily API is unreachable') from exc

        try:
            data = response.json() if response.content else None
        except ValueError:
            data = None

        if response.is_error:
            details = data if isinstance(data, dict) else {}
            message = (
                details.get('error')
                or details.get('info')
                or details.get('message')
                or f'Daily API error ({response.status_code})'
            )
            raise VideoServiceError(response.status_code, message, data)

        return data

    def room_name_for_booking(self, booking_id: int | str) -> str:
        return safe_room_name(f'{ROOM_NAME_PREFIX}-{booking_id}')

    async def ensure_room_for_booking(
        self,
        booking_id: int | str,
        expires_at: datetime | None = None,
        user_name: str | None = None,
    ) -> VideoRoom:
        # Daily carries the display name in the meeting token, not the room.
        room_name = self.room_name_for_booking(booking_id)
        room_url = f'https://{self.domain}/{room_name}'

        try:
            existing = await self._request(f'/rooms/{room_name}')
            return VideoRoom(
                room_name=room_name,
                room_url=(existing or {}).get('url') or room_url,
                config=existing,
            )
        except VideoServiceError as exc:
            if exc.status_code != 404:
                raise

        logger.info('Creating Daily room %s for booking %s', room_name, booking_id)
        created = await self._request(
            '/rooms',
            method='POST',
            body={
                'name': room_name,
                # token-required
                'privacy': 'private',
                'properties': _without_none({'exp': to_epoch_seconds(expires_at)}),
            },
        )

        return VideoRoom(
            room_name=room_name,
            room_url=(created or {}).get('url') or room_url,
            config=created,
        )

    async def create_meeting_token(
        self,
        room_name: str,
        user_name: str | None = None,
        is_owner: bool = False,
        expires_at: datetime | None = None,
    ) -> str | None:
        token_response = await self._request(
            '/meeting-tokens',
            method='POST',
            body={
                'properties': _without_none({
                    'room_name': room_name,
                    'user_name': user_name or None,
                    'is_owner': bool(is_owner),
                    'exp': to_epoch_seconds(expires_at),
                }),
            },
        )
        return (token_response or {}).get('token')
