"""Jitsi Meet rooms for video sessions.

Jitsi rooms exist as soon as someone opens their URL, so nothing here talks to
the network; the async methods mirror the Daily service so callers can switch
vendors freely.
"""

import json
import re
from datetime import datetime
from urllib.parse import urlencode

from telehealth.core import config
from telehealth.services.video_room import ROOM_NAME_PREFIX, VideoRoom


def generate_room_name(booking_id: int | str, suffix: str = '') -> str:
    safe_booking_id = re.sub(r'[^a-z0-9-]', '', str(booking_id), flags=re.IGNORECASE)
    room_suffix = f'-{suffix}' if suffix else ''
    return f'{ROOM_NAME_PREFIX}-{safe_booking_id}{room_suffix}'


def build_room_url(room_name: str, user_name: str | None = None, domain: str | None = None) -> str:
    params = []
    if user_name:
        params.append(('userInfo', json.dumps({'displayName': user_name})))

    # Force the English interface regardless of browser locale.
    params.extend([
        ('lang', 'en'),
        ('config.lang', 'en'),
        ('interfaceConfig.lang', 'en'),
    ])
    return f'https://{domain or config.JITSI_DOMAIN}/{room_name}?{urlencode(params)}'


class JitsiVideoService:
    vendor = 'jitsi'

    def __init__(self, domain: str | None = None):
        self.domain = domain or config.JITSI_DOMAIN

    async def ensure_room_for_booking(
        self,
        booking_id: int | str,
        expires_at: datetime | None = None,
        privacy: str = 'private',
        suffix: str = '',
        user_name: str | None = None,
    ) -> VideoRoom:
        room_name = generate_room_name(booking_id, suffix)
        return VideoRoom(
            room_name=room_name,
            room_url=build_room_url(room_name, user_name=user_name, domain=self.domain),
            config={
                'privacy': privacy,
                'expiresAt': expires_at.isoformat() if expires_at else None,
            },
        )

    async def create_meeting_token(
        self,
        room_name: str,
        user_name: str | None = None,
        is_owner: bool = False,
        expires_at: datetime | None = None,
    ) -> str | None:
        # meet.jit.si does not issue tokens; self-hosted JWT auth is not configured.
        return None
