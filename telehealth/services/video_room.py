from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel

ROOM_NAME_PREFIX = 'aarohaa-booking'


class VideoRoom(BaseModel):
    room_name: str
    room_url: str
    config: dict[str, Any] | None = None


class VideoServiceError(Exception):
    """Raised when a video vendor rejects a request or cannot be reached."""

    def __init__(self, status_code: int, message: str, data: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.data = data


class VideoConfigurationError(RuntimeError):
    pass


def to_epoch_seconds(value: datetime | None) -> int | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp())
