from telehealth.core import config
from telehealth.services.daily_video import DailyVideoService
from telehealth.services.jitsi_video import JitsiVideoService


def get_video_service() -> DailyVideoService | JitsiVideoService:
    if config.VIDEO_VENDOR == 'daily':
        return DailyVideoService()
    return JitsiVideoService()
