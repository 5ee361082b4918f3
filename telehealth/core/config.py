import os

from dotenv import load_dotenv


load_dotenv()


def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_list(value: str | None, default: list[str]) -> list[str]:
    if not value:
        return default
    return [item.strip() for item in value.split(",") if item.strip()]


APP_ENV = os.getenv("APP_ENV", "development")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./telehealth.db")

CORS_ORIGINS = _get_list(os.getenv("CORS_ORIGINS"), ["http://localhost:5173", "http://localhost:3000"])
CORS_ALLOW_CREDENTIALS = _get_bool(os.getenv("CORS_ALLOW_CREDENTIALS"), default=True)

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRES_MINUTES = int(os.getenv("JWT_EXPIRES_MINUTES", "1440"))

# "jitsi" or "daily"
VIDEO_VENDOR = os.getenv("VIDEO_VENDOR", "jitsi").strip().lower()
DAILY_API_BASE_URL = os.getenv("DAILY_API_BASE_URL", "https://api.daily.co/v1")
DAILY_API_KEY = os.getenv("DAILY_API_KEY", "")
DAILY_DOMAIN = os.getenv("DAILY_DOMAIN", "")
JITSI_DOMAIN = os.getenv("JITSI_DOMAIN", "meet.jit.si")
VIDEO_JOIN_EARLY_MINUTES = int(os.getenv("VIDEO_JOIN_EARLY_MINUTES", "15"))
VIDEO_ROOM_GRACE_MINUTES = int(os.getenv("VIDEO_ROOM_GRACE_MINUTES", "30"))

LATE_CANCELLATION_FEE = int(os.getenv("LATE_CANCELLATION_FEE", "10"))


def validate_runtime_config() -> None:
    if APP_ENV.lower() == "production" and JWT_SECRET_KEY == "change-me":
        raise RuntimeError("JWT_SECRET_KEY must be set in production.")
    if VIDEO_VENDOR not in {"jitsi", "daily"}:
        raise RuntimeError("VIDEO_VENDOR must be 'jitsi' or 'daily'.")
