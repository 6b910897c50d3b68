import os


def _get_int(value: str | None, default: int) -> int:
    if value is None or not value.strip():
        return default
    return int(value)


def _get_list(value: str | None, default: list[str]) -> list[str]:
    if value is None:
        return default
    return [item.strip() for item in value.split(",") if item.strip()]

APP_ENV = os.getenv("APP_ENV", "development")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./counseling.db")

CORS_ALLOWED_ORIGINS = _get_list(os.getenv("CORS_ALLOWED_ORIGINS"), ["http://localhost:3000"])

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRES_MINUTES = _get_int(os.getenv("JWT_EXPIRES_MINUTES"), 60)

# Scheduling rules
SLOT_GRANULARITY_MINUTES = _get_int(os.getenv("SLOT_GRANULARITY_MINUTES"), 60)
BOOKING_HORIZON_DAYS = _get_int(os.getenv("BOOKING_HORIZON_DAYS"), 30)
DEFAULT_MAX_SESSIONS_PER_DAY = _get_int(os.getenv("DEFAULT_MAX_SESSIONS_PER_DAY"), 8)
MAX_SESSIONS_PER_DAY_LIMIT = 12
MIN_APPOINTMENT_MINUTES = 15
STUDENT_CANCELLATION_NOTICE_MINUTES = _get_int(os.getenv("STUDENT_CANCELLATION_NOTICE_MINUTES"), 0)

MAX_NOTES_LENGTH = 1000
MAX_STUDENT_NOTES_LENGTH = 500
MAX_COUNSELOR_NOTES_LENGTH = 1000
MAX_LOCATION_LENGTH = 200
MAX_FEEDBACK_LENGTH = 1000


def validate_runtime_config() -> None:
    if APP_ENV.lower() == "production" and JWT_SECRET_KEY == "change-me":
        raise RuntimeError("JWT_SECRET_KEY must be set in production.")
    if SLOT_GRANULARITY_MINUTES < MIN_APPOINTMENT_MINUTES:
        raise RuntimeError("SLOT_GRANULARITY_MINUTES must be at least MIN_APPOINTMENT_MINUTES.")
