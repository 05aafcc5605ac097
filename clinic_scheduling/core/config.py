import os

from clinic_scheduling.models.slot import SlotKind


def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_list(value: str | None, default: list[str]) -> list[str]:
    if not value:
        return default
    return [item.strip() for item in value.split(",") if item.strip()]

APP_ENV = os.getenv("APP_ENV", "development")
DEBUG = _get_bool(os.getenv("DEBUG"), default=False)
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

CORS_ALLOWED_ORIGINS = _get_list(os.getenv("CORS_ALLOWED_ORIGINS"), ["http://localhost:4200"])

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRES_MINUTES = int(os.getenv("JWT_EXPIRES_MINUTES", "60"))

# Open-ended recurrences and generate requests never reach further than this.
SLOT_GENERATION_HORIZON_DAYS = int(os.getenv("SLOT_GENERATION_HORIZON_DAYS", "28"))
LEDGER_RETRY_ATTEMPTS = int(os.getenv("LEDGER_RETRY_ATTEMPTS", "3"))
DEFAULT_SLOT_KIND = os.getenv("DEFAULT_SLOT_KIND", SlotKind.REGULAR.value).strip().lower()

def validate_runtime_config() -> None:
    if APP_ENV.lower() == "production" and JWT_SECRET_KEY == "change-me":
        raise RuntimeError("JWT_SECRET_KEY must be set in production.")
    if LEDGER_RETRY_ATTEMPTS < 1:
        raise RuntimeError("LEDGER_RETRY_ATTEMPTS must be at least 1.")
    if DEFAULT_SLOT_KIND not in {kind.value for kind in SlotKind}:
        raise RuntimeError(f"DEFAULT_SLOT_KIND must be one of: {', '.join(kind.value for kind in SlotKind)}.")
