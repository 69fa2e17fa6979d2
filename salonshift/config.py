import os

from dotenv import load_dotenv

load_dotenv()


def _get_int(name: str, default: int) -> int:
    raw = os.getenv(name, str(default)).strip()
    try:
        return int(raw)
    except Exception:
        return int(default)


def _get_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name, "1" if default else "0").strip().lower()
    if raw in {"1", "true", "yes", "on"}:
        return True
    if raw in {"0", "false", "no", "off"}:
        return False
    return bool(default)


class Settings:
    APP_NAME = os.getenv("APP_NAME", "salonshift").strip() or "salonshift"
    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./salonshift.db")
    DB_AUTO_CREATE_ALL = _get_bool("DB_AUTO_CREATE_ALL", True)

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").strip().upper()
    LOG_JSON = _get_bool("LOG_JSON", True)

    RECEIPT_CHECK_MAX = _get_int("RECEIPT_CHECK_MAX", 1000)
    SCHEDULE_DEFAULT_NOTES = os.getenv(
        "SCHEDULE_DEFAULT_NOTES", "Calendar-based configuration"
    ).strip()
    LENDING_UNKNOWN_BRANCH_NAME = os.getenv(
        "LENDING_UNKNOWN_BRANCH_NAME", "Unknown Branch"
    ).strip()


settings = Settings()
