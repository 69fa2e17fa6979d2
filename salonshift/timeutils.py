"""Calendar and clock helpers shared by the scheduling modules.

Shift times travel as zero-padded 24-hour ``HH:mm`` strings and calendar dates
as ``YYYY-MM-DD``. Everything that arrives from storage or from a client goes
through :func:`normalize_timestamp` once, at the edge, and is a plain
``datetime``/``date`` from then on.
"""

import re
from datetime import date, datetime, time, timedelta, timezone

DAY_KEYS = (
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
    "sunday",
)
DAY_LABELS = {key: key.capitalize() for key in DAY_KEYS}

_HHMM_RE = re.compile(r"^([01][0-9]|2[0-3]):[0-5][0-9]$")
_WRAPPER_METHODS = ("to_datetime", "ToDatetime", "to_date", "toDate")


def utc_now_naive() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_utc_naive(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _from_native(value) -> datetime | None:
    if isinstance(value, datetime):
        return to_utc_naive(value)
    if isinstance(value, date):
        return datetime.combine(value, time.min)
    return None


def _from_string(raw: str) -> datetime | None:
    text = raw.strip()
    if not text:
        return None
    try:
        if len(text) == 10:
            return datetime.combine(date.fromisoformat(text), time.min)
        return to_utc_naive(datetime.fromisoformat(text.replace("Z", "+00:00")))
    except ValueError:
        return None


def normalize_timestamp(value) -> datetime | None:
    """Resolve a stored timestamp into a naive UTC ``datetime``.

    Tried in order: native ``datetime``/``date``, a wrapper object exposing a
    conversion method (``to_datetime()``, ``ToDatetime()``, ``to_date()`` or
    ``toDate()``), then an ISO string. Returns ``None`` when nothing works.
    """
    if value is None:
        return None

    native = _from_native(value)
    if native is not None:
        return native

    for method_name in _WRAPPER_METHODS:
        convert = getattr(value, method_name, None)
        if not callable(convert):
            continue
        try:
            converted = convert()
        except Exception:
            return None
        return _from_native(converted)

    if isinstance(value, str):
        return _from_string(value)
    return None


def normalize_day(value) -> date | None:
    resolved = normalize_timestamp(value)
    if resolved is None:
        return None
    return resolved.date()


def day_start(value: datetime | date) -> datetime:
    day = value.date() if isinstance(value, datetime) else value
    return datetime.combine(day, time.min)


def day_end(value: datetime | date) -> datetime:
    day = value.date() if isinstance(value, datetime) else value
    return datetime.combine(day, time.max.replace(microsecond=999000))


def is_valid_hhmm(value) -> bool:
    return isinstance(value, str) and bool(_HHMM_RE.match(value))


def hhmm_to_minutes(value: str) -> int:
    if not is_valid_hhmm(value):
        raise ValueError(f"Invalid time format '{value}'. Use HH:mm format (e.g., 09:00)")
    hours, minutes = value.split(":")
    return int(hours) * 60 + int(minutes)


def day_key_for(day: date) -> str:
    return DAY_KEYS[day.weekday()]


def normalize_day_key(value: str) -> str:
    key = (value or "").strip().lower()
    if key not in DAY_KEYS:
        raise ValueError(f"Invalid day of week '{value}'")
    return key


def week_dates(week_start: date) -> list[date]:
    return [week_start + timedelta(days=offset) for offset in range(7)]


def date_for_day_key(anchor: date, day_key: str) -> date:
    """First calendar date on or after ``anchor`` that falls on ``day_key``."""
    target = DAY_KEYS.index(normalize_day_key(day_key))
    return anchor + timedelta(days=(target - anchor.weekday()) % 7)


def format_day(value: datetime | date) -> str:
    return value.strftime("%b %d, %Y")
