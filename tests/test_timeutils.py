from datetime import date, datetime, timedelta, timezone

import pytest

from salonshift.timeutils import (
    date_for_day_key,
    day_end,
    day_key_for,
    hhmm_to_minutes,
    is_valid_hhmm,
    normalize_day_key,
    normalize_timestamp,
)


class _Wrapper:
    def __init__(self, value):
        self._value = value

    def to_date(self):
        return self._value


class _BrokenWrapper:
    def toDate(self):
        raise RuntimeError("corrupt timestamp")


def test_normalize_timestamp_accepts_native_wrapper_and_string_values():
    assert normalize_timestamp(datetime(2024, 2, 1, 8, 30)) == datetime(2024, 2, 1, 8, 30)
    assert normalize_timestamp(date(2024, 2, 1)) == datetime(2024, 2, 1)
    assert normalize_timestamp(_Wrapper(datetime(2024, 2, 3, 12, 0))) == datetime(2024, 2, 3, 12, 0)
    assert normalize_timestamp("2024-02-05") == datetime(2024, 2, 5)
    assert normalize_timestamp("2024-02-05T10:00:00Z") == datetime(2024, 2, 5, 10, 0)


def test_normalize_timestamp_converts_aware_values_to_naive_utc():
    aware = datetime(2024, 2, 1, 10, 0, tzinfo=timezone(timedelta(hours=2)))
    assert normalize_timestamp(aware) == datetime(2024, 2, 1, 8, 0)


def test_normalize_timestamp_returns_none_for_unusable_values():
    assert normalize_timestamp(None) is None
    assert normalize_timestamp("not a date") is None
    assert normalize_timestamp(12345) is None
    assert normalize_timestamp(_BrokenWrapper()) is None


def test_day_end_is_last_millisecond_of_the_day():
    assert day_end(date(2024, 2, 3)) == datetime(2024, 2, 3, 23, 59, 59, 999000)


def test_hhmm_parsing_requires_zero_padded_24h_times():
    assert is_valid_hhmm("09:00")
    assert is_valid_hhmm("23:59")
    assert not is_valid_hhmm("9:00")
    assert not is_valid_hhmm("24:00")
    assert hhmm_to_minutes("17:30") == 17 * 60 + 30
    with pytest.raises(ValueError):
        hhmm_to_minutes("7pm")


def test_day_keys_are_case_insensitive_and_map_to_dates():
    assert normalize_day_key("Monday") == "monday"
    with pytest.raises(ValueError):
        normalize_day_key("funday")
    assert day_key_for(date(2024, 1, 8)) == "monday"
    assert date_for_day_key(date(2024, 1, 8), "monday") == date(2024, 1, 8)
    assert date_for_day_key(date(2024, 1, 10), "monday") == date(2024, 1, 15)
    assert date_for_day_key(date(2024, 1, 8), "sunday") == date(2024, 1, 14)
