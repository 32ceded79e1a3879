import calendar
from datetime import date, datetime, timezone
from typing import Any

SEASON_MONTHS: dict[str, tuple[int, ...]] = {
    "winter": (12, 1, 2),
    "spring": (3, 4, 5),
    "summer": (6, 7, 8),
    "autumn": (9, 10, 11),
}

SEASON_NAMES = {
    "winter": "Winter",
    "spring": "Frühling",
    "summer": "Sommer",
    "autumn": "Herbst",
}

WEEKDAY_NAMES = (
    "Montag",
    "Dienstag",
    "Mittwoch",
    "Donnerstag",
    "Freitag",
    "Samstag",
    "Sonntag",
)


def to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def parse_date(value: Any) -> datetime:
    """Coerce ``value`` to a naive datetime; aware values are shifted to UTC first."""
    if isinstance(value, datetime):
        return to_naive_utc(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, str):
        try:
            return to_naive_utc(datetime.fromisoformat(value.strip().replace("Z", "+00:00")))
        except ValueError:
            return datetime.now()
    return datetime.now()


def days_between(first: datetime, second: datetime) -> float:
    """Absolute distance in (fractional) days, tolerant of mixed tz-awareness."""
    delta = to_naive_utc(first) - to_naive_utc(second)
    return abs(delta.total_seconds()) / 86400.0


def is_last_day_of_month(value: datetime) -> bool:
    return value.day == calendar.monthrange(value.year, value.month)[1]


def is_end_of_month(value: datetime) -> bool:
    return value.day >= 28 or is_last_day_of_month(value)


def is_beginning_of_month(value: datetime) -> bool:
    return value.day <= 3


def is_payday_window(value: datetime) -> bool:
    return abs(value.day - 15) <= 2 or value.day >= 28


def season_of(value: datetime) -> str:
    for season, months in SEASON_MONTHS.items():
        if value.month in months:
            return season
    return "unknown"


def time_of_month(value: datetime) -> str:
    if value.day <= 5:
        return "beginning"
    if value.day <= 25:
        return "middle"
    return "end"


def format_duration(seconds: float) -> str:
    if seconds <= 0:
        return "0 ms"
    if seconds < 1:
        return f"{seconds * 1000:.1f} ms"
    if seconds < 60:
        return f"{seconds:.2f} s"
    return f"{seconds / 60:.2f} min"
