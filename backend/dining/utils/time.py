from datetime import date, datetime, timedelta, timezone
from typing import Iterator

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


def utc_now_naive() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def weekday_name(day: date) -> str:
    return WEEKDAYS[day.weekday()]


def iter_dates(start: date, end: date) -> Iterator[date]:
    """Yield every calendar date from `start` to `end`, both inclusive."""
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)
