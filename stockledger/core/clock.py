from datetime import date, datetime, time, timedelta, timezone
from typing import Callable

from stockledger.core.errors import InvalidRangeError

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything stored is UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def start_of_day(value: date) -> datetime:
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


def end_of_day_exclusive(value: date) -> datetime:
    """First instant of the following day, for half-open ``[start, end)`` windows."""
    return start_of_day(value + timedelta(days=1))


def iter_days(start: date, end: date):
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def resolve_date_window(
    start: date | None,
    end: date | None,
    *,
    default_days: int,
    today: date | None = None,
    max_days: int | None = None,
) -> tuple[date, date]:
    resolved_end = end or today or utcnow().date()
    resolved_start = start or (resolved_end - timedelta(days=default_days))
    if resolved_end < resolved_start:
        raise InvalidRangeError(
            "end date cannot be before start date",
            start=resolved_start.isoformat(),
            end=resolved_end.isoformat(),
        )
    span_days = (resolved_end - resolved_start).days + 1
    if max_days is not None and span_days > max_days:
        raise InvalidRangeError(
            f"window spans {span_days} days; at most {max_days} allowed",
            start=resolved_start.isoformat(),
            end=resolved_end.isoformat(),
            max_days=max_days,
        )
    return resolved_start, resolved_end
