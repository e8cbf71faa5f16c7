"""Date helpers: everything is stored as naive UTC"""
from datetime import date, datetime, time, timezone
from typing import Union

from devicehub.utils.errors import ValidationError


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """Convert an aware datetime to naive UTC; naive values are assumed UTC already."""
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def parse_date_boundary(value: Union[str, datetime, date], field: str, end_of_day: bool = False) -> datetime:
    """Parse a caller supplied ``startDate``/``endDate``.

    Accepts ISO 8601 dates or datetimes (a trailing ``Z`` is allowed). A bare
    date used as an upper bound covers the whole day.

    Raises:
        ValidationError: if the value cannot be parsed.
    """
    if isinstance(value, datetime):
        return to_naive_utc(value)
    if isinstance(value, date):
        return datetime.combine(value, time.max if end_of_day else time.min)

    raw = (value or "").strip()
    if not raw:
        raise ValidationError(f"{field} is required")

    try:
        if len(raw) == 10:
            parsed_date = date.fromisoformat(raw)
            return datetime.combine(parsed_date, time.max if end_of_day else time.min)
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        return to_naive_utc(datetime.fromisoformat(raw))
    except ValueError:
        raise ValidationError(f"Invalid date format for {field}")


def parse_date_range(start_date: str, end_date: str):
    """Parse both boundaries and check their order."""
    start = parse_date_boundary(start_date, "startDate")
    end = parse_date_boundary(end_date, "endDate", end_of_day=True)
    if start > end:
        raise ValidationError("startDate must not be after endDate")
    return start, end
