"""
Date helpers shared by planning and execution tracking.

All timestamps are stored as naive UTC (SQLite drops tzinfo on read).
"""
import calendar
from datetime import date, datetime, timezone


def utcnow() -> datetime:
    """Naive UTC now."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def month_label(value: date | datetime | None = None) -> str:
    """
    "YYYY-MM" label for a date/datetime (UTC for aware datetimes).

    Example:
        >>> month_label(date(2025, 9, 14))
        '2025-09'
    """
    if value is None:
        value = utcnow()
    if isinstance(value, datetime) and value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return f"{value.year:04d}-{value.month:02d}"


def parse_month_label(label: str) -> tuple[int, int]:
    """'2025-09' -> (2025, 9). Raises ValueError on malformed labels."""
    try:
        year_s, month_s = label.split("-")
        year, month = int(year_s), int(month_s)
    except (ValueError, AttributeError):
        raise ValueError(f"Invalid month label: {label!r}")
    if not (1 <= month <= 12) or len(year_s) != 4:
        raise ValueError(f"Invalid month label: {label!r}")
    return year, month


def add_months(d: date, months: int) -> date:
    """Shift by calendar months, clamping the day to the target month length."""
    total = d.month - 1 + months
    year = d.year + total // 12
    month = total % 12 + 1
    day = min(d.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def is_last_day_of_month(d: date) -> bool:
    return d.day == calendar.monthrange(d.year, d.month)[1]


def next_payment_date(today: date, payment_day: int) -> date:
    """First date with day == payment_day strictly after today."""
    candidate = date(today.year, today.month, payment_day)
    if candidate <= today:
        candidate = add_months(candidate, 1)
    return candidate


def as_naive_utc(value: datetime | None) -> datetime | None:
    """Drop tzinfo after converting to UTC (PostgreSQL returns aware timestamps)."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)
