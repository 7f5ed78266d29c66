"""Shared calendar-day parsing and week helpers.

Upstream sources report days either as plain ISO dates (``2024-01-01``)
or as ISO timestamps (``2024-01-01T00:00:00Z``). Everything downstream of
the fetchers works in UTC calendar days.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Any, Optional, Tuple

DATE_FORMAT_DATE = "date"
DATE_FORMAT_DATETIME = "datetime"


def to_utc(dt: datetime) -> datetime:
    """Ensure a datetime is UTC-aware."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


def parse_calendar_day(value: Any) -> Optional[Tuple[date, str]]:
    """Parse an ISO date or timestamp into a UTC calendar day.

    Returns ``(day, format)`` where *format* is :data:`DATE_FORMAT_DATE` or
    :data:`DATE_FORMAT_DATETIME`, or *None* on invalid or empty input.
    """
    if isinstance(value, datetime):
        return to_utc(value).date(), DATE_FORMAT_DATETIME
    if isinstance(value, date):
        return value, DATE_FORMAT_DATE
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    if "T" not in text and " " not in text:
        try:
            return date.fromisoformat(text), DATE_FORMAT_DATE
        except ValueError:
            return None
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    return to_utc(parsed).date(), DATE_FORMAT_DATETIME


def iso_week_start(day: date) -> date:
    """Monday of the ISO-8601 week containing *day*."""
    return day - timedelta(days=day.weekday())


def utc_midnight_iso(day: date) -> str:
    """Format a calendar day as an ISO-8601 timestamp at UTC midnight."""
    return datetime(day.year, day.month, day.day, tzinfo=timezone.utc).strftime(
        "%Y-%m-%dT%H:%M:%SZ"
    )
