"""Date resolution rules shared by the heuristic extractor and backend adapters."""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M"
DEFAULT_HOUR = 9

# Feb 29 may need several years to find a valid occurrence.
_MAX_YEAR_LOOKAHEAD = 8


def format_timestamp(value: datetime) -> str:
    return value.strftime(TIMESTAMP_FORMAT)


def default_start(now: datetime) -> datetime:
    """Tomorrow at 09:00 relative to ``now``."""
    tomorrow = now.date() + timedelta(days=1)
    return datetime(tomorrow.year, tomorrow.month, tomorrow.day, DEFAULT_HOUR, 0)


def next_occurrence(month: int, day: int, today: date) -> date | None:
    """Resolve a month/day without a year.

    Uses the current year unless that date has already passed, in which case
    the following year (or the next one where the date exists). Returns None
    for a month/day that never exists.
    """
    for year in range(today.year, today.year + _MAX_YEAR_LOOKAHEAD + 1):
        try:
            candidate = date(year, month, day)
        except ValueError:
            continue
        if candidate >= today:
            return candidate
    return None


def resolve_date(month: int, day: int, year: int | None, today: date) -> date | None:
    """Resolve a calendar date, never returning one earlier than ``today``.

    An explicit year is kept when the date is still upcoming. A missing year,
    or an explicit date that has already passed, falls back to the next
    occurrence of that month/day. Invalid dates yield None.
    """
    if year is not None:
        try:
            candidate = date(year, month, day)
        except ValueError:
            return None
        if candidate >= today:
            return candidate
    return next_occurrence(month, day, today)


def ensure_upcoming(value: str, now: datetime) -> str:
    """Apply the scheduling invariant to a backend-supplied timestamp.

    Empty values become tomorrow at 09:00. ISO timestamps in the past are
    moved to the next occurrence of their month/day, keeping the time of day.
    Anything unparseable is returned unchanged.
    """
    if not value:
        return format_timestamp(default_start(now))
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        logger.debug("Leaving unparseable scheduled_start as-is: %r", value)
        return value
    if parsed.date() >= now.date():
        return value
    resolved = next_occurrence(parsed.month, parsed.day, now.date())
    if resolved is None:
        return format_timestamp(default_start(now))
    return format_timestamp(datetime(resolved.year, resolved.month, resolved.day, parsed.hour, parsed.minute))
