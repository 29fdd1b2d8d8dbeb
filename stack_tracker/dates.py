"""Calendar helpers shared by the normalization and aggregation engines."""
from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from dateutil import parser as date_parser

MONTH_LABELS: tuple[str, ...] = (
    "Jan", "Feb", "Mar", "Apr", "May", "Jun",
    "Jul", "Aug", "Sep", "Oct", "Nov", "Dec",
)


def parse_iso_date(value: object) -> Optional[date]:
    """Parse an ISO date (or datetime) string, returning ``None`` on failure.

    Plain ``YYYY-MM-DD`` strings are handled by the standard library; anything
    richer (``2026-03-01T00:00:00Z``, compact ``20260301``) goes through
    :func:`dateutil.parser.isoparse`.
    """

    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    stringified = str(value).strip()
    if not stringified:
        return None
    try:
        return date.fromisoformat(stringified)
    except ValueError:
        pass
    try:
        return date_parser.isoparse(stringified).date()
    except (ValueError, OverflowError):
        return None


def month_start(value: date) -> date:
    return value.replace(day=1)


def add_months(value: date, months: int) -> date:
    """Return the first day of the month ``months`` after ``value``'s month."""

    index = value.month - 1 + months
    return date(value.year + index // 12, index % 12 + 1, 1)
