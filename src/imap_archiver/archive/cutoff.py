"""Cutoff computation for deciding which messages are old."""

from __future__ import annotations

from datetime import datetime, timedelta

DEFAULT_CUTOFF_DAYS = 7

_IMAP_MONTHS = (
    "Jan",
    "Feb",
    "Mar",
    "Apr",
    "May",
    "Jun",
    "Jul",
    "Aug",
    "Sep",
    "Oct",
    "Nov",
    "Dec",
)


def compute_cutoff(now: datetime, *, days: int = DEFAULT_CUTOFF_DAYS) -> datetime:
    """Return the start of the calendar day ``days`` days before ``now``.

    The result keeps the timezone of ``now``.

    Args:
        now: Reference instant, normally the start of the run.
        days: How many days back the cutoff lies.

    Returns:
        Midnight of the cutoff day.

    Raises:
        ValueError: If ``days`` is negative.
    """
    if days < 0:
        raise ValueError(f"days must not be negative: {days}")
    day = now - timedelta(days=days)
    return day.replace(hour=0, minute=0, second=0, microsecond=0)


def imap_date(value: datetime) -> str:
    """Format a datetime as an IMAP search date (e.g. ``7-Oct-2026``).

    Month names are fixed English abbreviations regardless of locale.
    """
    return f"{value.day}-{_IMAP_MONTHS[value.month - 1]}-{value.year:04d}"
