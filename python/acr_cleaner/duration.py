"""
Retention window parsing.

Turns the operator's --ago (e.g. "360d", "12h") or --timestamp input into the
single frozen cutoff instant a run compares every manifest against.
"""

import re
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

from dateutil import parser as date_parser

from acr_cleaner.error_utils import ConfigError, InvalidDurationFormat, UnparseableTimestamp
from acr_cleaner.models import QUERY_TIMESTAMP_FORMAT, RetentionWindow, to_utc

DURATION_UNITS = {
    "s": timedelta(seconds=1),
    "m": timedelta(minutes=1),
    "h": timedelta(hours=1),
    "d": timedelta(days=1),
}

_MAGNITUDE = re.compile(r"[0-9]+")


def split_ago(value: str) -> Tuple[int, str]:
    """Split a relative duration into its magnitude and lowercase unit.

    Raises:
        InvalidDurationFormat: if the magnitude is not a plain non-negative
            integer or the unit is not recognized
    """
    value = (value or "").strip()
    if len(value) < 2:
        raise InvalidDurationFormat(
            message=f"Invalid duration '{value}'",
            suggestions=["Use a number followed by a duration type, e.g. 360d, 12h, 30m or 90s"],
            details={"ago": value},
        )

    magnitude, unit = value[:-1], value[-1].lower()
    if magnitude.startswith("-") and _MAGNITUDE.fullmatch(magnitude[1:]):
        raise InvalidDurationFormat(
            message=f"Duration must not be negative: '{value}'",
            details={"ago": value},
        )
    if not _MAGNITUDE.fullmatch(magnitude):
        raise InvalidDurationFormat(
            message=f"Invalid duration number '{magnitude}' in '{value}'",
            suggestions=["The number must be made of the digits 0-9 only"],
            details={"ago": value},
        )

    if unit not in DURATION_UNITS:
        raise InvalidDurationFormat(
            message=f"Invalid duration type '{value[-1]}' in '{value}'",
            suggestions=["Please use 's' for seconds, 'm' for minutes, 'h' for hours, or 'd' for days"],
            details={"ago": value},
        )
    return int(magnitude), unit


def parse_ago(value: str, now: Optional[datetime] = None) -> datetime:
    """Resolve a relative duration to an absolute UTC instant.

    Args:
        value: Integer magnitude followed by one unit character: 's' for seconds,
            'm' for minutes, 'h' for hours, 'd' for days (case-insensitive)
        now: Reference instant (default: current UTC time)

    Returns:
        now minus the duration

    Raises:
        InvalidDurationFormat: see split_ago
    """
    amount, unit = split_ago(value)
    now = to_utc(now) if now else datetime.now(timezone.utc)
    return now - amount * DURATION_UNITS[unit]


def parse_timestamp(value: str) -> datetime:
    """Parse a free-form date/time string into a UTC instant.

    Naive timestamps are interpreted as UTC.

    Raises:
        UnparseableTimestamp: if no known format matches
    """
    try:
        parsed = date_parser.parse((value or "").strip())
    except (ValueError, OverflowError, TypeError) as e:
        raise UnparseableTimestamp(
            message=f"Unable to parse the provided timestamp '{value}'",
            suggestions=["Use an ISO-8601 date such as 2024-01-31 or 2024-01-31T12:00:00Z"],
            details={"timestamp": value, "error_message": str(e)},
        )
    return to_utc(parsed)


def resolve_window(ago: Optional[str] = None, timestamp: Optional[str] = None,
                   now: Optional[datetime] = None) -> RetentionWindow:
    """Build the run's RetentionWindow from exactly one of ago/timestamp."""
    if ago and timestamp:
        raise ConfigError(
            message="Provide either a duration ago or a timestamp, not both",
            details={"ago": ago, "timestamp": timestamp},
        )
    if timestamp:
        return RetentionWindow(cutoff=parse_timestamp(timestamp), source="timestamp", raw=timestamp)
    if ago:
        amount, unit = split_ago(ago)
        # raw is handed to acr purge --ago, which wants the canonical form
        return RetentionWindow(cutoff=parse_ago(ago, now=now), source="ago", raw=f"{amount}{unit}")
    raise ConfigError(
        message="You must provide a duration ago or a timestamp",
        suggestions=["Pass --ago 360d or --timestamp 2024-01-31", "Or set retention.ago in config.yaml"],
    )


def format_query_timestamp(instant: datetime) -> str:
    """Format an instant the way the manifest query expects (no fraction, no zone)."""
    return to_utc(instant).strftime(QUERY_TIMESTAMP_FORMAT)
