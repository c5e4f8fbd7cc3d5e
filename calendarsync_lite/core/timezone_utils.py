"""Time helpers for calendarsync_lite.

All engine code reads the current time through ``now_utc()`` so tests can pin the
clock with the CALENDARSYNC_TEST_TIME environment variable.
"""

from __future__ import annotations

import datetime
import logging
import os
import zoneinfo

from dateutil import parser as date_parser

logger = logging.getLogger(__name__)


def now_utc() -> datetime.datetime:
    """Return current UTC time with tzinfo.

    Can be overridden for testing via CALENDARSYNC_TEST_TIME environment variable.
    Format: ISO 8601 datetime string (e.g., "2025-07-01T08:00:00+02:00")

    Returns:
        Current time in UTC with timezone info
    """
    test_time = os.environ.get("CALENDARSYNC_TEST_TIME")
    if test_time:
        try:
            dt = date_parser.isoparse(test_time)
            if dt.tzinfo is not None:
                return dt.astimezone(datetime.timezone.utc)
            # Assume naive datetime is already UTC
            return dt.replace(tzinfo=datetime.timezone.utc)
        except Exception as e:
            logger.warning("Failed to parse CALENDARSYNC_TEST_TIME=%r: %s", test_time, e)

    return datetime.datetime.now(datetime.timezone.utc)


def resolve_zone(tz_name: str | None) -> datetime.tzinfo:
    """Return a tzinfo for ``tz_name``, falling back to UTC for unknown names."""
    if not tz_name:
        return datetime.timezone.utc
    try:
        return zoneinfo.ZoneInfo(tz_name)
    except (zoneinfo.ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone %r; using UTC", tz_name)
        return datetime.timezone.utc


def ensure_aware(dt: datetime.datetime, tz: datetime.tzinfo | None = None) -> datetime.datetime:
    """Attach ``tz`` (UTC by default) to naive datetimes; aware values pass through."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=tz or datetime.timezone.utc)
    return dt


def parse_iso_datetime(value: str) -> datetime.datetime:
    """Parse an ISO-8601 string (date or datetime) into an aware UTC datetime.

    Raises:
        ValueError: If the value cannot be parsed
    """
    dt = date_parser.isoparse(value)
    return ensure_aware(dt).astimezone(datetime.timezone.utc)
