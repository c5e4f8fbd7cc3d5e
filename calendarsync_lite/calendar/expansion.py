"""Date-window filtering and multi-day expansion of source events.

Parsers produce ``SourceEvent`` records; this module turns each one into one or
more day-bounded ``CanonicalEvent`` occurrences with ids that are stable across
re-parses of the same upstream data.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, tzinfo
from typing import Optional

from ..sync_models import CanonicalEvent, Origin, OriginKind

logger = logging.getLogger(__name__)

CONTINUATION_SUFFIX = " (continued)"
END_OF_DAY = time(23, 59, 59)

# Guard against absurd spans (e.g. DTEND typo'd decades out)
MAX_EXPANDED_DAYS = 400


@dataclass(frozen=True)
class SourceEvent:
    """One upstream event (or recurrence instance) before expansion.

    ``start`` and ``end`` are timezone-aware. For all-day events ``end`` is the
    exclusive midnight following the last covered day, as in ICS.
    """

    uid: str
    title: str
    start: datetime
    end: datetime
    description: str = ""
    all_day: bool = False
    color: Optional[str] = None
    # Recurrence instances always get a date-suffixed id
    is_instance: bool = False


@dataclass(frozen=True)
class DateWindow:
    """Inclusive time horizon used to drop far-past and far-future events."""

    start: datetime
    end: datetime

    @classmethod
    def around(cls, now: datetime, past_days: int = 365, future_days: int = 365) -> DateWindow:
        return cls(start=now - timedelta(days=past_days), end=now + timedelta(days=future_days))

    def contains(self, event: SourceEvent) -> bool:
        """Return True unless the event lies entirely outside the window."""
        return not (event.end < self.start or event.start > self.end)


def covered_days(start: datetime, end: datetime) -> list[date]:
    """Return the calendar days an interval touches.

    An end at exactly midnight (exclusive all-day DTEND, or a timed event ending
    at 00:00) does not count the following day.
    """
    first = start.date()
    last = end.date()
    if end > start and end.timetz().replace(tzinfo=None) == time(0, 0) and last > first:
        last -= timedelta(days=1)
    if last < first:
        last = first

    span = (last - first).days + 1
    if span > MAX_EXPANDED_DAYS:
        logger.warning(
            "Event spans %d days; expanding only the first %d", span, MAX_EXPANDED_DAYS
        )
        span = MAX_EXPANDED_DAYS
    return [first + timedelta(days=offset) for offset in range(span)]


def occurrence_id(feed_id: str, uid: str, day: Optional[date] = None) -> str:
    """Derive the stable id of an external occurrence."""
    if day is None:
        return f"{feed_id}-{uid}"
    return f"{feed_id}-{uid}-{day.isoformat()}"


def expand_event(
    source: SourceEvent,
    feed_id: str,
    owner_user_id: str,
    origin_kind: OriginKind,
    tz: tzinfo,
    default_color: Optional[str] = None,
) -> list[CanonicalEvent]:
    """Expand ``source`` into one CanonicalEvent per covered day.

    The first day keeps the original start and ends at 23:59:59, interior days span
    00:00:00-23:59:59 and the last day starts at 00:00:00 and keeps the original
    end. All-day occurrences always end at 23:59:59 of their day. Days are
    computed in ``tz``.

    Args:
        source: Parsed upstream event
        feed_id: Feed the event came from (first id component)
        owner_user_id: Owner of the feed
        origin_kind: ical or vendor-api
        tz: Timezone whose calendar days define the expansion
        default_color: Color used when the source event has none

    Returns:
        Occurrences in chronological order
    """
    start = source.start.astimezone(tz)
    end = max(source.end.astimezone(tz), start)
    days = covered_days(start, end)
    color = source.color or default_color

    def _build(day: Optional[date], occ_start: datetime, occ_end: datetime, title: str) -> CanonicalEvent:
        return CanonicalEvent(
            id=occurrence_id(feed_id, source.uid, day),
            owner_user_id=owner_user_id,
            title=title,
            description=source.description,
            start_time=occ_start,
            end_time=occ_end,
            all_day=source.all_day,
            color=color,
            origin=Origin.external(origin_kind, feed_id, source.uid, day or start.date()),
        )

    if len(days) == 1:
        day = days[0]
        occ_end = datetime.combine(day, END_OF_DAY, tzinfo=tz) if source.all_day else end
        suffix_day = day if source.is_instance else None
        return [_build(suffix_day, start, occ_end, source.title)]

    occurrences: list[CanonicalEvent] = []
    last_index = len(days) - 1
    for index, day in enumerate(days):
        day_start = datetime.combine(day, time(0, 0), tzinfo=tz)
        day_end = datetime.combine(day, END_OF_DAY, tzinfo=tz)
        occ_start = start if index == 0 else day_start
        if index == last_index and not source.all_day:
            occ_end = end
        else:
            occ_end = day_end
        title = source.title if index == 0 else source.title + CONTINUATION_SUFFIX
        occurrences.append(_build(day, occ_start, occ_end, title))

    return occurrences
