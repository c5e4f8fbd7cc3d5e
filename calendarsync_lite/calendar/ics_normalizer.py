"""ICS payload normalization - CalendarSync Lite version.

Parses VEVENT components with ``icalendar``, expands RRULEs inside the sync
window, applies provider-specific filters and hands each resulting
``SourceEvent`` to multi-day expansion.
"""

from __future__ import annotations

import hashlib
import logging
import re
from datetime import date, datetime, time, timedelta, tzinfo
from typing import Any, Optional

from dateutil.rrule import rrulestr
from icalendar import Calendar
from icalendar import Event as ICalEvent
from icalendar.prop import vRecur

from ..sync_exceptions import ParseError
from ..sync_models import CanonicalEvent, Feed, OriginKind, ParseResult
from .expansion import DateWindow, SourceEvent, expand_event
from .text_utils import truncate

logger = logging.getLogger(__name__)

MAX_EVENT_TITLE_LENGTH = 200
MAX_EVENT_DESCRIPTION_LENGTH = 2000
MAX_OCCURRENCES_PER_RULE = 250
UNTITLED_EVENT = "Untitled Event"

_ROOM_IN_URL = re.compile(r"roomid=(\d+)", re.IGNORECASE)
_ROOM_IN_TITLE = re.compile(r"Room (\d+)")


def _stable_uid(title: str, start: datetime) -> str:
    """Derive a deterministic UID for events that lack one."""
    digest = hashlib.sha1(f"{title}|{start.isoformat()}".encode(), usedforsecurity=False)
    return f"nouid-{digest.hexdigest()[:16]}"


def _to_aware(value: date | datetime, tz: tzinfo) -> tuple[datetime, bool]:
    """Convert an ICS date/datetime value to an aware datetime.

    Returns:
        (datetime, is_date_only)
    """
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=tz), False
        return value, False
    return datetime.combine(value, time(0, 0), tzinfo=tz), True


def room_filter_for(feed: Feed) -> Optional[str]:
    """Return the room number a vendor-exported ICS URL is scoped to, if any."""
    match = _ROOM_IN_URL.search(feed.url)
    return match.group(1) if match else None


class IcsNormalizer:
    """Convert ICS text into CanonicalEvents for one feed."""

    def __init__(self, tz: tzinfo, max_occurrences_per_rule: int = MAX_OCCURRENCES_PER_RULE):
        self.tz = tz
        self.max_occurrences_per_rule = max_occurrences_per_rule

    def parse(self, raw_payload: str, feed: Feed, window: DateWindow) -> ParseResult:
        """Parse ``raw_payload`` into CanonicalEvents.

        Args:
            raw_payload: ICS text
            feed: Feed the payload belongs to
            window: Events entirely outside this window are dropped

        Returns:
            Successful ParseResult (possibly with warnings)

        Raises:
            ParseError: If the payload is not an iCalendar document
        """
        if "BEGIN:VCALENDAR" not in raw_payload:
            raise ParseError("Payload is not an iCalendar document", feed.id)
        try:
            calendar = Calendar.from_ical(raw_payload)
        except ValueError as e:
            raise ParseError(f"Malformed iCalendar payload: {e}", feed.id) from e

        result = ParseResult(success=True)
        components = list(calendar.walk("VEVENT"))
        result.source_event_count = len(components)
        room = room_filter_for(feed)
        overridden = self._collect_recurrence_overrides(components)

        events: list[CanonicalEvent] = []
        for component in components:
            try:
                sources = self._component_to_sources(component, window, overridden)
            except (ValueError, TypeError, KeyError) as e:
                uid = str(component.get("UID", "<no uid>"))
                logger.warning("Skipping unparseable VEVENT %s in feed %s: %s", uid, feed.id, e)
                result.add_warning(f"Skipped VEVENT {uid}: {e}")
                continue

            for source in sources:
                if room is not None and not self._matches_room(source.title, room):
                    logger.debug("Skipping event for other room: %s", source.title)
                    continue
                if not window.contains(source):
                    result.skipped_outside_window += 1
                    continue
                events.extend(
                    expand_event(
                        source,
                        feed_id=feed.id,
                        owner_user_id=feed.owner_user_id,
                        origin_kind=OriginKind.ICAL,
                        tz=self.tz,
                        default_color=feed.color,
                    )
                )

        result.events = events
        logger.debug(
            "Normalized feed %s: %d VEVENTs -> %d occurrences (%d outside window)",
            feed.id,
            result.source_event_count,
            len(events),
            result.skipped_outside_window,
        )
        return result

    @staticmethod
    def _matches_room(title: str, room: str) -> bool:
        match = _ROOM_IN_TITLE.search(title)
        return match is None or match.group(1) == room

    def _collect_recurrence_overrides(self, components: list[ICalEvent]) -> set[tuple[str, datetime]]:
        """Return (uid, recurrence-id) pairs that replace generated instances."""
        overrides: set[tuple[str, datetime]] = set()
        for component in components:
            recurrence_id = component.get("RECURRENCE-ID")
            if recurrence_id is None:
                continue
            rid, _ = _to_aware(recurrence_id.dt, self.tz)
            overrides.add((str(component.get("UID", "")), rid))
        return overrides

    def _basic_properties(self, component: ICalEvent) -> tuple[str, str]:
        # icalendar already decodes TEXT escapes
        title = str(component.get("SUMMARY", "")).strip() or UNTITLED_EVENT
        description = str(component.get("DESCRIPTION", "")).strip()
        return (
            truncate(title, MAX_EVENT_TITLE_LENGTH),
            truncate(description, MAX_EVENT_DESCRIPTION_LENGTH),
        )

    def _event_times(self, component: ICalEvent) -> tuple[datetime, datetime, bool]:
        """Return aware (start, end, all_day) for a VEVENT.

        Raises:
            ValueError: If DTSTART is missing
        """
        dtstart = component.get("DTSTART")
        if dtstart is None:
            raise ValueError("Event missing DTSTART")
        start, all_day = _to_aware(dtstart.dt, self.tz)

        dtend = component.get("DTEND")
        duration = component.get("DURATION")
        if dtend is not None:
            end, _ = _to_aware(dtend.dt, self.tz)
        elif duration is not None:
            end = start + duration.dt
        else:
            end = start + (timedelta(days=1) if all_day else timedelta(hours=1))

        if end < start:
            end = start
        return start, end, all_day

    def _component_to_sources(
        self,
        component: ICalEvent,
        window: DateWindow,
        overridden: set[tuple[str, datetime]],
    ) -> list[SourceEvent]:
        status = str(component.get("STATUS", "")).upper()
        if status == "CANCELLED":
            return []

        title, description = self._basic_properties(component)
        start, end, all_day = self._event_times(component)
        uid = str(component.get("UID", "")).strip() or _stable_uid(title, start)
        is_override = component.get("RECURRENCE-ID") is not None

        base = SourceEvent(
            uid=uid,
            title=title,
            start=start,
            end=end,
            description=description,
            all_day=all_day,
            is_instance=is_override,
        )

        if component.get("RRULE") is None or is_override:
            return [base]
        return self._expand_rrule(component, base, window, overridden)

    def _expand_rrule(
        self,
        component: ICalEvent,
        base: SourceEvent,
        window: DateWindow,
        overridden: set[tuple[str, datetime]],
    ) -> list[SourceEvent]:
        """Expand an RRULE into instances that can intersect ``window``."""
        params: dict[str, Any] = dict(component.get("RRULE"))
        upper = window.end
        until_values = params.pop("UNTIL", None)
        if until_values:
            until, date_only = _to_aware(until_values[0], self.tz)
            if date_only:
                until = until + timedelta(days=1) - timedelta(seconds=1)
            upper = min(upper, until)

        rule = rrulestr(vRecur(params).to_ical().decode(), dtstart=base.start)
        duration = base.end - base.start
        excluded = self._exdates(component)

        instances: list[SourceEvent] = []
        for occ_start in rule.xafter(window.start - duration, count=self.max_occurrences_per_rule, inc=True):
            if occ_start > upper:
                break
            if occ_start in excluded or occ_start.date() in excluded:
                continue
            if (base.uid, occ_start) in overridden:
                continue
            instances.append(
                SourceEvent(
                    uid=base.uid,
                    title=base.title,
                    start=occ_start,
                    end=occ_start + duration,
                    description=base.description,
                    all_day=base.all_day,
                    is_instance=True,
                )
            )
        return instances

    def _exdates(self, component: ICalEvent) -> set[Any]:
        """Return excluded instance starts (aware datetimes, or dates for date-only values)."""
        raw = component.get("EXDATE")
        if raw is None:
            return set()
        groups = raw if isinstance(raw, list) else [raw]
        excluded: set[Any] = set()
        for group in groups:
            for value in getattr(group, "dts", []):
                dt = value.dt
                if isinstance(dt, datetime):
                    excluded.add(_to_aware(dt, self.tz)[0])
                else:
                    excluded.add(dt)
        return excluded
