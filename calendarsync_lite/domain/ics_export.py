"""Export local events as an iCalendar (RFC 5545) document."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

from icalendar import Calendar, Event

from ..core.timezone_utils import now_utc
from ..sync_models import CanonicalEvent

logger = logging.getLogger(__name__)

PRODID = "-//CalendarSync Lite//Calendar Export//EN"


def event_uid(event: CanonicalEvent, uid_domain: str) -> str:
    """Stable export UID; the same local event always exports under one UID."""
    return f"event-{event.id}@{uid_domain}"


def _build_event(event: CanonicalEvent, uid_domain: str, stamp: datetime) -> Event:
    vevent = Event()
    vevent.add("uid", event_uid(event, uid_domain))
    vevent.add("dtstamp", stamp)
    vevent.add("summary", event.title)
    if event.description:
        vevent.add("description", event.description)

    if event.all_day:
        first_day = event.start_time.date()
        # DTEND is exclusive for date values
        vevent.add("dtstart", first_day)
        vevent.add("dtend", max(event.end_time.date(), first_day) + timedelta(days=1))
    else:
        vevent.add("dtstart", event.start_time.astimezone(timezone.utc))
        vevent.add("dtend", event.end_time.astimezone(timezone.utc))

    vevent.add("status", "CONFIRMED")
    vevent.add("transp", "OPAQUE")
    return vevent


def export_local_events(
    events: Iterable[CanonicalEvent],
    uid_domain: str = "calendarsync.local",
    calendar_name: Optional[str] = None,
    now: Optional[datetime] = None,
) -> str:
    """Render ``events`` as ICS text with CRLF line endings.

    Only local events are exported; external events are skipped because their
    source calendar already publishes them.

    Args:
        events: Events to export
        uid_domain: Domain part of the generated UIDs
        calendar_name: Optional X-WR-CALNAME value
        now: DTSTAMP value (defaults to the current time)

    Returns:
        ICS document
    """
    stamp = (now or now_utc()).astimezone(timezone.utc)

    calendar = Calendar()
    calendar.add("prodid", PRODID)
    calendar.add("version", "2.0")
    calendar.add("calscale", "GREGORIAN")
    calendar.add("method", "PUBLISH")
    if calendar_name:
        calendar.add("x-wr-calname", calendar_name)

    exported = 0
    for event in sorted(events, key=lambda e: (e.start_time, e.id)):
        if event.origin.is_external:
            continue
        calendar.add_component(_build_event(event, uid_domain, stamp))
        exported += 1

    logger.debug("Exported %d local events", exported)
    return calendar.to_ical().decode("utf-8")
