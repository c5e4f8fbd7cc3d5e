"""Vendor booking JSON normalization.

Maps a Beds24-style booking list onto CanonicalEvents with
``originKind = vendor-api``. Bookings carry dates only; check-in and check-out
times are fixed house rules applied in the feed's timezone.
"""

from __future__ import annotations

import json
import logging
from datetime import date, datetime, time, timedelta, tzinfo
from typing import Any, Optional

from ..sync_exceptions import ParseError
from ..sync_models import CanonicalEvent, Feed, OriginKind, ParseResult
from .expansion import DateWindow, SourceEvent, expand_event
from .text_utils import sanitize_description

logger = logging.getLogger(__name__)

CHECK_IN_TIME = time(14, 0)
CHECK_OUT_TIME = time(11, 0)
DEFAULT_GUEST_NAME = "Guest"

STATUS_COLORS: dict[str, str] = {
    "new": "#10b981",
    "confirmed": "#3b82f6",
    "cancelled": "#ef4444",
    "black": "#000000",
    "request": "#f59e0b",
    "inquiry": "#8b5cf6",
}
DEFAULT_STATUS_COLOR = "#6b7280"


def status_color(status: Optional[str]) -> str:
    """Return the display color for a booking status."""
    return STATUS_COLORS.get((status or "new").lower(), DEFAULT_STATUS_COLOR)


def booking_uid(booking_id: str) -> str:
    return f"beds24-{booking_id}"


def guest_name(booking: dict[str, Any]) -> str:
    """Build a display name from the assorted name fields vendors populate."""
    first = booking.get("guestFirstName") or booking.get("firstName") or ""
    last = booking.get("guestName") or booking.get("lastName") or booking.get("guestLastName") or ""
    name = f"{first} {last}".strip()
    return name or DEFAULT_GUEST_NAME


def _parse_day(value: Any) -> date:
    if not isinstance(value, str) or not value:
        raise ValueError(f"invalid booking date: {value!r}")
    return date.fromisoformat(value[:10])


def _booking_stay(booking: dict[str, Any]) -> tuple[date, date]:
    """Return (arrival day, departure day) for a booking.

    ``departure`` is the checkout day; ``lastNight`` is the last night stayed, so
    checkout is the following day.
    """
    arrival_raw = booking.get("arrival") or booking.get("firstNight") or booking.get("arrivalDate")
    arrival = _parse_day(arrival_raw)

    if booking.get("departure") or booking.get("departureDate"):
        departure = _parse_day(booking.get("departure") or booking.get("departureDate"))
    elif booking.get("lastNight"):
        departure = _parse_day(booking["lastNight"]) + timedelta(days=1)
    else:
        raise ValueError("booking has no departure or lastNight")

    if departure <= arrival:
        departure = arrival + timedelta(days=1)
    return arrival, departure


def _description(booking: dict[str, Any], booking_id: str, name: str) -> str:
    lines = [f"Booking ID: {booking_id}", f"Guest: {name}"]
    if booking.get("guestPhone"):
        lines.append(f"Phone: {booking['guestPhone']}")
    adults = booking.get("numAdult")
    children = booking.get("numChild")
    if adults or children:
        lines.append(f"Adults: {adults or 0}, Children: {children or 0}")
    if booking.get("price"):
        lines.append(f"Price: {booking['price']} {booking.get('currency') or ''}".rstrip())
    # Private notes and guest e-mail stay out of the calendar
    return sanitize_description("\n".join(lines))


def load_bookings(raw_payload: str) -> list[dict[str, Any]]:
    """Decode a booking list; accepts a bare array or an object with ``data``.

    Raises:
        ParseError: On invalid JSON or an unexpected document shape
    """
    try:
        document = json.loads(raw_payload)
    except json.JSONDecodeError as e:
        raise ParseError(f"Invalid booking JSON: {e}") from e

    if isinstance(document, dict):
        if document.get("success") is False:
            raise ParseError(f"Vendor API reported failure: {document.get('error', 'unknown')}")
        document = document.get("data", [])
    if not isinstance(document, list):
        raise ParseError("Booking payload must be a list of bookings")
    return [item for item in document if isinstance(item, dict)]


class VendorBookingNormalizer:
    """Convert vendor booking JSON into CanonicalEvents for one feed."""

    def __init__(self, tz: tzinfo):
        self.tz = tz

    def booking_to_source(self, booking: dict[str, Any]) -> SourceEvent:
        """Build a SourceEvent for one booking.

        Raises:
            ValueError: If the booking lacks usable dates or an id
        """
        raw_id = booking.get("id") or booking.get("bookId") or booking.get("bookingId")
        if raw_id is None:
            raise ValueError("booking has no id")
        booking_id = str(raw_id)
        arrival, departure = _booking_stay(booking)
        name = guest_name(booking)

        return SourceEvent(
            uid=booking_uid(booking_id),
            title=name,
            start=datetime.combine(arrival, CHECK_IN_TIME, tzinfo=self.tz),
            end=datetime.combine(departure, CHECK_OUT_TIME, tzinfo=self.tz),
            description=_description(booking, booking_id, name),
            all_day=False,
            color=status_color(booking.get("status")),
        )

    def parse(self, raw_payload: str, feed: Feed, window: DateWindow) -> ParseResult:
        """Parse a booking list into CanonicalEvents.

        Raises:
            ParseError: If the payload is not a booking list
        """
        bookings = load_bookings(raw_payload)
        result = ParseResult(success=True, source_event_count=len(bookings))
        room = feed.vendor.room_id if feed.vendor else None

        events: list[CanonicalEvent] = []
        for booking in bookings:
            if room and booking.get("roomId") is not None and str(booking["roomId"]) != room:
                continue
            try:
                source = self.booking_to_source(booking)
            except ValueError as e:
                logger.warning("Skipping booking in feed %s: %s", feed.id, e)
                result.add_warning(str(e))
                continue
            if not window.contains(source):
                result.skipped_outside_window += 1
                continue
            events.extend(
                expand_event(
                    source,
                    feed_id=feed.id,
                    owner_user_id=feed.owner_user_id,
                    origin_kind=OriginKind.VENDOR_API,
                    tz=self.tz,
                )
            )

        result.events = events
        return result
