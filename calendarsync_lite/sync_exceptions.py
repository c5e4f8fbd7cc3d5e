"""Custom exception hierarchy for the calendar synchronization engine.

Fetch failures are not exceptions: the fetchers return a ``FetchResult`` carrying a
typed ``FetchError`` value. The classes here cover the remaining failure modes and
map onto HTTP status codes at the API boundary.
"""

from __future__ import annotations

from typing import Optional


class CalendarSyncError(Exception):
    """Base exception for all calendar synchronization errors.

    Catch this at request boundaries to turn any engine error into a JSON
    error response.
    """


class ParseError(CalendarSyncError):
    """Raised when a feed payload cannot be parsed.

    Raised when:
    - ICS text lacks a VCALENDAR component or fails to tokenize
    - Vendor booking JSON is not valid JSON or has an unexpected shape

    The normalizer converts this into a failed ``ParseResult`` so the feed
    contributes zero events for the pass instead of aborting the aggregate read.
    """

    def __init__(self, message: str, feed_id: Optional[str] = None):
        super().__init__(message)
        self.feed_id = feed_id


class DuplicateConfigurationError(CalendarSyncError):
    """A feed URL is already registered to another owner.

    Surfaced to the registering user. Should result in HTTP 400 Bad Request.
    """

    def __init__(self, url: str, existing_feed_id: str):
        super().__init__(f"Calendar feed URL is already registered by another user: {url}")
        self.url = url
        self.existing_feed_id = existing_feed_id


class FeedNotFoundError(CalendarSyncError):
    """The requested feed id is not registered.

    Should result in HTTP 404 Not Found response.
    """


class ImmutableEventError(CalendarSyncError):
    """A mutation was attempted on an externally sourced event.

    Raised when:
    - An ical event is edited or deleted through the local-event path
    - A vendor-api event is edited or deleted (only its color may change)

    Should result in HTTP 403 Forbidden response.
    """

    def __init__(self, event_id: str, action: str, origin_kind: str):
        super().__init__(f"Cannot {action} {origin_kind} event {event_id}: externally managed")
        self.event_id = event_id
        self.action = action
        self.origin_kind = origin_kind


class VendorAPIError(CalendarSyncError):
    """Vendor booking API rejected the request or returned an unusable response."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code
