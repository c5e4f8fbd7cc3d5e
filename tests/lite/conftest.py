from collections.abc import AsyncIterator, Callable, Generator
from typing import Any, Optional

import httpx
import pytest

from calendarsync_lite.core.config_manager import DEFAULTS
from calendarsync_lite.core.http_client import close_all_clients
from calendarsync_lite.sync_models import Feed, FeedKind, VendorCredentials


@pytest.fixture
def settings() -> dict[str, Any]:
    """Deterministic engine configuration used across calendarsync_lite tests.

    Retries are disabled so failure-path tests never sleep; persistence paths
    are unset so stores stay in memory.
    """
    config = dict(DEFAULTS)
    config.update(
        {
            "registry_path": None,
            "local_events_path": None,
            "max_retries": 0,
            "request_timeout": 5.0,
            "admin_token": "admin-secret",
            "window_past_days": 365,
            "window_future_days": 365,
        }
    )
    return config


@pytest.fixture(autouse=True)
def clean_test_environment(monkeypatch: Any) -> Generator[None, Any, None]:
    """Pin the clock and clear CALENDARSYNC_* overrides between tests.

    Feeds in the fixtures below fall in summer 2025, so the default test time
    sits inside the +/-365 day sync window of all of them.
    """
    for name in ("CALENDARSYNC_DEBUG", "CALENDARSYNC_LOG_LEVEL", "CALENDARSYNC_DEFAULT_TIMEZONE"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("CALENDARSYNC_TEST_TIME", "2025-06-01T12:00:00Z")
    yield


@pytest.fixture(autouse=True)
async def cleanup_shared_http_clients() -> AsyncIterator[None]:
    """Close shared httpx clients after every test to prevent resource leaks."""
    yield
    await close_all_clients()


@pytest.fixture
def make_feed() -> Callable[..., Feed]:
    """Return a builder for Feed objects with test defaults."""

    def builder(
        feed_id: str = "feed1",
        owner: str = "user1",
        url: str = "https://calendar.example.com/cabin.ics",
        kind: FeedKind = FeedKind.ICAL,
        vendor: Optional[VendorCredentials] = None,
        **kwargs: Any,
    ) -> Feed:
        return Feed(id=feed_id, owner_user_id=owner, url=url, kind=kind, vendor=vendor, **kwargs)

    return builder


@pytest.fixture
def mock_client() -> Callable[[Callable[[httpx.Request], httpx.Response]], httpx.AsyncClient]:
    """Return a factory for httpx clients backed by a MockTransport handler."""

    def factory(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))

    return factory


# ==================== ICS Test Data Fixtures ====================


@pytest.fixture
def cabin_rental_ics() -> str:
    """All-day "Cabin rental" covering 2025-07-01 through 2025-07-04 (DTEND exclusive)."""
    return (
        "BEGIN:VCALENDAR\r\n"
        "VERSION:2.0\r\n"
        "PRODID:-//Booking Test//EN\r\n"
        "BEGIN:VEVENT\r\n"
        "UID:abc\r\n"
        "DTSTART;VALUE=DATE:20250701\r\n"
        "DTEND;VALUE=DATE:20250705\r\n"
        "SUMMARY:Cabin rental\r\n"
        "END:VEVENT\r\n"
        "END:VCALENDAR\r\n"
    )


@pytest.fixture
def overnight_ics() -> str:
    """Timed event from 2025-06-10 22:00 to 2025-06-12 02:00 UTC."""
    return (
        "BEGIN:VCALENDAR\r\n"
        "VERSION:2.0\r\n"
        "PRODID:-//Booking Test//EN\r\n"
        "BEGIN:VEVENT\r\n"
        "UID:late-checkin\r\n"
        "DTSTART:20250610T220000Z\r\n"
        "DTEND:20250612T020000Z\r\n"
        "SUMMARY:Late arrival\r\n"
        "DESCRIPTION:Key in lockbox\r\n"
        "END:VEVENT\r\n"
        "END:VCALENDAR\r\n"
    )


@pytest.fixture
def weekly_cleaning_ics() -> str:
    """Weekly recurring cleaning on Mondays with one EXDATE."""
    return (
        "BEGIN:VCALENDAR\r\n"
        "VERSION:2.0\r\n"
        "PRODID:-//Booking Test//EN\r\n"
        "BEGIN:VEVENT\r\n"
        "UID:cleaning\r\n"
        "DTSTART:20250602T100000Z\r\n"
        "DTEND:20250602T120000Z\r\n"
        "SUMMARY:Cleaning\r\n"
        "RRULE:FREQ=WEEKLY;BYDAY=MO;COUNT=4\r\n"
        "EXDATE:20250609T100000Z\r\n"
        "END:VEVENT\r\n"
        "END:VCALENDAR\r\n"
    )
