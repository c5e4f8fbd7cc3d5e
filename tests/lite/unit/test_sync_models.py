"""Unit tests for the engine's data models."""

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from calendarsync_lite.sync_models import (
    CanonicalEvent,
    Feed,
    FeedKind,
    FetchErrorCategory,
    FetchResult,
    Origin,
    OriginKind,
    SyncOutcome,
    VendorCredentials,
)

pytestmark = [pytest.mark.unit, pytest.mark.fast]

UTC = timezone.utc
START = datetime(2025, 6, 10, 10, tzinfo=UTC)


def _event(origin: Origin) -> CanonicalEvent:
    return CanonicalEvent(
        id="e1",
        owner_user_id="user1",
        title="Dentist",
        start_time=START,
        end_time=START + timedelta(hours=1),
        origin=origin,
    )


def test_origin_when_external_then_capabilities_follow_kind() -> None:
    """Capabilities derive from the origin kind."""
    ical = Origin.external(OriginKind.ICAL, "feed1", "abc")
    vendor = Origin.external(OriginKind.VENDOR_API, "feed1", "beds24-1")
    local = Origin.local()

    assert (ical.editable, ical.deletable, ical.color_overridable) == (False, False, False)
    assert (vendor.editable, vendor.deletable, vendor.color_overridable) == (False, False, True)
    assert (local.editable, local.deletable, local.color_overridable) == (True, True, True)


def test_origin_external_when_local_kind_then_value_error() -> None:
    """Local origins cannot carry a feed reference."""
    with pytest.raises(ValueError):
        Origin.external(OriginKind.LOCAL, "feed1", "abc")


def test_canonical_event_when_mutated_then_frozen() -> None:
    """Events are immutable values."""
    event = _event(Origin.local())
    with pytest.raises(ValidationError):
        event.title = "Changed"  # type: ignore[misc]


def test_to_api_dict_when_external_then_camel_case_and_flags() -> None:
    """API serialization uses camelCase keys and exposes mutability flags."""
    data = _event(Origin.external(OriginKind.ICAL, "feed1", "abc")).to_api_dict()

    assert data["ownerUserId"] == "user1"
    assert data["startTime"] == "2025-06-10T10:00:00+00:00"
    assert data["originKind"] == "ical"
    assert data["editable"] is False
    assert data["origin"]["feedId"] == "feed1"


def test_overlaps_when_window_touches_event_then_true() -> None:
    """The overlap filter is inclusive at both ends."""
    event = _event(Origin.local())

    assert event.overlaps(START + timedelta(hours=1), None)
    assert event.overlaps(None, START)
    assert not event.overlaps(START + timedelta(hours=2), None)
    assert not event.overlaps(None, START - timedelta(seconds=1))


def test_feed_to_api_dict_when_vendor_credentials_then_hidden() -> None:
    """Vendor API keys never leave the server."""
    feed = Feed(
        owner_user_id="user1",
        url="https://beds24.com/api/v2",
        kind=FeedKind.VENDOR_API,
        vendor=VendorCredentials(api_key="secret", property_id="1"),
    )

    data = feed.to_api_dict()

    assert "vendor" not in data
    assert data["has_vendor_credentials"] is True
    assert feed.origin_kind == OriginKind.VENDOR_API


def test_fetch_result_when_failed_then_not_success() -> None:
    """Failed results carry a typed error and no payload."""
    result = FetchResult.failed("feed1", FetchErrorCategory.TIMEOUT, "slow")

    assert not result.success
    assert result.error.category == "timeout"


def test_sync_outcome_when_counts_zero_then_no_changes() -> None:
    """has_changes reflects the diff counters."""
    assert not SyncOutcome(feed_id="f", success=True).has_changes
    assert SyncOutcome(feed_id="f", success=True, events_removed=1).has_changes
