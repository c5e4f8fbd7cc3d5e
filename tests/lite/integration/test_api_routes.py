"""Integration tests for the calendar, feed, admin, export and health routes."""

from datetime import datetime, timedelta, timezone

import pytest

from calendarsync_lite.domain.feed_cache import CacheEntry
from calendarsync_lite.sync_models import CanonicalEvent, Origin, OriginKind

pytestmark = [pytest.mark.integration]

CABIN_URL = "https://calendar.example.com/cabin.ics"


async def _register_cabin_feed(api_client, user_id: str = "user1") -> dict:
    response = await api_client.post(
        "/api/feeds", json={"userId": user_id, "url": CABIN_URL, "displayName": "Cabin"}
    )
    assert response.status == 201
    return (await response.json())["feed"]


async def _cache_vendor_booking(api_client, deps) -> CanonicalEvent:
    response = await api_client.post(
        "/api/feeds",
        json={
            "userId": "user1",
            "url": "https://beds24.com/api/v2",
            "kind": "vendor-api",
            "vendor": {"apiKey": "secret", "propertyId": 42},
        },
    )
    feed_id = (await response.json())["feed"]["id"]
    start = datetime(2025, 7, 1, tzinfo=timezone.utc)
    booking = CanonicalEvent(
        id=f"{feed_id}-b1",
        owner_user_id="user1",
        title="Booking",
        start_time=start,
        end_time=start + timedelta(days=2),
        origin=Origin.external(OriginKind.VENDOR_API, feed_id, "b1"),
    )
    deps.cache.put(
        feed_id,
        CacheEntry(feed_id=feed_id, raw_payload="{}", events=(booking,), fetched_at=start),
    )
    return booking


class TestFeedRoutes:
    """Feed registration through the API."""

    async def test_create_feed_when_new_url_then_201_and_listed(self, api_client) -> None:
        """A new feed is registered and appears in the owner's list."""
        feed = await _register_cabin_feed(api_client)

        response = await api_client.get("/api/feeds", params={"userId": "user1"})
        data = await response.json()

        assert response.status == 200
        assert [f["id"] for f in data["feeds"]] == [feed["id"]]
        assert data["feeds"][0]["display_name"] == "Cabin"

    async def test_create_feed_when_same_owner_repeats_then_200_existing(self, api_client) -> None:
        """Re-registering one's own URL returns the existing feed."""
        feed = await _register_cabin_feed(api_client)

        response = await api_client.post("/api/feeds", json={"userId": "user1", "url": CABIN_URL})

        assert response.status == 200
        assert (await response.json())["feed"]["id"] == feed["id"]

    async def test_create_feed_when_url_owned_by_other_user_then_400(self, api_client) -> None:
        """Duplicate URLs across users are rejected with an error message."""
        await _register_cabin_feed(api_client)

        response = await api_client.post("/api/feeds", json={"userId": "user2", "url": CABIN_URL})

        assert response.status == 400
        assert "already registered" in (await response.json())["error"]

    async def test_create_feed_when_vendor_credentials_then_not_echoed(self, api_client) -> None:
        """Vendor API keys are stored but never returned."""
        response = await api_client.post(
            "/api/feeds",
            json={
                "userId": "user1",
                "url": "https://beds24.com/api/v2",
                "kind": "vendor-api",
                "vendor": {"apiKey": "secret", "propertyId": 42},
            },
        )
        body = await response.text()

        assert response.status == 201
        assert "secret" not in body

    async def test_create_feed_when_body_not_json_then_400(self, api_client) -> None:
        """Malformed JSON bodies are rejected."""
        response = await api_client.post(
            "/api/feeds", data="not json", headers={"Content-Type": "application/json"}
        )

        assert response.status == 400


class TestEventRoutes:
    """Merged calendar reads and local event mutations."""

    async def test_get_events_when_user_missing_then_400(self, api_client) -> None:
        """userId is required."""
        response = await api_client.get("/api/events")
        assert response.status == 400

    async def test_get_events_when_range_inverted_then_400(self, api_client) -> None:
        """An end before the start is rejected."""
        response = await api_client.get(
            "/api/events",
            params={"userId": "user1", "start": "2025-07-05", "end": "2025-07-01"},
        )
        assert response.status == 400

    async def test_create_event_when_valid_then_returned_in_calendar(self, api_client) -> None:
        """Local events created through the API show up in the merged calendar."""
        response = await api_client.post(
            "/api/events",
            json={
                "userId": "user1",
                "title": "Dentist",
                "startTime": "2025-06-10T10:00:00Z",
                "endTime": "2025-06-10T11:00:00Z",
            },
        )
        assert response.status == 201
        created = (await response.json())["event"]
        assert created["originKind"] == "local"
        assert created["editable"] is True

        listing = await (await api_client.get("/api/events", params={"userId": "user1"})).json()

        assert [e["id"] for e in listing["events"]] == [created["id"]]
        assert listing["count"] == 1

    async def test_create_event_when_end_before_start_then_400(self, api_client) -> None:
        """Inverted local events are rejected."""
        response = await api_client.post(
            "/api/events",
            json={
                "userId": "user1",
                "title": "Backwards",
                "startTime": "2025-06-10T11:00:00Z",
                "endTime": "2025-06-10T10:00:00Z",
            },
        )
        assert response.status == 400

    async def test_delete_event_when_local_then_removed(self, api_client) -> None:
        """Local events can be deleted."""
        created = await (
            await api_client.post(
                "/api/events",
                json={"userId": "user1", "title": "Dentist", "startTime": "2025-06-10T10:00:00Z"},
            )
        ).json()
        event_id = created["event"]["id"]

        response = await api_client.delete(f"/api/events/{event_id}")

        assert response.status == 200
        assert (await response.json())["deleted"] == event_id

    async def test_delete_event_when_unknown_then_404(self, api_client) -> None:
        """Unknown ids are reported as not found."""
        response = await api_client.delete("/api/events/does-not-exist")
        assert response.status == 404

    async def test_update_event_when_local_then_fields_changed(self, api_client) -> None:
        """Local events can be edited in place."""
        created = await (
            await api_client.post(
                "/api/events",
                json={"userId": "user1", "title": "Dentist", "startTime": "2025-06-10T10:00:00Z"},
            )
        ).json()
        event_id = created["event"]["id"]

        response = await api_client.patch(
            f"/api/events/{event_id}", json={"title": "Orthodontist", "color": "#123456"}
        )
        event = (await response.json())["event"]

        assert response.status == 200
        assert event["title"] == "Orthodontist"
        assert event["color"] == "#123456"

    async def test_update_event_when_no_fields_then_400(self, api_client) -> None:
        """A body without editable fields is rejected."""
        response = await api_client.patch("/api/events/anything", json={"userId": "user1"})
        assert response.status == 400

    async def test_update_event_when_unknown_then_404(self, api_client) -> None:
        """Unknown ids are reported as not found."""
        response = await api_client.patch("/api/events/does-not-exist", json={"title": "x"})
        assert response.status == 404

    async def test_update_event_when_ical_event_then_403(self, api_client) -> None:
        """Events from iCal feeds cannot be recolored or edited."""
        await _register_cabin_feed(api_client)
        listing = await (await api_client.get("/api/events", params={"userId": "user1"})).json()
        external_id = listing["events"][0]["id"]

        recolor = await api_client.patch(f"/api/events/{external_id}", json={"color": "#123456"})
        edit = await api_client.patch(f"/api/events/{external_id}", json={"title": "Mine now"})

        assert recolor.status == 403
        assert edit.status == 403

    async def test_update_event_when_vendor_event_recolored_then_calendar_shows_color(
        self, api_client, deps
    ) -> None:
        """Vendor bookings accept a color override that the merged calendar applies."""
        booking = await _cache_vendor_booking(api_client, deps)

        response = await api_client.patch(f"/api/events/{booking.id}", json={"color": "#123456"})
        listing = await (await api_client.get("/api/events", params={"userId": "user1"})).json()

        assert response.status == 200
        assert (await response.json())["event"]["color"] == "#123456"
        assert [e["color"] for e in listing["events"]] == ["#123456"]

    async def test_update_event_when_vendor_event_title_changed_then_403(self, api_client, deps) -> None:
        """Vendor bookings allow recoloring only."""
        booking = await _cache_vendor_booking(api_client, deps)

        response = await api_client.patch(f"/api/events/{booking.id}", json={"title": "Mine"})

        assert response.status == 403


class TestAdminRoutes:
    """Admin-only operations require the bearer token."""

    async def test_refresh_when_no_token_then_401(self, api_client) -> None:
        """Requests without the admin token are refused."""
        feed = await _register_cabin_feed(api_client)

        response = await api_client.post(f"/api/admin/feeds/{feed['id']}/refresh")

        assert response.status == 401

    async def test_refresh_when_authorized_then_outcome_returned(self, api_client, admin_headers) -> None:
        """A forced refresh runs the sync and reports the outcome."""
        feed = await _register_cabin_feed(api_client)

        response = await api_client.post(
            f"/api/admin/feeds/{feed['id']}/refresh", headers=admin_headers
        )
        outcome = (await response.json())["outcome"]

        assert response.status == 200
        assert outcome["success"] is True
        assert outcome["forced"] is True
        assert outcome["events_added"] == 4

    async def test_refresh_when_unknown_feed_then_404(self, api_client, admin_headers) -> None:
        """Unknown feed ids are 404."""
        response = await api_client.post("/api/admin/feeds/missing/refresh", headers=admin_headers)
        assert response.status == 404

    async def test_refresh_when_fetch_fails_then_cache_cleared(
        self, api_client, admin_headers, deps, upstream
    ) -> None:
        """After a forced refresh fails no leftover events are served for that feed."""
        feed = await _register_cabin_feed(api_client)
        await api_client.get("/api/events", params={"userId": "user1"})
        upstream["/cabin.ics"] = (500, "boom")

        response = await api_client.post(
            f"/api/admin/feeds/{feed['id']}/refresh", headers=admin_headers
        )

        assert (await response.json())["outcome"]["success"] is False
        assert deps.cache.get_stale(feed["id"]) is None

    async def test_similarity_when_local_copies_booking_then_grouped(self, api_client, admin_headers) -> None:
        """The similarity report groups a local copy with the external booking."""
        await _register_cabin_feed(api_client)
        await api_client.post(
            "/api/events",
            json={
                "userId": "user1",
                "title": "Cabin rental",
                "startTime": "2025-07-01T00:00:00Z",
                "endTime": "2025-07-01T23:59:59Z",
                "allDay": True,
            },
        )

        response = await api_client.get(
            "/api/admin/similarity", params={"userId": "user1"}, headers=admin_headers
        )
        data = await response.json()

        assert response.status == 200
        assert data["totalEvents"] == 5
        assert len(data["exactDuplicates"]) == 1
        assert len(data["groups"]) == 1
        assert len(data["groups"][0]["events"]) == 2

    async def test_similarity_when_threshold_invalid_then_400(self, api_client, admin_headers) -> None:
        """Thresholds outside [0, 1] are rejected."""
        response = await api_client.get(
            "/api/admin/similarity",
            params={"userId": "user1", "threshold": "2"},
            headers=admin_headers,
        )
        assert response.status == 400


class TestExportAndHealth:
    """ICS export and health endpoints."""

    async def test_export_when_local_events_then_ics_document(self, api_client) -> None:
        """The export endpoint serves the user's local events as text/calendar."""
        await api_client.post(
            "/api/events",
            json={
                "userId": "user1",
                "title": "Dentist",
                "startTime": "2025-06-10T10:00:00Z",
                "endTime": "2025-06-10T11:00:00Z",
            },
        )

        response = await api_client.get("/api/export/user1.ics")
        body = await response.text()

        assert response.status == 200
        assert response.content_type == "text/calendar"
        assert 'filename="user1.ics"' in response.headers["Content-Disposition"]
        assert "SUMMARY:Dentist\r\n" in body
        assert "DTSTART:20250610T100000Z\r\n" in body

    async def test_health_when_fresh_server_then_ok(self, api_client) -> None:
        """A fresh server reports ok."""
        response = await api_client.get("/api/health")
        data = await response.json()

        assert response.status == 200
        assert data["status"] == "ok"
        assert data["registered_feeds"] == 0
        assert data["live_connections"] == 0
