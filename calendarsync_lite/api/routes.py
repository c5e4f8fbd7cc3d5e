"""HTTP routes for calendarsync_lite: calendar reads, feeds, local events, admin and export."""

from __future__ import annotations

import logging
from typing import Any, Optional

from aiohttp import web
from pydantic import ValidationError

from ..core.config_manager import get_config_value
from ..core.timezone_utils import now_utc, parse_iso_datetime
from ..domain.dedup import DEFAULT_SIMILARITY_THRESHOLD, find_exact_duplicates, similarity_scan
from ..domain.ics_export import export_local_events
from ..domain.local_events import LocalEventNotFoundError, ensure_mutable
from ..sync_exceptions import (
    CalendarSyncError,
    DuplicateConfigurationError,
    FeedNotFoundError,
    ImmutableEventError,
)
from ..sync_models import DEFAULT_FEED_COLOR, CanonicalEvent, Feed, FeedKind, VendorCredentials

logger = logging.getLogger(__name__)


def _check_bearer_token(request: web.Request, required_token: Optional[str]) -> bool:
    """Check if request carries ``Authorization: Bearer <required_token>``.

    Admin routes are closed when no token is configured.
    """
    if not required_token:
        return False

    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return False
    return auth_header[7:] == required_token


def _json_error(message: str, status: int) -> web.Response:
    return web.json_response({"error": message}, status=status)


def _error_status(exc: CalendarSyncError) -> int:
    if isinstance(exc, DuplicateConfigurationError):
        return 400
    if isinstance(exc, ImmutableEventError):
        return 403
    if isinstance(exc, (FeedNotFoundError, LocalEventNotFoundError)):
        return 404
    return 500


def _parse_window(request: web.Request) -> tuple[Any, Any]:
    """Return (start, end) from the query string; raises ValueError when malformed."""
    start_raw = request.query.get("start")
    end_raw = request.query.get("end")
    start = parse_iso_datetime(start_raw) if start_raw else None
    end = parse_iso_datetime(end_raw) if end_raw else None
    if start is not None and end is not None and end < start:
        raise ValueError("end must not be before start")
    return start, end


async def _read_json_object(request: web.Request) -> dict[str, Any]:
    try:
        data = await request.json()
    except ValueError as e:
        raise web.HTTPBadRequest(
            text='{"error": "invalid json"}', content_type="application/json"
        ) from e
    if not isinstance(data, dict):
        raise web.HTTPBadRequest(
            text='{"error": "expected a JSON object"}', content_type="application/json"
        )
    return data


_EVENT_FIELDS = {"title": "title", "description": "description", "allDay": "all_day", "color": "color"}


def _event_changes(data: dict[str, Any]) -> dict[str, Any]:
    """Map a camelCase PATCH body onto CanonicalEvent fields; raises ValueError on bad times."""
    changes = {field: data[key] for key, field in _EVENT_FIELDS.items() if key in data}
    for key, field in (("startTime", "start_time"), ("endTime", "end_time")):
        if key in data:
            changes[field] = parse_iso_datetime(str(data[key]))
    return changes


def register_api_routes(app: web.Application, deps: Any) -> None:
    """Register the calendar, feed, admin, export and health routes.

    Args:
        app: aiohttp web application
        deps: AppDependencies container
    """
    orchestrator = deps.orchestrator
    registry = deps.registry
    local_events = deps.local_events
    cache = deps.cache
    admin_token = get_config_value(deps.config, "admin_token", None)
    uid_domain = get_config_value(deps.config, "export_uid_domain", "calendarsync.local")

    def _find_external_event(event_id: str) -> Optional[CanonicalEvent]:
        for feed in registry.list_feeds():
            entry = cache.get_stale(feed.id)
            if entry is None:
                continue
            for event in entry.events:
                if event.id == event_id:
                    return event
        return None

    async def get_events(request: web.Request) -> web.Response:
        """Merged calendar for one user, optionally limited to [start, end]."""
        user_id = request.query.get("userId")
        if not user_id:
            return _json_error("missing userId", 400)
        try:
            start, end = _parse_window(request)
        except ValueError as e:
            return _json_error(f"invalid date range: {e}", 400)

        events = await orchestrator.get_user_events(user_id, start, end)
        return web.json_response(
            {"events": [event.to_api_dict() for event in events], "count": len(events)}
        )

    async def create_event(request: web.Request) -> web.Response:
        data = await _read_json_object(request)
        user_id = data.get("userId")
        title = data.get("title")
        if not user_id or not title:
            return _json_error("userId and title are required", 400)
        try:
            start = parse_iso_datetime(str(data["startTime"]))
            end = parse_iso_datetime(str(data.get("endTime") or data["startTime"]))
            event = local_events.add(
                owner_user_id=str(user_id),
                title=str(title),
                start_time=start,
                end_time=end,
                description=str(data.get("description") or ""),
                all_day=bool(data.get("allDay", False)),
                color=data.get("color"),
            )
        except KeyError:
            return _json_error("startTime is required", 400)
        except (ValueError, ValidationError) as e:
            return _json_error(str(e), 400)
        return web.json_response({"event": event.to_api_dict()}, status=201)

    async def delete_event(request: web.Request) -> web.Response:
        event_id = request.match_info["event_id"]
        try:
            event = local_events.remove(event_id)
        except LocalEventNotFoundError:
            external = _find_external_event(event_id)
            if external is None:
                return _json_error(f"Event not found: {event_id}", 404)
            try:
                ensure_mutable(external, "delete")
            except ImmutableEventError as e:
                logger.info("Refused delete of external event %s", event_id)
                return _json_error(str(e), _error_status(e))
            return _json_error(f"Event not found: {event_id}", 404)
        except CalendarSyncError as e:
            return _json_error(str(e), _error_status(e))
        return web.json_response({"deleted": event.id})

    async def update_event(request: web.Request) -> web.Response:
        """Edit a local event, or recolor an event whose origin allows it."""
        event_id = request.match_info["event_id"]
        data = await _read_json_object(request)
        try:
            changes = _event_changes(data)
        except ValueError as e:
            return _json_error(str(e), 400)
        if not changes:
            return _json_error("no editable fields given", 400)

        action = "recolor" if set(changes) == {"color"} else "edit"
        try:
            event = local_events.update(event_id, **changes)
        except LocalEventNotFoundError:
            external = _find_external_event(event_id)
            if external is None:
                return _json_error(f"Event not found: {event_id}", 404)
            try:
                ensure_mutable(external, action)
                event = local_events.override_color(external, str(changes["color"]))
            except ImmutableEventError as e:
                logger.info("Refused %s of external event %s", action, event_id)
                return _json_error(str(e), _error_status(e))
        except (ValueError, ValidationError) as e:
            return _json_error(str(e), 400)
        except CalendarSyncError as e:
            return _json_error(str(e), _error_status(e))
        return web.json_response({"event": event.to_api_dict()})

    async def list_feeds(request: web.Request) -> web.Response:
        user_id = request.query.get("userId")
        if not user_id:
            return _json_error("missing userId", 400)
        feeds = registry.list_feeds(user_id)
        return web.json_response({"feeds": [feed.to_api_dict() for feed in feeds]})

    async def create_feed(request: web.Request) -> web.Response:
        data = await _read_json_object(request)
        user_id = data.get("userId")
        url = data.get("url")
        if not user_id or not url:
            return _json_error("userId and url are required", 400)

        try:
            vendor = None
            if isinstance(data.get("vendor"), dict):
                raw = data["vendor"]
                vendor = VendorCredentials(
                    api_key=raw.get("apiKey", ""),
                    property_id=str(raw.get("propertyId", "")),
                    room_id=str(raw["roomId"]) if raw.get("roomId") is not None else None,
                )
            feed = Feed(
                owner_user_id=str(user_id),
                url=str(url),
                display_name=str(data.get("displayName") or ""),
                color=str(data.get("color") or DEFAULT_FEED_COLOR),
                kind=FeedKind(data.get("kind", FeedKind.ICAL.value)),
                vendor=vendor,
            )
        except (ValueError, ValidationError) as e:
            return _json_error(f"invalid feed: {e}", 400)

        try:
            registered = registry.add_feed(feed)
        except DuplicateConfigurationError as e:
            logger.warning("Rejected duplicate feed URL for user %s", user_id)
            return _json_error(str(e), 400)

        status = 201 if registered.id == feed.id else 200
        return web.json_response({"feed": registered.to_api_dict()}, status=status)

    async def admin_refresh_feed(request: web.Request) -> web.Response:
        if not _check_bearer_token(request, admin_token):
            return _json_error("Unauthorized", 401)
        feed_id = request.match_info["feed_id"]
        try:
            outcome = await orchestrator.force_refresh(feed_id)
        except FeedNotFoundError as e:
            return _json_error(str(e), 404)
        return web.json_response({"outcome": outcome.model_dump(mode="json")})

    async def admin_similarity(request: web.Request) -> web.Response:
        if not _check_bearer_token(request, admin_token):
            return _json_error("Unauthorized", 401)
        user_id = request.query.get("userId")
        if not user_id:
            return _json_error("missing userId", 400)
        try:
            threshold = float(request.query.get("threshold", DEFAULT_SIMILARITY_THRESHOLD))
        except ValueError:
            return _json_error("threshold must be a number", 400)
        if not 0.0 <= threshold <= 1.0:
            return _json_error("threshold must be between 0 and 1", 400)

        events = await orchestrator.get_user_events(user_id)
        groups = similarity_scan(events, threshold)
        exact = find_exact_duplicates(events)
        return web.json_response(
            {
                "groups": [group.to_dict() for group in groups],
                "exactDuplicates": [[event.id for event in group] for group in exact],
                "totalEvents": len(events),
            }
        )

    async def export_ics(request: web.Request) -> web.Response:
        user_id = request.match_info["user_id"]
        body = export_local_events(
            local_events.list(user_id),
            uid_domain=uid_domain,
            calendar_name=f"{user_id} calendar",
        )
        return web.Response(
            text=body,
            content_type="text/calendar",
            charset="utf-8",
            headers={"Content-Disposition": f'attachment; filename="{user_id}.ics"'},
        )

    async def health_check(_request: web.Request) -> web.Response:
        """Health check endpoint for monitoring sync status."""
        status = deps.health_tracker.get_health_status(now_utc().isoformat())
        data = status.to_dict()
        data["registered_feeds"] = len(registry.list_feeds())
        data["live_connections"] = deps.connections.connection_count()
        return web.json_response(data, status=200 if status.status == "ok" else 503)

    app.router.add_get("/api/events", get_events)
    app.router.add_post("/api/events", create_event)
    app.router.add_patch("/api/events/{event_id}", update_event)
    app.router.add_delete("/api/events/{event_id}", delete_event)
    app.router.add_get("/api/feeds", list_feeds)
    app.router.add_post("/api/feeds", create_feed)
    app.router.add_post("/api/admin/feeds/{feed_id}/refresh", admin_refresh_feed)
    app.router.add_get("/api/admin/similarity", admin_similarity)
    app.router.add_get("/api/export/{user_id}.ics", export_ics)
    app.router.add_get("/api/health", health_check)
