"""Local (user-created) event store and the origin mutability guard."""

from __future__ import annotations

import logging
import threading
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Iterable, Optional

from pydantic import ValidationError

from ..sync_exceptions import CalendarSyncError, ImmutableEventError
from ..sync_models import DEFAULT_EVENT_COLOR, CanonicalEvent, Origin
from ._json_file import read_json, write_json_atomic

logger = logging.getLogger(__name__)

_ACTION_CAPABILITY = {
    "edit": "editable",
    "delete": "deletable",
    "recolor": "color_overridable",
}


def ensure_mutable(event: CanonicalEvent, action: str) -> None:
    """Check that ``action`` is allowed on ``event`` given its origin.

    Args:
        event: Target event
        action: One of ``edit``, ``delete`` or ``recolor``

    Raises:
        ImmutableEventError: If the origin forbids the action
        ValueError: For an unknown action
    """
    capability = _ACTION_CAPABILITY.get(action)
    if capability is None:
        raise ValueError(f"unknown event action: {action}")
    if not getattr(event.origin, capability):
        raise ImmutableEventError(event.id, action, event.origin_kind.value)


class LocalEventNotFoundError(CalendarSyncError):
    """No local event has the requested id."""


class LocalEventStore:
    """JSON-backed store of local events.

    ``on_mutation`` runs after every successful add/update/remove; the
    application wires it to invalidate the feed cache.
    """

    def __init__(
        self,
        path: str | Path | None = None,
        on_mutation: Optional[Callable[[], None]] = None,
    ) -> None:
        self._path = Path(path) if path else None
        self._lock = threading.Lock()
        self._events: dict[str, CanonicalEvent] = {}
        self._color_overrides: dict[str, str] = {}
        self.on_mutation = on_mutation

        if self._path is not None:
            try:
                self._load(self._path)
            except Exception as exc:
                logger.warning("Failed to load local events %s: %s", self._path, exc)

    def _load(self, path: Path) -> None:
        data = read_json(path)
        if data is None:
            return
        if not isinstance(data, list):
            raise ValueError("local events JSON root must be an array")  # noqa: TRY004
        for item in data:
            try:
                event = CanonicalEvent.model_validate(item)
            except ValidationError as e:
                logger.warning("Skipping malformed local event: %s", e)
                continue
            self._events[event.id] = event
        logger.debug("Loaded %d local events from %s", len(self._events), path)

    def _persist(self) -> None:
        if self._path is None:
            return
        data = [event.model_dump(mode="json") for event in self._events.values()]
        try:
            write_json_atomic(self._path, data)
        except OSError as exc:
            logger.warning("Failed to persist local events to %s: %s", self._path, exc)

    def _mutated(self) -> None:
        if self.on_mutation is not None:
            self.on_mutation()

    def add(
        self,
        owner_user_id: str,
        title: str,
        start_time: datetime,
        end_time: datetime,
        description: str = "",
        all_day: bool = False,
        color: Optional[str] = None,
    ) -> CanonicalEvent:
        """Create a local event.

        Raises:
            ValueError: If the end precedes the start
        """
        if end_time < start_time:
            raise ValueError("end_time must not be before start_time")
        event = CanonicalEvent(
            id=uuid.uuid4().hex,
            owner_user_id=owner_user_id,
            title=title,
            description=description,
            start_time=start_time,
            end_time=end_time,
            all_day=all_day,
            color=color or DEFAULT_EVENT_COLOR,
            origin=Origin.local(),
        )
        with self._lock:
            self._events[event.id] = event
            self._persist()
        logger.info("Created local event %s for user %s", event.id, owner_user_id)
        self._mutated()
        return event

    def get(self, event_id: str) -> CanonicalEvent:
        with self._lock:
            event = self._events.get(event_id)
        if event is None:
            raise LocalEventNotFoundError(f"Event not found: {event_id}")
        return event

    def update(self, event_id: str, **changes: Any) -> CanonicalEvent:
        """Apply ``changes`` to a local event; ``id``, ``origin`` and owner are fixed.

        Raises:
            LocalEventNotFoundError: If no local event has ``event_id``
            ValueError: If the change would put the end before the start
        """
        for fixed in ("id", "origin", "owner_user_id"):
            changes.pop(fixed, None)
        with self._lock:
            event = self._events.get(event_id)
            if event is None:
                raise LocalEventNotFoundError(f"Event not found: {event_id}")
            ensure_mutable(event, "edit")
            updated = CanonicalEvent.model_validate({**event.model_dump(), **changes})
            if updated.end_time < updated.start_time:
                raise ValueError("end_time must not be before start_time")
            self._events[event_id] = updated
            self._persist()
        self._mutated()
        return updated

    def remove(self, event_id: str) -> CanonicalEvent:
        with self._lock:
            event = self._events.get(event_id)
            if event is None:
                raise LocalEventNotFoundError(f"Event not found: {event_id}")
            ensure_mutable(event, "delete")
            del self._events[event_id]
            self._persist()
        logger.info("Deleted local event %s", event_id)
        self._mutated()
        return event

    def list(self, user_id: Optional[str] = None) -> list[CanonicalEvent]:
        with self._lock:
            events = list(self._events.values())
        if user_id is not None:
            events = [event for event in events if event.owner_user_id == user_id]
        return sorted(events, key=lambda e: (e.start_time, e.id))

    def override_color(self, event: CanonicalEvent, color: str) -> CanonicalEvent:
        """Record a display color for an external event whose origin allows recoloring.

        Overrides are keyed by event id and applied on read by
        ``apply_color_overrides``; the external event itself is never modified.

        Raises:
            ImmutableEventError: If the event's origin forbids recoloring
        """
        ensure_mutable(event, "recolor")
        with self._lock:
            self._color_overrides[event.id] = color
        logger.info("Color override %s set for event %s", color, event.id)
        return event.model_copy(update={"color": color})

    def apply_color_overrides(self, events: Iterable[CanonicalEvent]) -> list[CanonicalEvent]:
        with self._lock:
            overrides = dict(self._color_overrides)
        return [
            event.model_copy(update={"color": overrides[event.id]}) if event.id in overrides else event
            for event in events
        ]
