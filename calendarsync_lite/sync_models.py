"""Data models for calendar synchronization - CalendarSync Lite version."""

from __future__ import annotations

import uuid
from datetime import date, datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer

from .core.timezone_utils import now_utc as _now_utc

DEFAULT_FEED_COLOR = "#8b5cf6"
DEFAULT_EVENT_COLOR = "#0ea5e9"


class OriginKind(str, Enum):
    """Where an event came from; governs mutability and display rules."""

    LOCAL = "local"
    ICAL = "ical"
    VENDOR_API = "vendor-api"


class FeedKind(str, Enum):
    """Input format of a registered feed."""

    ICAL = "ical"
    VENDOR_API = "vendor-api"


# (editable, deletable, color_overridable) per origin kind
_ORIGIN_CAPABILITIES: dict[OriginKind, tuple[bool, bool, bool]] = {
    OriginKind.LOCAL: (True, True, True),
    OriginKind.ICAL: (False, False, False),
    OriginKind.VENDOR_API: (False, False, True),
}


class Origin(BaseModel):
    """Tagged origin variant: the kind plus the payload specific to that kind.

    Local events carry no payload. External events reference the feed they came
    from, the upstream UID and (for expanded spans) the occurrence date.
    """

    kind: OriginKind
    feed_id: Optional[str] = Field(default=None, serialization_alias="feedId")
    provider_uid: Optional[str] = Field(default=None, serialization_alias="providerUid")
    occurrence_date: Optional[date] = Field(default=None, serialization_alias="occurrenceDate")

    model_config = ConfigDict(frozen=True)

    @classmethod
    def local(cls) -> Origin:
        return cls(kind=OriginKind.LOCAL)

    @classmethod
    def external(
        cls,
        kind: OriginKind,
        feed_id: str,
        provider_uid: str,
        occurrence_date: Optional[date] = None,
    ) -> Origin:
        if kind == OriginKind.LOCAL:
            raise ValueError("external origin requires ical or vendor-api kind")
        return cls(
            kind=kind,
            feed_id=feed_id,
            provider_uid=provider_uid,
            occurrence_date=occurrence_date,
        )

    @property
    def is_external(self) -> bool:
        return self.kind != OriginKind.LOCAL

    @property
    def editable(self) -> bool:
        return _ORIGIN_CAPABILITIES[self.kind][0]

    @property
    def deletable(self) -> bool:
        return _ORIGIN_CAPABILITIES[self.kind][1]

    @property
    def color_overridable(self) -> bool:
        return _ORIGIN_CAPABILITIES[self.kind][2]


class CanonicalEvent(BaseModel):
    """Origin-agnostic calendar occurrence produced by the engine.

    Instances are frozen: externally sourced events are replaced wholesale on
    refresh, and flags such as ``conflict_with`` are applied through
    ``model_copy(update=...)``.
    """

    id: str
    owner_user_id: str = Field(..., serialization_alias="ownerUserId")
    title: str
    description: str = ""
    start_time: datetime = Field(..., serialization_alias="startTime")
    end_time: datetime = Field(..., serialization_alias="endTime")
    all_day: bool = Field(default=False, serialization_alias="allDay")
    color: Optional[str] = None
    origin: Origin

    # Set on local events whose title/date duplicates an external booking
    conflict_with: Optional[str] = Field(default=None, serialization_alias="conflictWith")

    model_config = ConfigDict(frozen=True)

    @field_serializer("start_time", "end_time")
    def serialize_datetime(self, value: datetime) -> str:
        return value.isoformat()

    @property
    def origin_kind(self) -> OriginKind:
        return self.origin.kind

    def overlaps(self, start: Optional[datetime], end: Optional[datetime]) -> bool:
        """Return True if the event intersects the inclusive window [start, end]."""
        if start is not None and self.end_time < start:
            return False
        return not (end is not None and self.start_time > end)

    def to_api_dict(self) -> dict[str, Any]:
        """Serialize for the JSON API (camelCase keys, ISO datetimes)."""
        data = self.model_dump(mode="json", by_alias=True)
        data["originKind"] = self.origin.kind.value
        data["editable"] = self.origin.editable
        data["deletable"] = self.origin.deletable
        return data


class VendorCredentials(BaseModel):
    """Per-user vendor booking API scope."""

    api_key: str = Field(..., description="Vendor API token")
    property_id: str = Field(..., description="Vendor property identifier")
    room_id: Optional[str] = Field(default=None, description="Optional room filter")


class Feed(BaseModel):
    """A registered external calendar source."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex[:12])
    owner_user_id: str = Field(..., description="User who registered the feed")
    url: str = Field(..., description="ICS URL or vendor API endpoint")
    display_name: str = Field(default="", description="Human-readable name")
    color: str = Field(default=DEFAULT_FEED_COLOR, description="Display color for events")
    enabled: bool = True
    last_synced_at: Optional[datetime] = None
    kind: FeedKind = FeedKind.ICAL
    vendor: Optional[VendorCredentials] = None

    @property
    def origin_kind(self) -> OriginKind:
        return OriginKind.VENDOR_API if self.kind == FeedKind.VENDOR_API else OriginKind.ICAL

    def to_api_dict(self) -> dict[str, Any]:
        """Serialize for the JSON API without exposing vendor credentials."""
        data = self.model_dump(mode="json", exclude={"vendor"})
        data["has_vendor_credentials"] = self.vendor is not None
        return data


class FetchErrorCategory(str, Enum):
    """Failure categories a caller can branch on without string matching."""

    NOT_FOUND = "not-found"
    TIMEOUT = "timeout"
    CONNECTION_REFUSED = "connection-refused"
    SERVER_ERROR = "server-error"
    EMPTY_BODY = "empty-body"


class FetchError(BaseModel):
    """Typed fetch failure returned (never raised) by the fetchers."""

    category: FetchErrorCategory
    message: str
    status_code: Optional[int] = None

    model_config = ConfigDict(use_enum_values=True)


class FetchResult(BaseModel):
    """Result of one fetch: either a raw payload or a FetchError."""

    feed_id: str
    payload: Optional[str] = None
    error: Optional[FetchError] = None
    status_code: Optional[int] = None
    content_type: Optional[str] = None
    fetched_at: datetime = Field(default_factory=_now_utc)

    @property
    def success(self) -> bool:
        return self.error is None and self.payload is not None

    @classmethod
    def ok(
        cls,
        feed_id: str,
        payload: str,
        status_code: Optional[int] = 200,
        content_type: Optional[str] = None,
    ) -> FetchResult:
        return cls(
            feed_id=feed_id, payload=payload, status_code=status_code, content_type=content_type
        )

    @classmethod
    def failed(
        cls,
        feed_id: str,
        category: FetchErrorCategory,
        message: str,
        status_code: Optional[int] = None,
    ) -> FetchResult:
        return cls(
            feed_id=feed_id,
            error=FetchError(category=category, message=message, status_code=status_code),
            status_code=status_code,
        )


class ParseResult(BaseModel):
    """Result of normalizing one payload."""

    success: bool
    events: list[CanonicalEvent] = Field(default_factory=list)
    error_message: Optional[str] = None
    source_event_count: int = 0
    skipped_outside_window: int = 0
    warnings: list[str] = Field(default_factory=list)

    def add_warning(self, message: str) -> None:
        self.warnings.append(message)


class SyncState(str, Enum):
    """Per-feed orchestrator state."""

    IDLE = "idle"
    FETCHING = "fetching"
    PARSING = "parsing"
    CACHED = "cached"
    FAILED = "failed"


class SyncOutcome(BaseModel):
    """Ephemeral result of one orchestrator run for one feed."""

    feed_id: str
    success: bool
    events_added: int = 0
    events_removed: int = 0
    events_changed: int = 0
    error: Optional[str] = None
    error_category: Optional[str] = None
    forced: bool = False
    coalesced: bool = False
    # Terminal state of the run: "cached" or "failed"
    state: Optional[str] = None
    finished_at: datetime = Field(default_factory=_now_utc)

    @property
    def has_changes(self) -> bool:
        return bool(self.events_added or self.events_removed or self.events_changed)


class Notification(BaseModel):
    """Lightweight notification pushed to live connections."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    type: str
    title: str
    message: str
    event_id: Optional[str] = Field(default=None, serialization_alias="eventId")
    created_at: datetime = Field(default_factory=_now_utc, serialization_alias="createdAt")
    read: bool = False
    user_id: str = Field(..., serialization_alias="userId")
    from_user_id: Optional[str] = Field(default=None, serialization_alias="fromUserId")

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)
