"""Per-feed sync health tracking for the calendarsync_lite server."""

from __future__ import annotations

import os
import threading
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Optional

# A feed with this many consecutive failures marks the service degraded
DEGRADED_FAILURE_STREAK = 3
HEARTBEAT_STALE_SECONDS = 600


@dataclass
class FeedHealth:
    """Sync history of one feed."""

    feed_id: str
    last_attempt: Optional[float] = None
    last_success: Optional[float] = None
    last_error: Optional[str] = None
    last_error_category: Optional[str] = None
    consecutive_failures: int = 0
    event_count: int = 0


@dataclass
class HealthStatus:
    """Health status information for the server."""

    status: str  # "ok" or "degraded"
    server_time_iso: str
    uptime_seconds: int
    pid: int
    feeds: list[dict[str, Any]] = field(default_factory=list)
    background_task: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class HealthTracker:
    """Thread-safe record of sync attempts and results per feed."""

    def __init__(self) -> None:
        self._start_time = time.time()
        self._lock = threading.Lock()
        self._feeds: dict[str, FeedHealth] = {}
        self._background_heartbeat: Optional[float] = None

    def _feed(self, feed_id: str) -> FeedHealth:
        health = self._feeds.get(feed_id)
        if health is None:
            health = self._feeds[feed_id] = FeedHealth(feed_id)
        return health

    def record_attempt(self, feed_id: str) -> None:
        with self._lock:
            self._feed(feed_id).last_attempt = time.time()

    def record_success(self, feed_id: str, event_count: int) -> None:
        with self._lock:
            health = self._feed(feed_id)
            health.last_success = time.time()
            health.event_count = event_count
            health.consecutive_failures = 0
            health.last_error = None
            health.last_error_category = None

    def record_failure(self, feed_id: str, error: str, category: Optional[str] = None) -> None:
        with self._lock:
            health = self._feed(feed_id)
            health.consecutive_failures += 1
            health.last_error = error
            health.last_error_category = category

    def record_background_heartbeat(self) -> None:
        self._background_heartbeat = time.time()

    def get_feed_health(self, feed_id: str) -> Optional[FeedHealth]:
        with self._lock:
            return self._feeds.get(feed_id)

    def get_uptime_seconds(self) -> int:
        return int(time.time() - self._start_time)

    def get_background_task_status(self) -> dict[str, Any]:
        if self._background_heartbeat is None:
            return {"name": "sync_loop", "status": "not-running", "last_heartbeat_age_s": None}
        age = int(time.time() - self._background_heartbeat)
        status = "running" if age < HEARTBEAT_STALE_SECONDS else "stale"
        return {"name": "sync_loop", "status": status, "last_heartbeat_age_s": age}

    def determine_overall_status(self) -> str:
        """Return "degraded" if any feed keeps failing, else "ok"."""
        with self._lock:
            failing = any(
                h.consecutive_failures >= DEGRADED_FAILURE_STREAK for h in self._feeds.values()
            )
        return "degraded" if failing else "ok"

    def get_health_status(self, current_time_iso: str) -> HealthStatus:
        now = time.time()
        with self._lock:
            feeds = [
                {
                    "feed_id": h.feed_id,
                    "last_success_age_s": None if h.last_success is None else int(now - h.last_success),
                    "last_attempt_age_s": None if h.last_attempt is None else int(now - h.last_attempt),
                    "consecutive_failures": h.consecutive_failures,
                    "last_error": h.last_error,
                    "last_error_category": h.last_error_category,
                    "event_count": h.event_count,
                }
                for h in sorted(self._feeds.values(), key=lambda h: h.feed_id)
            ]
        return HealthStatus(
            status=self.determine_overall_status(),
            server_time_iso=current_time_iso,
            uptime_seconds=self.get_uptime_seconds(),
            pid=os.getpid(),
            feeds=feeds,
            background_task=self.get_background_task_status(),
        )
