"""Per-feed cache of fetched payloads and their parsed events."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from ..sync_models import CanonicalEvent

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 0.5


@dataclass(frozen=True)
class CacheEntry:
    """Payload and events from one successful fetch of one feed.

    Entries are never mutated; a refresh stores a new entry.
    """

    feed_id: str
    raw_payload: str
    events: tuple[CanonicalEvent, ...]
    fetched_at: datetime


class FeedCache:
    """Short-TTL cache keyed by feed id.

    Each slot holds (entry, stored_at) and is swapped as a unit under a lock, so
    a reader sees either the old entry or the new one, never a mix.

    Args:
        ttl_seconds: Freshness window used by ``get``
        clock: Monotonic time source, injectable for tests
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._slots: dict[str, tuple[CacheEntry, float]] = {}

    def get(self, feed_id: str) -> Optional[CacheEntry]:
        """Return the entry for ``feed_id`` if present and younger than the TTL."""
        with self._lock:
            slot = self._slots.get(feed_id)
        if slot is None:
            return None
        entry, stored_at = slot
        if self._clock() - stored_at > self.ttl_seconds:
            return None
        return entry

    def get_stale(self, feed_id: str) -> Optional[CacheEntry]:
        """Return the last entry for ``feed_id`` regardless of age."""
        with self._lock:
            slot = self._slots.get(feed_id)
        return slot[0] if slot else None

    def put(self, feed_id: str, entry: CacheEntry) -> None:
        with self._lock:
            self._slots[feed_id] = (entry, self._clock())
        logger.debug("Cached %d events for feed %s", len(entry.events), feed_id)

    def invalidate(self, feed_id: str) -> None:
        with self._lock:
            self._slots.pop(feed_id, None)

    def invalidate_all(self) -> None:
        with self._lock:
            count = len(self._slots)
            self._slots.clear()
        logger.debug("Invalidated %d cache entries", count)

    def __contains__(self, feed_id: object) -> bool:
        with self._lock:
            return feed_id in self._slots

    def __len__(self) -> int:
        with self._lock:
            return len(self._slots)
