"""JSON-backed feed registry for calendarsync_lite with atomic writes."""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError

from ..sync_exceptions import DuplicateConfigurationError, FeedNotFoundError
from ..sync_models import Feed
from ._json_file import read_json, write_json_atomic

logger = logging.getLogger(__name__)


def _normalize_url(url: str) -> str:
    return url.strip()


class FeedRegistry:
    """Persistent registry of external calendar feeds.

    The on-disk format is a JSON array of feed objects. A URL may belong to only
    one feed system-wide; ``add_feed`` enforces this. Registries loaded from disk
    that already violate the rule are kept as-is with a warning.

    When ``path`` is None the registry lives in memory only.
    """

    def __init__(self, path: str | Path | None = None) -> None:
        self._path = Path(path) if path else None
        self._lock = threading.Lock()
        self._feeds: dict[str, Feed] = {}

        if self._path is not None:
            try:
                self.load()
            except Exception as exc:
                logger.warning("Failed to load feed registry %s: %s", self._path, exc)

    def load(self) -> None:
        """Load feeds from disk, replacing the in-memory registry."""
        if self._path is None:
            return
        with self._lock:
            data = read_json(self._path)
            if data is None:
                logger.debug("Feed registry file not found; starting empty: %s", self._path)
                self._feeds = {}
                return
            if not isinstance(data, list):
                raise ValueError("feed registry JSON root must be an array")  # noqa: TRY004

            feeds: dict[str, Feed] = {}
            seen_urls: dict[str, str] = {}
            for item in data:
                try:
                    feed = Feed.model_validate(item)
                except ValidationError as e:
                    logger.warning("Skipping malformed feed entry in %s: %s", self._path, e)
                    continue
                url = _normalize_url(feed.url)
                if url in seen_urls:
                    logger.warning(
                        "Feed %s shares URL with feed %s; keeping both", feed.id, seen_urls[url]
                    )
                else:
                    seen_urls[url] = feed.id
                feeds[feed.id] = feed

            self._feeds = feeds
            logger.debug("Loaded feed registry %s (%d feeds)", self._path, len(feeds))

    def _persist(self) -> None:
        if self._path is None:
            return
        data: list[dict[str, Any]] = [feed.model_dump(mode="json") for feed in self._feeds.values()]
        try:
            write_json_atomic(self._path, data)
        except OSError as exc:
            logger.warning("Failed to persist feed registry to %s: %s", self._path, exc)

    def add_feed(self, feed: Feed) -> Feed:
        """Register ``feed``.

        Re-registering a URL the same owner already holds returns the existing feed.

        Raises:
            DuplicateConfigurationError: If another user already registered the URL
        """
        url = _normalize_url(feed.url)
        with self._lock:
            for existing in self._feeds.values():
                if _normalize_url(existing.url) != url:
                    continue
                if existing.owner_user_id != feed.owner_user_id:
                    raise DuplicateConfigurationError(feed.url, existing.id)
                logger.info("Feed URL already registered for user %s: %s", feed.owner_user_id, existing.id)
                return existing

            self._feeds[feed.id] = feed
            self._persist()
        logger.info("Registered %s feed %s for user %s", feed.kind.value, feed.id, feed.owner_user_id)
        return feed

    def get(self, feed_id: str) -> Feed:
        """Return the feed with ``feed_id``.

        Raises:
            FeedNotFoundError: If no such feed is registered
        """
        with self._lock:
            feed = self._feeds.get(feed_id)
        if feed is None:
            raise FeedNotFoundError(f"Feed not found: {feed_id}")
        return feed

    def list_feeds(self, user_id: Optional[str] = None) -> list[Feed]:
        with self._lock:
            feeds = list(self._feeds.values())
        if user_id is None:
            return feeds
        return [feed for feed in feeds if feed.owner_user_id == user_id]

    def list_enabled_feeds(self, user_id: str) -> list[Feed]:
        return [feed for feed in self.list_feeds(user_id) if feed.enabled]

    def all_enabled_feeds(self) -> list[Feed]:
        return [feed for feed in self.list_feeds() if feed.enabled]

    def _replace(self, feed_id: str, **changes: Any) -> Feed:
        with self._lock:
            feed = self._feeds.get(feed_id)
            if feed is None:
                raise FeedNotFoundError(f"Feed not found: {feed_id}")
            updated = feed.model_copy(update=changes)
            self._feeds[feed_id] = updated
            self._persist()
        return updated

    def update_last_synced(self, feed_id: str, when: datetime) -> Feed:
        """Record a successful sync time for ``feed_id``."""
        return self._replace(feed_id, last_synced_at=when)

    def set_enabled(self, feed_id: str, enabled: bool) -> Feed:
        return self._replace(feed_id, enabled=enabled)

    def remove(self, feed_id: str) -> None:
        """Unregister ``feed_id``.

        Raises:
            FeedNotFoundError: If no such feed is registered
        """
        with self._lock:
            if self._feeds.pop(feed_id, None) is None:
                raise FeedNotFoundError(f"Feed not found: {feed_id}")
            self._persist()
        logger.info("Removed feed %s", feed_id)

    def __len__(self) -> int:
        return len(self._feeds)
