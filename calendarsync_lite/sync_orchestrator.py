"""Sync orchestration: per-feed state machine, trigger coalescing and aggregate reads."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from datetime import datetime
from typing import Any, Iterable, Optional, Protocol

from .core.config_manager import get_config_value
from .core.timezone_utils import now_utc
from .domain.dedup import merge
from .domain.feed_cache import CacheEntry, FeedCache
from .sync_exceptions import FeedNotFoundError
from .sync_models import CanonicalEvent, Feed, FeedKind, FetchResult, SyncOutcome, SyncState

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[SyncState, frozenset[SyncState]] = {
    SyncState.IDLE: frozenset({SyncState.FETCHING}),
    SyncState.FETCHING: frozenset({SyncState.PARSING, SyncState.FAILED}),
    SyncState.PARSING: frozenset({SyncState.CACHED, SyncState.FAILED}),
    SyncState.CACHED: frozenset({SyncState.IDLE}),
    SyncState.FAILED: frozenset({SyncState.IDLE}),
}


class Fetcher(Protocol):
    async def fetch(self, feed: Feed) -> FetchResult: ...


def diff_events(
    previous: Iterable[CanonicalEvent], current: Iterable[CanonicalEvent]
) -> tuple[int, int, int]:
    """Return (added, removed, changed) counts between two event sets, keyed by id."""
    old = {event.id: event for event in previous}
    new = {event.id: event for event in current}
    added = len(new.keys() - old.keys())
    removed = len(old.keys() - new.keys())
    changed = sum(1 for event_id in new.keys() & old.keys() if new[event_id] != old[event_id])
    return added, removed, changed


class SyncOrchestrator:
    """Decide when feeds are fetched and assemble a user's merged calendar.

    Each feed runs at most one sync at a time. A trigger that arrives while a sync
    is in flight awaits that run and receives its outcome (``coalesced=True``);
    a forced refresh clears the cache, waits for the in-flight run and then runs
    its own. Nothing is written to the cache or registry until a fetch and parse
    have both succeeded, and a failed forced run leaves the feed uncached.

    Outcome diffs are taken against the last entry this orchestrator stored for
    the feed, so cache invalidation never turns unchanged events into additions.
    """

    def __init__(
        self,
        registry: Any,
        cache: FeedCache,
        fetcher: Fetcher,
        normalizer: Any,
        vendor_client: Optional[Fetcher] = None,
        fanout: Any = None,
        local_events: Any = None,
        health_tracker: Any = None,
        settings: Any = None,
    ) -> None:
        self.registry = registry
        self.cache = cache
        self.fetcher = fetcher
        self.vendor_client = vendor_client
        self.normalizer = normalizer
        self.fanout = fanout
        self.local_events = local_events
        self.health_tracker = health_tracker
        self.fetch_concurrency = max(1, int(get_config_value(settings, "fetch_concurrency", 4)))

        self._states: dict[str, SyncState] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._inflight: dict[str, asyncio.Task[SyncOutcome]] = {}
        self._last_good: dict[str, CacheEntry] = {}

    # -- state machine -------------------------------------------------------

    def get_state(self, feed_id: str) -> SyncState:
        return self._states.get(feed_id, SyncState.IDLE)

    def _transition(self, feed_id: str, new_state: SyncState) -> None:
        current = self.get_state(feed_id)
        if new_state not in ALLOWED_TRANSITIONS[current]:
            raise RuntimeError(
                f"Invalid sync state transition for feed {feed_id}: "
                f"{current.value} -> {new_state.value}"
            )
        logger.debug("Feed %s: %s -> %s", feed_id, current.value, new_state.value)
        self._states[feed_id] = new_state

    def _reset_to_idle(self, feed_id: str) -> None:
        state = self.get_state(feed_id)
        if state in (SyncState.FETCHING, SyncState.PARSING):
            self._transition(feed_id, SyncState.FAILED)
            state = SyncState.FAILED
        if state != SyncState.IDLE:
            self._transition(feed_id, SyncState.IDLE)

    # -- triggers ------------------------------------------------------------

    async def sync_feed(self, feed: Feed, force: bool = False) -> SyncOutcome:
        """Sync one feed, coalescing with an in-flight run.

        Args:
            feed: Feed to sync
            force: Wait for any in-flight run, then run again regardless of cache

        Returns:
            SyncOutcome of the run this trigger was attached to
        """
        inflight = self._inflight.get(feed.id)
        if inflight is not None and not inflight.done():
            if not force:
                logger.debug("Coalescing trigger for feed %s with in-flight sync", feed.id)
                outcome = await asyncio.shield(inflight)
                return outcome.model_copy(update={"coalesced": True})
            while inflight is not None and not inflight.done():
                await asyncio.wait({inflight})
                inflight = self._inflight.get(feed.id)

        task = asyncio.create_task(self._run(feed, forced=force), name=f"sync-{feed.id}")
        self._inflight[feed.id] = task
        try:
            return await asyncio.shield(task)
        finally:
            if self._inflight.get(feed.id) is task and task.done():
                del self._inflight[feed.id]

    async def force_refresh(self, feed_id: str) -> SyncOutcome:
        """Invalidate the feed's cache entry and sync it now.

        Raises:
            FeedNotFoundError: If ``feed_id`` is not registered
        """
        feed = self.registry.get(feed_id)
        self.cache.invalidate(feed_id)
        logger.info("Forced refresh of feed %s", feed_id)
        return await self.sync_feed(feed, force=True)

    async def ensure_fresh(self, user_id: str) -> list[SyncOutcome]:
        """Sync the user's enabled feeds whose cache entry is missing or expired."""
        stale = [
            feed
            for feed in self.registry.list_enabled_feeds(user_id)
            if self.cache.get(feed.id) is None
        ]
        if not stale:
            return []
        return await self._sync_many(stale)

    async def sync_all(self) -> list[SyncOutcome]:
        """Sync every enabled feed in the registry."""
        return await self._sync_many(self.registry.all_enabled_feeds())

    async def _sync_many(self, feeds: list[Feed], force: bool = False) -> list[SyncOutcome]:
        semaphore = asyncio.Semaphore(self.fetch_concurrency)

        async def _bounded(feed: Feed) -> SyncOutcome:
            async with semaphore:
                return await self.sync_feed(feed, force=force)

        results = await asyncio.gather(*(_bounded(feed) for feed in feeds), return_exceptions=True)

        outcomes: list[SyncOutcome] = []
        for feed, result in zip(feeds, results):
            if isinstance(result, BaseException):
                logger.error("Sync of feed %s raised: %s", feed.id, result)
                outcomes.append(SyncOutcome(feed_id=feed.id, success=False, error=str(result)))
            else:
                outcomes.append(result)
        return outcomes

    # -- one run -------------------------------------------------------------

    def _fetcher_for(self, feed: Feed) -> Fetcher:
        if feed.kind == FeedKind.VENDOR_API:
            if self.vendor_client is None:
                raise RuntimeError("vendor-api feed registered but no vendor client configured")
            return self.vendor_client
        return self.fetcher

    async def _run(self, feed: Feed, forced: bool) -> SyncOutcome:
        lock = self._locks.setdefault(feed.id, asyncio.Lock())
        async with lock:
            if self.health_tracker is not None:
                self.health_tracker.record_attempt(feed.id)
            try:
                outcome = await self._fetch_parse_store(feed, forced)
            except Exception as e:
                logger.exception("Unexpected error syncing feed %s", feed.id)
                outcome = SyncOutcome(
                    feed_id=feed.id, success=False, error=str(e), forced=forced, state="failed"
                )
            finally:
                self._reset_to_idle(feed.id)
            if forced and not outcome.success:
                # Pre-force data must not outlive a failed forced refresh
                self.cache.invalidate(feed.id)

        self._record_health(outcome)
        if outcome.has_changes and self.fanout is not None:
            try:
                await self.fanout.notify_sync_outcome(feed.owner_user_id, outcome, feed.display_name)
            except Exception:
                logger.exception("Failed to publish sync outcome for feed %s", feed.id)
        return outcome

    async def _fetch_parse_store(self, feed: Feed, forced: bool) -> SyncOutcome:
        previous = self._last_good.get(feed.id) or self.cache.get_stale(feed.id)

        self._transition(feed.id, SyncState.FETCHING)
        result = await self._fetcher_for(feed).fetch(feed)
        payload = result.payload
        if not result.success or payload is None:
            self._transition(feed.id, SyncState.FAILED)
            error = result.error
            logger.warning(
                "Fetch failed for feed %s (%s): %s",
                feed.id,
                error.category if error else "unknown",
                error.message if error else "no payload",
            )
            return SyncOutcome(
                feed_id=feed.id,
                success=False,
                error=error.message if error else "no payload",
                error_category=str(error.category) if error else None,
                forced=forced,
                state=SyncState.FAILED.value,
            )

        self._transition(feed.id, SyncState.PARSING)
        parsed = self.normalizer.normalize(payload, feed)
        if not parsed.success:
            self._transition(feed.id, SyncState.FAILED)
            return SyncOutcome(
                feed_id=feed.id,
                success=False,
                error=parsed.error_message,
                error_category="parse-error",
                forced=forced,
                state=SyncState.FAILED.value,
            )

        entry = CacheEntry(
            feed_id=feed.id,
            raw_payload=payload,
            events=tuple(parsed.events),
            fetched_at=result.fetched_at,
        )
        self._transition(feed.id, SyncState.CACHED)
        self.cache.put(feed.id, entry)
        self._last_good[feed.id] = entry
        try:
            self.registry.update_last_synced(feed.id, now_utc())
        except FeedNotFoundError:
            logger.warning("Feed %s was removed during sync", feed.id)

        added, removed, changed = diff_events(previous.events if previous else (), entry.events)
        logger.info(
            "Synced feed %s: %d events (+%d -%d ~%d)",
            feed.id,
            len(entry.events),
            added,
            removed,
            changed,
        )
        return SyncOutcome(
            feed_id=feed.id,
            success=True,
            events_added=added,
            events_removed=removed,
            events_changed=changed,
            forced=forced,
            state=SyncState.CACHED.value,
        )

    def _record_health(self, outcome: SyncOutcome) -> None:
        if self.health_tracker is None:
            return
        if outcome.success:
            entry = self.cache.get_stale(outcome.feed_id)
            self.health_tracker.record_success(outcome.feed_id, len(entry.events) if entry else 0)
        else:
            self.health_tracker.record_failure(
                outcome.feed_id, outcome.error or "unknown error", outcome.error_category
            )

    # -- reads ---------------------------------------------------------------

    async def get_user_events(
        self,
        user_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> list[CanonicalEvent]:
        """Return the user's merged calendar, filtered to [start, end] by overlap.

        Feeds that fail contribute their last cached events if any, otherwise
        nothing; local events are always included.
        """
        await self.ensure_fresh(user_id)

        external: list[CanonicalEvent] = []
        for feed in self.registry.list_enabled_feeds(user_id):
            entry = self.cache.get(feed.id) or self.cache.get_stale(feed.id)
            if entry is None:
                logger.debug("No cached events for feed %s", feed.id)
                continue
            external.extend(entry.events)

        local: list[CanonicalEvent] = []
        if self.local_events is not None:
            local = self.local_events.list(user_id)
            external = self.local_events.apply_color_overrides(external)
        merged = merge(local, external)
        return [event for event in merged if event.overlaps(start, end)]

    # -- background ----------------------------------------------------------

    async def start_background_loop(self, stop_event: asyncio.Event, interval: float) -> None:
        """Sync all feeds now, then every ``interval`` seconds until ``stop_event`` is set."""
        logger.info("Background sync loop starting with interval %s seconds", interval)
        while not stop_event.is_set():
            if self.health_tracker is not None:
                self.health_tracker.record_background_heartbeat()
            try:
                outcomes = await self.sync_all()
                failed = sum(1 for outcome in outcomes if not outcome.success)
                logger.debug("Background sync: %d feeds, %d failed", len(outcomes), failed)
            except Exception:
                logger.exception("Background sync loop unexpected error")

            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
        logger.info("Background sync loop stopped")
