"""Unit tests for the per-feed payload cache."""

import dataclasses
import threading
from datetime import datetime, timedelta, timezone

import pytest

from calendarsync_lite.domain.feed_cache import CacheEntry, FeedCache
from calendarsync_lite.sync_models import CanonicalEvent, Origin, OriginKind

pytestmark = [pytest.mark.unit, pytest.mark.fast]


class FakeClock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


def _entry(feed_id: str = "feed1", payload: str = "BEGIN:VCALENDAR") -> CacheEntry:
    return CacheEntry(
        feed_id=feed_id,
        raw_payload=payload,
        events=(),
        fetched_at=datetime(2025, 6, 1, 12, tzinfo=timezone.utc),
    )


def test_get_when_within_ttl_then_entry_returned() -> None:
    """Entries younger than the TTL are served by get()."""
    clock = FakeClock()
    cache = FeedCache(ttl_seconds=0.5, clock=clock)
    entry = _entry()
    cache.put("feed1", entry)

    clock.now += 0.4

    assert cache.get("feed1") is entry


def test_get_when_ttl_elapsed_then_none_but_stale_available() -> None:
    """Expired entries are misses for get() but still visible through get_stale()."""
    clock = FakeClock()
    cache = FeedCache(ttl_seconds=0.5, clock=clock)
    entry = _entry()
    cache.put("feed1", entry)

    clock.now += 0.6

    assert cache.get("feed1") is None
    assert cache.get_stale("feed1") is entry


def test_put_when_entry_replaced_then_readers_see_new_entry_whole() -> None:
    """A refresh swaps payload and events together."""
    cache = FeedCache(clock=FakeClock())
    cache.put("feed1", _entry(payload="old"))
    cache.put("feed1", _entry(payload="new"))

    assert cache.get("feed1").raw_payload == "new"
    assert len(cache) == 1


def test_cache_entry_when_mutated_then_frozen() -> None:
    """CacheEntry instances are immutable."""
    entry = _entry()
    with pytest.raises(dataclasses.FrozenInstanceError):
        entry.raw_payload = "changed"  # type: ignore[misc]


def test_invalidate_when_called_then_entry_gone() -> None:
    """invalidate() removes one feed; invalidate_all() clears everything."""
    cache = FeedCache(clock=FakeClock())
    cache.put("feed1", _entry("feed1"))
    cache.put("feed2", _entry("feed2"))

    cache.invalidate("feed1")
    assert "feed1" not in cache
    assert "feed2" in cache

    cache.invalidate_all()
    assert len(cache) == 0
    assert cache.get_stale("feed2") is None


def _fetch_entry(n: int) -> CacheEntry:
    start = datetime(2025, 6, 1, tzinfo=timezone.utc)
    events = tuple(
        CanonicalEvent(
            id=f"feed1-fetch{n}-{i}",
            owner_user_id="user1",
            title=f"fetch-{n}",
            start_time=start + timedelta(days=i),
            end_time=start + timedelta(days=i, hours=1),
            origin=Origin.external(OriginKind.ICAL, "feed1", f"fetch{n}-{i}"),
        )
        for i in range(n % 5 + 1)
    )
    return CacheEntry(feed_id="feed1", raw_payload=f"fetch-{n}", events=events, fetched_at=start)


def test_get_stale_when_writer_replaces_concurrently_then_payload_and_events_match() -> None:
    """Readers racing a writer always see payload and events from the same fetch."""
    cache = FeedCache(clock=FakeClock())
    cache.put("feed1", _fetch_entry(0))
    done = threading.Event()
    mismatches: list[str] = []

    def reader() -> None:
        while not done.is_set():
            entry = cache.get_stale("feed1")
            n = int(entry.raw_payload.split("-")[1])
            if len(entry.events) != n % 5 + 1 or {e.title for e in entry.events} != {entry.raw_payload}:
                mismatches.append(entry.raw_payload)

    readers = [threading.Thread(target=reader) for _ in range(4)]
    for thread in readers:
        thread.start()
    try:
        for n in range(1, 2000):
            cache.put("feed1", _fetch_entry(n))
    finally:
        done.set()
        for thread in readers:
            thread.join(timeout=5)

    assert mismatches == []
    assert cache.get_stale("feed1").raw_payload == "fetch-1999"
