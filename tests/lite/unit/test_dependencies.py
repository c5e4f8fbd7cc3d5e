"""Unit tests for calendarsync_lite.core.dependencies module."""

from datetime import datetime, timedelta, timezone

import pytest

from calendarsync_lite.core.dependencies import AppDependencies, DependencyContainer
from calendarsync_lite.domain.feed_cache import CacheEntry, FeedCache
from calendarsync_lite.sync_orchestrator import SyncOrchestrator

pytestmark = [pytest.mark.unit, pytest.mark.fast]


def test_build_dependencies_when_called_then_components_wired(settings) -> None:
    """The container shares one connection registry between fan-out and the app."""
    deps = DependencyContainer.build_dependencies(settings)

    assert isinstance(deps, AppDependencies)
    assert isinstance(deps.cache, FeedCache)
    assert isinstance(deps.orchestrator, SyncOrchestrator)
    assert deps.fanout.connections is deps.connections
    assert deps.config is settings
    assert not deps.stop_event.is_set()


def test_build_dependencies_when_local_event_added_then_cache_invalidated(settings) -> None:
    """Local event mutations drop cached feed results."""
    deps = DependencyContainer.build_dependencies(settings)
    now = datetime(2025, 6, 1, 12, tzinfo=timezone.utc)
    deps.cache.put("feed1", CacheEntry("feed1", "BEGIN:VCALENDAR", (), now))

    deps.local_events.add("user1", "Dentist", now, now + timedelta(hours=1))

    assert "feed1" not in deps.cache
