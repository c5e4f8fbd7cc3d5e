"""Dependency injection container for the calendarsync_lite server."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Optional

import httpx


@dataclass
class AppDependencies:
    """Container for all application dependencies.

    Everything the HTTP handlers and the background loop share lives here, so
    tests can build one with fakes and hand it to ``create_app``.
    """

    # Configuration
    config: Any

    # State
    registry: Any
    cache: Any
    local_events: Any
    connections: Any
    stop_event: asyncio.Event

    # Engine
    fetcher: Any
    vendor_client: Any
    normalizer: Any
    fanout: Any
    orchestrator: Any
    health_tracker: Any


class DependencyContainer:
    """Factory for building application dependencies."""

    @staticmethod
    def build_dependencies(
        config: Any,
        http_client: Optional[httpx.AsyncClient] = None,
        email_notifier: Any = None,
    ) -> AppDependencies:
        """Build all application dependencies.

        Args:
            config: Application configuration dict
            http_client: Client for outbound fetches; the shared pool is used when None
            email_notifier: EmailNotifier for durable notifications (logs only when None)

        Returns:
            AppDependencies container with all dependencies initialized
        """
        from ..calendar.normalizer import FormatNormalizer
        from ..domain.feed_cache import FeedCache
        from ..domain.feed_registry import FeedRegistry
        from ..domain.local_events import LocalEventStore
        from ..domain.notifications import ConnectionRegistry, NotificationFanout
        from ..sync_fetcher import ExternalFetcher
        from ..sync_orchestrator import SyncOrchestrator
        from ..vendor.beds24_client import Beds24Client
        from .config_manager import get_config_value
        from .health_tracker import HealthTracker

        cache = FeedCache(ttl_seconds=float(get_config_value(config, "cache_ttl_seconds", 0.5)))
        registry = FeedRegistry(get_config_value(config, "registry_path", None))
        local_events = LocalEventStore(
            get_config_value(config, "local_events_path", None),
            on_mutation=cache.invalidate_all,
        )

        connections = ConnectionRegistry()
        fanout = NotificationFanout(connections, email_notifier)
        health_tracker = HealthTracker()

        fetcher = ExternalFetcher(config, client=http_client)
        vendor_client = Beds24Client(config, client=http_client)
        normalizer = FormatNormalizer(config)

        orchestrator = SyncOrchestrator(
            registry=registry,
            cache=cache,
            fetcher=fetcher,
            normalizer=normalizer,
            vendor_client=vendor_client,
            fanout=fanout,
            local_events=local_events,
            health_tracker=health_tracker,
            settings=config,
        )

        return AppDependencies(
            config=config,
            registry=registry,
            cache=cache,
            local_events=local_events,
            connections=connections,
            stop_event=asyncio.Event(),
            fetcher=fetcher,
            vendor_client=vendor_client,
            normalizer=normalizer,
            fanout=fanout,
            orchestrator=orchestrator,
            health_tracker=health_tracker,
        )
