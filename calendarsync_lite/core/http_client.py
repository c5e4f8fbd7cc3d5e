"""Shared HTTP client manager for outbound feed fetches.

Keeps one pooled httpx.AsyncClient per client id so repeated syncs reuse
connections instead of building a client per fetch. Clients that keep failing
are recreated on next use.
"""

import asyncio
import logging
import time
from typing import Optional

import httpx

from calendarsync_lite import __version__

logger = logging.getLogger(__name__)

# Global state for shared HTTP clients
_shared_clients: dict[str, httpx.AsyncClient] = {}
_client_health: dict[str, dict[str, float]] = {}
_client_lock = asyncio.Lock()

DEFAULT_LIMITS = httpx.Limits(
    max_connections=10,
    max_keepalive_connections=5,
)

# Feeds are small; a slow provider should not stall a sync pass
DEFAULT_TIMEOUT = httpx.Timeout(
    connect=10.0,
    read=15.0,
    write=10.0,
    pool=15.0,
)

USER_AGENT = f"CalendarSync-Lite/{__version__}"

# Some providers reject requests lacking a recognizable client identifier
DEFAULT_FEED_HEADERS: dict[str, str] = {
    "User-Agent": USER_AGENT,
    "Accept": "text/calendar,application/ics,text/plain;q=0.9,*/*;q=0.8",
    "Cache-Control": "no-cache",
}

# Health check thresholds
HEALTH_ERROR_THRESHOLD = 3  # Recreate client after 3 consecutive errors
HEALTH_TIMEOUT_SECONDS = 300


def headers_with_correlation_id(base: Optional[dict[str, str]] = None) -> dict[str, str]:
    """Return request headers with the current correlation id attached.

    Args:
        base: Headers to start from (defaults to DEFAULT_FEED_HEADERS)

    Returns:
        New header dict; X-Request-ID is only added inside a request context
    """
    headers = dict(base if base is not None else DEFAULT_FEED_HEADERS)

    from calendarsync_lite.middleware.correlation_id import get_request_id

    request_id = get_request_id()
    if request_id != "no-request-id":
        headers.setdefault("X-Request-ID", request_id)
    return headers


async def get_shared_client(
    client_id: str = "default",
    limits: Optional[httpx.Limits] = None,
    timeout: Optional[httpx.Timeout] = None,
) -> httpx.AsyncClient:
    """Get or create a shared HTTP client with connection pooling.

    Args:
        client_id: Identifier for the client (allows multiple clients if needed)
        limits: Custom connection limits
        timeout: Custom timeout configuration

    Returns:
        Shared httpx.AsyncClient

    Raises:
        RuntimeError: If client creation fails
    """
    async with _client_lock:
        await _recreate_client_if_unhealthy(client_id)

        if client_id not in _shared_clients or _shared_clients[client_id].is_closed:
            try:
                effective_limits = limits or DEFAULT_LIMITS
                logger.debug(
                    "Creating shared HTTP client '%s' with max_connections=%d",
                    client_id,
                    effective_limits.max_connections,
                )
                _shared_clients[client_id] = httpx.AsyncClient(
                    limits=effective_limits,
                    timeout=timeout or DEFAULT_TIMEOUT,
                    follow_redirects=True,
                    headers=DEFAULT_FEED_HEADERS,
                )
                _client_health[client_id] = {
                    "error_count": 0,
                    "last_error_time": 0,
                    "created_time": time.time(),
                }
                logger.info("Created shared HTTP client '%s'", client_id)
            except Exception as e:
                logger.exception("Failed to create shared HTTP client '%s'", client_id)
                raise RuntimeError(f"Failed to create shared HTTP client: {e}") from e

        return _shared_clients[client_id]


async def close_all_clients() -> None:
    """Close all shared HTTP clients; called during application shutdown."""
    async with _client_lock:
        for client_id, client in _shared_clients.items():
            try:
                if not client.is_closed:
                    await client.aclose()
                    logger.debug("Closed shared HTTP client '%s'", client_id)
            except Exception as e:
                logger.warning("Error closing shared HTTP client '%s': %s", client_id, e)

        _shared_clients.clear()
        _client_health.clear()


async def record_client_error(client_id: str = "default") -> None:
    """Record an error for health tracking."""
    async with _client_lock:
        health = _client_health.setdefault(
            client_id, {"error_count": 0, "last_error_time": 0, "created_time": time.time()}
        )
        health["error_count"] += 1
        health["last_error_time"] = time.time()
        logger.debug(
            "Recorded error for client '%s', total errors: %d", client_id, health["error_count"]
        )


async def record_client_success(client_id: str = "default") -> None:
    """Reset the error count after a successful request."""
    async with _client_lock:
        if client_id in _client_health:
            _client_health[client_id]["error_count"] = 0


async def _recreate_client_if_unhealthy(client_id: str) -> None:
    """Drop a shared client that failed repeatedly so the next call recreates it.

    Caller must hold ``_client_lock``.
    """
    health = _client_health.get(client_id)
    if health is None:
        return

    should_recreate = (
        health["error_count"] >= HEALTH_ERROR_THRESHOLD
        and (time.time() - health["last_error_time"]) < HEALTH_TIMEOUT_SECONDS
    )
    if should_recreate and client_id in _shared_clients:
        logger.warning(
            "Recreating unhealthy client '%s' after %d errors",
            client_id,
            health["error_count"],
        )
        try:
            old_client = _shared_clients[client_id]
            if not old_client.is_closed:
                await old_client.aclose()
        except Exception as e:
            logger.warning("Error closing unhealthy client '%s': %s", client_id, e)

        del _shared_clients[client_id]
        del _client_health[client_id]
