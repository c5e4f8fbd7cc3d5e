"""HTTP fetcher for external ICS feeds - CalendarSync Lite version."""

from __future__ import annotations

import asyncio
import logging
import random
import re
from typing import Any, Optional
from urllib.parse import urlparse

import httpx

from .core.config_manager import get_config_value
from .core.http_client import (
    get_shared_client,
    headers_with_correlation_id,
    record_client_error,
    record_client_success,
)
from .sync_models import Feed, FetchErrorCategory, FetchResult

logger = logging.getLogger(__name__)

# Backoff calculation constants
MAX_BACKOFF_SECONDS = 30.0
JITTER_MIN_FACTOR = 0.1
JITTER_MAX_FACTOR = 0.3

# Status codes worth retrying; everything else is final
RETRYABLE_STATUS_CODES = frozenset({502, 503, 504})

DEFAULT_LENIENT_HOSTS = ("calendar.google.com",)

_VCALENDAR_BLOCK = re.compile(r"BEGIN:VCALENDAR.*?END:VCALENDAR", re.DOTALL)


def extract_vcalendar(text: str) -> Optional[str]:
    """Return the first BEGIN:VCALENDAR..END:VCALENDAR block embedded in ``text``.

    Consumer calendar platforms sometimes wrap a valid calendar in an HTML page
    (soft-404s, consent interstitials).
    """
    match = _VCALENDAR_BLOCK.search(text)
    return match.group(0) if match else None


class ExternalFetcher:
    """Async fetcher returning raw ICS payloads or typed FetchErrors.

    ``fetch`` never raises (cancellation aside): every failure is mapped to a
    ``FetchErrorCategory`` so the orchestrator can apply its own tolerance policy.
    """

    def __init__(self, settings: Any, client: Optional[httpx.AsyncClient] = None) -> None:
        """Initialize fetcher.

        Args:
            settings: Config dict or attribute object (request_timeout, max_retries,
                retry_backoff_factor, lenient_hosts)
            client: Optional client to use instead of the shared pool
        """
        self.settings = settings
        self._client = client
        self._use_shared_client = client is None
        self._client_id = "feed_fetcher"
        self.timeout = float(get_config_value(settings, "request_timeout", 15.0))
        self.max_retries = int(get_config_value(settings, "max_retries", 2))
        self.backoff_factor = float(get_config_value(settings, "retry_backoff_factor", 1.5))
        hosts = get_config_value(settings, "lenient_hosts", None)
        self.lenient_hosts = tuple(h.lower() for h in (hosts or DEFAULT_LENIENT_HOSTS))

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is not None:
            return self._client
        return await get_shared_client(self._client_id)

    def is_lenient_provider(self, url: str) -> bool:
        """Return True if ``url`` belongs to a provider known to send soft errors."""
        host = (urlparse(url).hostname or "").lower()
        return any(host == h or host.endswith("." + h) for h in self.lenient_hosts)

    @staticmethod
    def _validate_url(url: str) -> Optional[str]:
        """Return an error message if ``url`` is not an absolute http(s) URL."""
        if not url or not url.strip():
            return "Feed has no URL"
        parsed = urlparse(url.strip())
        if parsed.scheme not in ("http", "https"):
            return f"Unsupported URL scheme: {parsed.scheme or '<none>'}"
        if not parsed.hostname:
            return "URL missing hostname"
        return None

    async def fetch(self, feed: Feed) -> FetchResult:
        """Download the raw payload for ``feed``.

        Args:
            feed: Registered feed with a non-empty http(s) URL

        Returns:
            FetchResult with ``payload`` on success, otherwise with ``error`` set to a
            FetchError whose category is one of not-found, timeout,
            connection-refused, server-error or empty-body.
        """
        invalid = self._validate_url(feed.url)
        if invalid:
            logger.warning("Feed %s rejected before fetch: %s", feed.id, invalid)
            return FetchResult.failed(feed.id, FetchErrorCategory.NOT_FOUND, invalid)

        url = feed.url.strip()
        try:
            response = await self._request_with_retry(url)
        except httpx.TimeoutException:
            logger.warning("Timeout fetching feed %s after %.0fs", feed.id, self.timeout)
            return FetchResult.failed(
                feed.id, FetchErrorCategory.TIMEOUT, f"Request timeout after {self.timeout:.0f}s"
            )
        except httpx.NetworkError as e:
            logger.warning("Connection failed for feed %s: %s", feed.id, e)
            return FetchResult.failed(
                feed.id, FetchErrorCategory.CONNECTION_REFUSED, f"Connection failed: {e}"
            )
        except httpx.HTTPError as e:
            logger.warning("HTTP error fetching feed %s: %s", feed.id, e)
            return FetchResult.failed(feed.id, FetchErrorCategory.SERVER_ERROR, f"HTTP error: {e}")
        except Exception as e:
            logger.exception("Unexpected error fetching feed %s", feed.id)
            return FetchResult.failed(
                feed.id, FetchErrorCategory.SERVER_ERROR, f"Unexpected error: {e}"
            )

        return self._create_result(feed, response)

    def _calculate_backoff(self, attempt: int) -> float:
        """Calculate exponential backoff time with jitter.

        Args:
            attempt: Current retry attempt number (0-indexed)

        Returns:
            Backoff time in seconds including jitter
        """
        base_backoff = min(self.backoff_factor**attempt, MAX_BACKOFF_SECONDS)
        jitter = random.uniform(JITTER_MIN_FACTOR, JITTER_MAX_FACTOR) * base_backoff  # nosec B311 - jitter not cryptographic
        return base_backoff + jitter

    async def _request_with_retry(self, url: str) -> httpx.Response:
        """GET ``url``, retrying transient network failures and 502/503/504.

        Returns:
            The final httpx.Response (any status)

        Raises:
            httpx.TimeoutException, httpx.NetworkError: after the last attempt
        """
        client = await self._get_client()
        headers = headers_with_correlation_id()
        attempt = 0

        while True:
            try:
                response = await client.get(url, headers=headers, timeout=self.timeout)
            except (httpx.TimeoutException, httpx.NetworkError) as e:
                if self._use_shared_client:
                    await record_client_error(self._client_id)
                if attempt >= self.max_retries:
                    raise
                backoff_time = self._calculate_backoff(attempt)
                logger.warning(
                    "Request failed (attempt %d/%d), retrying in %.1fs: %s",
                    attempt + 1,
                    self.max_retries + 1,
                    backoff_time,
                    e,
                )
                await asyncio.sleep(backoff_time)
                attempt += 1
                continue

            if response.status_code in RETRYABLE_STATUS_CODES and attempt < self.max_retries:
                backoff_time = self._calculate_backoff(attempt)
                logger.info(
                    "Upstream returned %d for %s, retrying in %.1fs",
                    response.status_code,
                    url,
                    backoff_time,
                )
                await asyncio.sleep(backoff_time)
                attempt += 1
                continue

            if self._use_shared_client:
                await record_client_success(self._client_id)
            logger.debug(
                "Fetched %s (attempt %d) - status %d, %d bytes",
                url,
                attempt + 1,
                response.status_code,
                len(response.content),
            )
            return response

    def _create_result(self, feed: Feed, response: httpx.Response) -> FetchResult:
        """Map an HTTP response to a FetchResult according to provider leniency."""
        status = response.status_code
        lenient = self.is_lenient_provider(feed.url)
        content_type = response.headers.get("content-type", "").lower() or None

        if status >= 500:
            return FetchResult.failed(
                feed.id,
                FetchErrorCategory.SERVER_ERROR,
                f"HTTP {status}: {response.reason_phrase}",
                status,
            )
        if status == 204:
            return FetchResult.failed(
                feed.id, FetchErrorCategory.EMPTY_BODY, "No content (HTTP 204)", status
            )
        if status != 200 and not lenient:
            category = (
                FetchErrorCategory.NOT_FOUND if 400 <= status < 500 else FetchErrorCategory.SERVER_ERROR
            )
            return FetchResult.failed(
                feed.id, category, f"HTTP {status}: {response.reason_phrase}", status
            )

        content = response.text
        if not content or not content.strip():
            logger.warning("Empty body received for feed %s", feed.id)
            return FetchResult.failed(
                feed.id, FetchErrorCategory.EMPTY_BODY, "Empty content received", status
            )

        if lenient and not content.lstrip().startswith("BEGIN:VCALENDAR"):
            embedded = extract_vcalendar(content)
            if embedded:
                logger.info("Extracted embedded calendar from %s response", feed.url)
                content = embedded
            elif status != 200:
                return FetchResult.failed(
                    feed.id,
                    FetchErrorCategory.NOT_FOUND,
                    f"HTTP {status} without calendar data",
                    status,
                )

        if status != 200:
            logger.info("Accepted HTTP %d from lenient provider for feed %s", status, feed.id)

        return FetchResult.ok(feed.id, content, status_code=status, content_type=content_type)
