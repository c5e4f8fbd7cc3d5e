"""Format normalizer: raw feed payload -> CanonicalEvents."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Optional

from ..core.config_manager import get_config_value
from ..core.timezone_utils import now_utc, resolve_zone
from ..sync_exceptions import ParseError
from ..sync_models import Feed, FeedKind, ParseResult
from .expansion import DateWindow
from .ics_normalizer import IcsNormalizer
from .vendor_normalizer import VendorBookingNormalizer

logger = logging.getLogger(__name__)


class FormatNormalizer:
    """Dispatch payloads to the ICS or vendor parser and apply the sync window.

    ``normalize`` never raises for bad input: malformed payloads come back as a
    failed ParseResult carrying the cause, and the orchestrator decides what to do.
    """

    def __init__(self, settings: Any = None, clock: Callable[[], datetime] = now_utc) -> None:
        self.past_days = int(get_config_value(settings, "window_past_days", 365))
        self.future_days = int(get_config_value(settings, "window_future_days", 365))
        self.tz = resolve_zone(get_config_value(settings, "default_timezone", "UTC"))
        self._clock = clock
        self._ics = IcsNormalizer(self.tz)
        self._vendor = VendorBookingNormalizer(self.tz)

    def window(self, now: Optional[datetime] = None) -> DateWindow:
        """Return the sync horizon around ``now`` (defaults to the clock)."""
        return DateWindow.around(now or self._clock(), self.past_days, self.future_days)

    def normalize(self, raw_payload: str, feed: Feed) -> ParseResult:
        """Parse ``raw_payload`` for ``feed``.

        Args:
            raw_payload: ICS text or vendor booking JSON
            feed: Feed the payload was fetched for; its kind selects the parser

        Returns:
            ParseResult; ``success`` is False when the payload is malformed
        """
        window = self.window()
        parser = self._vendor if feed.kind == FeedKind.VENDOR_API else self._ics
        try:
            return parser.parse(raw_payload, feed, window)
        except ParseError as e:
            logger.warning("Failed to parse feed %s: %s", feed.id, e)
            return ParseResult(success=False, error_message=str(e))
        except Exception as e:
            logger.exception("Unexpected parser failure for feed %s", feed.id)
            return ParseResult(success=False, error_message=f"Unexpected parse error: {e}")
