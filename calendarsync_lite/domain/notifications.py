"""Notification fan-out to live client connections.

Connections are tracked per user in a ``ConnectionRegistry``; publishing walks
the user's channels and drops any channel whose send fails. Durable
notifications additionally trigger an ``EmailNotifier``.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import Any, Optional, Protocol

from ..sync_models import Notification, SyncOutcome

logger = logging.getLogger(__name__)


class Channel(Protocol):
    """Anything that can push a JSON message to one client (e.g. a WebSocket)."""

    async def send_json(self, data: Any) -> None: ...


class EmailNotifier(Protocol):
    """Delivery contract for notifications that must outlive the live connection."""

    async def send(self, user_id: str, notification: Notification) -> None: ...


class LoggingEmailNotifier:
    """EmailNotifier that only logs; template rendering and delivery live elsewhere."""

    async def send(self, user_id: str, notification: Notification) -> None:
        logger.info(
            "Email notification for user %s: %s (%s)", user_id, notification.title, notification.type
        )


class ConnectionRegistry:
    """Map of user id -> set of open channels."""

    def __init__(self) -> None:
        self._channels: dict[str, set[Channel]] = defaultdict(set)

    def register(self, user_id: str, channel: Channel) -> None:
        self._channels[user_id].add(channel)
        logger.debug("Registered channel for user %s (%d open)", user_id, len(self._channels[user_id]))

    def unregister(self, user_id: str, channel: Channel) -> None:
        channels = self._channels.get(user_id)
        if not channels:
            return
        channels.discard(channel)
        if not channels:
            del self._channels[user_id]

    def connection_count(self, user_id: Optional[str] = None) -> int:
        if user_id is not None:
            return len(self._channels.get(user_id, ()))
        return sum(len(channels) for channels in self._channels.values())

    async def close_all(self) -> None:
        """Close every registered channel that supports closing, then forget them."""
        channels = [channel for group in self._channels.values() for channel in group]
        self._channels.clear()
        for channel in channels:
            close = getattr(channel, "close", None)
            if close is None:
                continue
            try:
                await close()
            except Exception as e:
                logger.debug("Error closing channel during shutdown: %s", e)

    async def publish(self, user_id: str, message: dict[str, Any]) -> int:
        """Send ``message`` to every channel of ``user_id``.

        Returns:
            Number of channels the message was delivered to (0 if none are open)
        """
        channels = list(self._channels.get(user_id, ()))
        if not channels:
            return 0

        results = await asyncio.gather(
            *(channel.send_json(message) for channel in channels), return_exceptions=True
        )
        delivered = 0
        for channel, result in zip(channels, results):
            if isinstance(result, BaseException):
                logger.info("Dropping channel for user %s after send failure: %s", user_id, result)
                self.unregister(user_id, channel)
            else:
                delivered += 1
        return delivered


class NotificationFanout:
    """Build notifications and publish them through a ConnectionRegistry."""

    def __init__(
        self,
        connections: ConnectionRegistry,
        email_notifier: Optional[EmailNotifier] = None,
    ) -> None:
        self.connections = connections
        self.email_notifier = email_notifier or LoggingEmailNotifier()

    async def notify(self, user_id: str, notification: Notification) -> int:
        message = {"type": "notification", "notification": notification.to_wire()}
        delivered = await self.connections.publish(user_id, message)
        logger.debug("Notification %s delivered to %d channels", notification.type, delivered)
        return delivered

    async def notify_durable(self, user_id: str, notification: Notification) -> int:
        """Publish live and hand the notification to the email notifier."""
        delivered = await self.notify(user_id, notification)
        try:
            await self.email_notifier.send(user_id, notification)
        except Exception:
            logger.exception("Email notifier failed for user %s", user_id)
        return delivered

    async def notify_sync_outcome(
        self, owner_user_id: str, outcome: SyncOutcome, feed_name: str = ""
    ) -> int:
        """Publish a ``calendar_update`` notification describing ``outcome``.

        Delivered live and through the email notifier.
        """
        label = feed_name or outcome.feed_id
        if outcome.success:
            message = (
                f"{label}: {outcome.events_added} added, {outcome.events_removed} removed, "
                f"{outcome.events_changed} changed"
            )
            title = "Calendar updated"
        else:
            message = f"{label}: sync failed ({outcome.error or 'unknown error'})"
            title = "Calendar sync failed"

        notification = Notification(
            type="calendar_update",
            title=title,
            message=message,
            user_id=owner_user_id,
        )
        return await self.notify_durable(owner_user_id, notification)
