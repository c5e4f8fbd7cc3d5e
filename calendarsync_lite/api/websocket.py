"""Live notification channel over WebSocket."""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

from aiohttp import WSMsgType, web

logger = logging.getLogger(__name__)

WS_HEARTBEAT_SECONDS = 30.0


def register_websocket_routes(app: web.Application, connections: Any) -> None:
    """Register the ``/ws`` live channel.

    Protocol: the client sends ``{"type": "auth", "userId": ...}``; the server
    replies ``auth_success`` and from then on pushes notifications for that user.
    Before authentication any other message gets an ``error`` reply; afterwards
    client messages are ignored.

    Args:
        app: aiohttp web application
        connections: ConnectionRegistry the channel registers with
    """

    async def websocket_handler(request: web.Request) -> web.WebSocketResponse:
        ws = web.WebSocketResponse(heartbeat=WS_HEARTBEAT_SECONDS)
        await ws.prepare(request)
        logger.debug("WebSocket client connected")

        user_id: Optional[str] = None
        try:
            async for msg in ws:
                if msg.type == WSMsgType.ERROR:
                    logger.warning("WebSocket closed with exception: %s", ws.exception())
                    break
                if msg.type != WSMsgType.TEXT:
                    continue

                try:
                    data = json.loads(msg.data)
                except ValueError:
                    await ws.send_json({"type": "error", "message": "Invalid message format"})
                    continue

                if isinstance(data, dict) and data.get("type") == "auth":
                    requested = data.get("userId")
                    if requested in (None, ""):
                        await ws.send_json({"type": "error", "message": "Missing userId"})
                        continue
                    if user_id is not None:
                        connections.unregister(user_id, ws)
                    user_id = str(requested)
                    connections.register(user_id, ws)
                    logger.info("WebSocket client authenticated for user %s", user_id)
                    await ws.send_json(
                        {"type": "auth_success", "message": "Successfully authenticated"}
                    )
                elif user_id is None:
                    await ws.send_json({"type": "error", "message": "Not authenticated"})
                else:
                    logger.debug("Ignoring client message from user %s", user_id)
        finally:
            if user_id is not None:
                connections.unregister(user_id, ws)
                logger.info("WebSocket client disconnected for user %s", user_id)
            else:
                logger.debug("Unauthenticated WebSocket client disconnected")

        return ws

    app.router.add_get("/ws", websocket_handler)
