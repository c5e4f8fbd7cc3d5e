"""aiohttp HTTP and WebSocket surface of calendarsync_lite."""
