"""aiohttp server for calendarsync_lite: app factory, serve loop and entry point."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import signal
from typing import Any, Optional

from aiohttp import web

from ..core.config_manager import get_config_value
from ..core.dependencies import AppDependencies, DependencyContainer
from ..core.http_client import close_all_clients
from ..middleware import correlation_id_middleware
from .routes import register_api_routes
from .websocket import register_websocket_routes

logger = logging.getLogger(__name__)

MAX_PORT_ATTEMPTS = 10

DEPS_KEY = web.AppKey("deps", AppDependencies)


def create_app(deps: AppDependencies) -> web.Application:
    """Create the aiohttp application with routes wired to ``deps``."""
    app = web.Application(middlewares=[correlation_id_middleware])
    app[DEPS_KEY] = deps

    register_api_routes(app, deps)
    register_websocket_routes(app, deps.connections)

    async def _shutdown(_app: web.Application) -> None:
        logger.info("Application shutdown requested")
        await deps.connections.close_all()

    app.on_shutdown.append(_shutdown)
    return app


def _redacted_config(config: Any) -> str:
    if not isinstance(config, dict):
        return repr(config)
    return ", ".join(
        f"{k}={'<redacted>' if 'token' in k.lower() else v!r}" for k, v in sorted(config.items())
    )


async def _start_site(runner: web.AppRunner, host: str, configured_port: int) -> int:
    """Bind to the configured port, moving up when it is already in use.

    Returns:
        The port actually bound

    Raises:
        RuntimeError: If no port in the attempted range is free
    """
    for port_offset in range(MAX_PORT_ATTEMPTS):
        port = configured_port + port_offset
        site = web.TCPSite(runner, host=host, port=port)
        try:
            await site.start()
        except OSError as e:
            if "address already in use" not in str(e).lower():
                logger.exception("Failed to start server on %s:%d", host, port)
                raise
            logger.debug("Port %d in use, trying next port", port)
            continue
        if port != configured_port:
            logger.warning("Configured port %d was in use, using port %d instead", configured_port, port)
        return port

    raise RuntimeError(
        f"No available port found in range {configured_port}-{configured_port + MAX_PORT_ATTEMPTS - 1}"
    )


async def _serve(config: Any, external_stop_event: Optional[asyncio.Event] = None) -> None:
    """Run the HTTP server and optional background sync until signalled to stop.

    Args:
        config: Server configuration dict
        external_stop_event: If provided, the caller owns shutdown and no signal
            handlers are registered
    """
    deps = DependencyContainer.build_dependencies(config)
    stop_event = external_stop_event or deps.stop_event
    logger.debug("Creating web application. Config: %s", _redacted_config(config))

    app = create_app(deps)
    runner = web.AppRunner(app)
    await runner.setup()

    host = get_config_value(config, "server_bind", "0.0.0.0")  # nosec B104
    port = await _start_site(runner, host, int(get_config_value(config, "server_port", 8080)))
    logger.info("Server started successfully on %s:%d (pid %d)", host, port, os.getpid())

    sync_task: Optional[asyncio.Task[None]] = None
    if get_config_value(config, "background_sync_enabled", False):
        interval = float(get_config_value(config, "refresh_interval_seconds", 300))
        sync_task = asyncio.create_task(
            deps.orchestrator.start_background_loop(stop_event, interval)
        )
    else:
        logger.info("Background sync disabled; feeds refresh on demand")

    if external_stop_event is None:

        def _on_signal() -> None:
            logger.info("Shutdown signal received")
            stop_event.set()

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            with contextlib.suppress(NotImplementedError):
                loop.add_signal_handler(sig, _on_signal)

    await stop_event.wait()
    logger.info("Stop event received, shutting down")

    if sync_task is not None:
        sync_task.cancel()
        try:
            await sync_task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.warning("Background sync task error during shutdown: %s", e)

    await runner.cleanup()

    try:
        await close_all_clients()
        logger.debug("Shared HTTP clients cleaned up")
    except Exception as e:
        logger.warning("Error cleaning up shared HTTP clients: %s", e)

    logger.info("Server shutdown complete")


def start_server(config: Any) -> None:
    """Configure logging and run the server until SIGINT/SIGTERM.

    Args:
        config: dict produced by ``ConfigManager.load_full_config``
    """
    from ..sync_logging import configure_sync_logging

    debug_mode = bool(get_config_value(config, "debug_logging", False))
    configure_sync_logging(debug_mode=debug_mode)
    logger.info("Logging configuration applied: debug_mode=%s", debug_mode)

    try:
        asyncio.run(_serve(config))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    except Exception:
        logger.exception("Server terminated unexpectedly")
        raise
