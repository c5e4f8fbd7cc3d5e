"""
Central logging configuration for calendarsync_lite.

Keeps the engine's own loggers at INFO (DEBUG on request) while suppressing the
per-request chatter of aiohttp, httpx and icalendar, and stamps every record with
the request correlation id.
"""

import logging
import os
from typing import Optional

# Third-party loggers that are too verbose at DEBUG/INFO during sync passes
NOISY_LOGGERS: dict[str, int] = {
    "aiohttp.access": logging.WARNING,
    "aiohttp.server": logging.WARNING,
    "aiohttp.web": logging.INFO,
    "aiohttp.web_log": logging.WARNING,
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "asyncio": logging.WARNING,
    "icalendar": logging.INFO,
}

ENGINE_LOGGERS = [
    "calendarsync_lite",
    "calendarsync_lite.sync_fetcher",
    "calendarsync_lite.sync_orchestrator",
    "calendarsync_lite.calendar",
    "calendarsync_lite.domain",
    "calendarsync_lite.api",
]


class CorrelationIdFilter(logging.Filter):
    """Add correlation ID to all log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        from .middleware.correlation_id import get_request_id

        record.request_id = get_request_id()
        return True


def configure_sync_logging(debug_mode: bool = False, force_debug: Optional[bool] = None) -> None:
    """
    Configure logging levels for calendarsync_lite.

    Args:
        debug_mode: Whether to enable debug logging for calendarsync_lite modules
        force_debug: Override debug mode setting (None to use env var detection)

    Environment Variables:
        CALENDARSYNC_DEBUG: Set to '1', 'true', 'yes' to force debug logging
        CALENDARSYNC_LOG_LEVEL: Override root log level (DEBUG, INFO, WARNING, ERROR)
    """
    env_debug = os.getenv("CALENDARSYNC_DEBUG", "").lower() in ("1", "true", "yes")
    env_log_level = os.getenv("CALENDARSYNC_LOG_LEVEL", "").upper()

    if force_debug is not None:
        final_debug = force_debug
    elif env_debug:
        final_debug = True
    else:
        final_debug = debug_mode

    root_level = logging.DEBUG if final_debug else logging.INFO
    if env_log_level in ("DEBUG", "INFO", "WARNING", "ERROR"):
        root_level = getattr(logging, env_log_level)

    root_logger = logging.getLogger()
    root_logger.setLevel(root_level)

    correlation_filter = CorrelationIdFilter()

    # Keep handlers installed by _init_logging (colored console output)
    if not root_logger.handlers:
        handler = logging.StreamHandler()
        handler.setLevel(root_level)
        handler.setFormatter(
            logging.Formatter(
                "[%(asctime)s] [%(request_id)s] %(levelname)s - %(name)s - %(message)s"
            )
        )
        handler.addFilter(correlation_filter)
        root_logger.addHandler(handler)
    else:
        for existing_handler in root_logger.handlers:
            if not any(isinstance(f, CorrelationIdFilter) for f in existing_handler.filters):
                existing_handler.addFilter(correlation_filter)

    logger_config = dict(NOISY_LOGGERS)
    engine_level = logging.DEBUG if final_debug else logging.INFO
    for module in ENGINE_LOGGERS:
        logger_config[module] = engine_level

    for logger_name, level in logger_config.items():
        logging.getLogger(logger_name).setLevel(level)

    if final_debug:
        root_logger.info("Debug logging enabled for calendarsync_lite modules")
    else:
        root_logger.info("Production logging configuration applied")
