"""Configuration management for the calendarsync_lite server."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Callable

logger = logging.getLogger(__name__)

ENV_PREFIX = "CALENDARSYNC_"

# Defaults used when neither the environment nor the .env file sets a value
DEFAULTS: dict[str, Any] = {
    "server_bind": "0.0.0.0",  # nosec B104 - default bind for dev; override via env
    "server_port": 8080,
    "admin_token": None,
    "registry_path": "feeds.json",
    "local_events_path": "local_events.json",
    "cache_ttl_seconds": 0.5,
    "request_timeout": 15.0,
    "max_retries": 2,
    "retry_backoff_factor": 1.5,
    "fetch_concurrency": 4,
    "background_sync_enabled": False,
    "refresh_interval_seconds": 300,
    "window_past_days": 365,
    "window_future_days": 365,
    "lenient_hosts": ["calendar.google.com"],
    "vendor_base_url": "https://beds24.com/api/v2",
    "export_uid_domain": "calendarsync.local",
    "default_timezone": "UTC",
    "debug_logging": False,
}

# Bounds applied to numeric settings (inclusive)
BOUNDS: dict[str, tuple[float, float]] = {
    "server_port": (1, 65535),
    "cache_ttl_seconds": (0.0, 60.0),
    "request_timeout": (1.0, 120.0),
    "max_retries": (0, 10),
    "fetch_concurrency": (1, 32),
    "refresh_interval_seconds": (10, 86400),
    "window_past_days": (0, 3650),
    "window_future_days": (1, 3650),
}


def parse_env_file(path: Path) -> dict[str, str]:
    """Parse a .env file and return key-value pairs.

    Args:
        path: Path to .env file

    Returns:
        Dictionary of key-value pairs. Empty dict if the file doesn't exist or
        cannot be read.

    Note:
        - Skips empty lines and comments (lines starting with #)
        - Strips quotes (both single and double) from values
    """
    if not path.exists():
        return {}

    result: dict[str, str] = {}
    try:
        content = path.read_text(encoding="utf-8")
    except OSError:
        logger.debug("Failed to read .env file (continuing): %s", path, exc_info=True)
        return result

    for raw_line in content.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, val = line.split("=", 1)
        key = key.strip()
        if key:
            result[key] = val.strip().strip('"').strip("'")

    return result


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off", ""):
        return False
    raise ValueError(f"not a boolean: {value!r}")


def _parse_list(value: str) -> list[str]:
    return [item.strip().lower() for item in value.split(",") if item.strip()]


# config key -> (environment suffix, parser)
_ENV_SETTINGS: dict[str, tuple[str, Callable[[str], Any]]] = {
    "server_bind": ("SERVER_BIND", str),
    "server_port": ("SERVER_PORT", int),
    "admin_token": ("ADMIN_TOKEN", str),
    "registry_path": ("REGISTRY_PATH", str),
    "local_events_path": ("LOCAL_EVENTS_PATH", str),
    "cache_ttl_seconds": ("CACHE_TTL_SECONDS", float),
    "request_timeout": ("REQUEST_TIMEOUT", float),
    "max_retries": ("MAX_RETRIES", int),
    "retry_backoff_factor": ("RETRY_BACKOFF_FACTOR", float),
    "fetch_concurrency": ("FETCH_CONCURRENCY", int),
    "background_sync_enabled": ("BACKGROUND_SYNC", _parse_bool),
    "refresh_interval_seconds": ("REFRESH_INTERVAL", int),
    "window_past_days": ("WINDOW_PAST_DAYS", int),
    "window_future_days": ("WINDOW_FUTURE_DAYS", int),
    "lenient_hosts": ("LENIENT_HOSTS", _parse_list),
    "vendor_base_url": ("VENDOR_BASE_URL", str),
    "export_uid_domain": ("EXPORT_UID_DOMAIN", str),
    "default_timezone": ("DEFAULT_TIMEZONE", str),
    "debug_logging": ("DEBUG", _parse_bool),
}


def _clamp(key: str, value: Any) -> Any:
    bounds = BOUNDS.get(key)
    if bounds is None:
        return value
    low, high = bounds
    if value < low or value > high:
        clamped = type(value)(min(max(value, low), high))
        logger.warning("%s=%r out of range [%s, %s]; using %r", key, value, low, high, clamped)
        return clamped
    return value


class ConfigManager:
    """Manages application configuration from environment variables and .env files."""

    def __init__(self, env_file_path: Path | None = None):
        """Initialize configuration manager.

        Args:
            env_file_path: Optional path to .env file (defaults to .env in current directory)
        """
        self.env_file_path = env_file_path or Path.cwd() / ".env"

    def load_env_file(self) -> list[str]:
        """Load .env file and set environment variables.

        Only sets variables that are not already in the environment.

        Returns:
            List of environment variable keys that were loaded from .env file
        """
        if not self.env_file_path.exists():
            logger.debug("No .env file found at %s", self.env_file_path)
            return []

        set_keys = []
        for key, val in parse_env_file(self.env_file_path).items():
            if key not in os.environ:
                os.environ[key] = val
                set_keys.append(key)

        if set_keys:
            logger.debug("Loaded .env defaults for keys: %s", ", ".join(set_keys))
        return set_keys

    def build_config_from_env(self) -> dict[str, Any]:
        """Build configuration dictionary from CALENDARSYNC_* environment variables.

        Invalid values are logged and replaced by the default; numeric values
        outside BOUNDS are clamped.

        Returns:
            Configuration dictionary compatible with start_server
        """
        cfg: dict[str, Any] = {
            key: list(value) if isinstance(value, list) else value
            for key, value in DEFAULTS.items()
        }

        for key, (suffix, parser) in _ENV_SETTINGS.items():
            env_name = ENV_PREFIX + suffix
            raw = os.environ.get(env_name)
            if raw is None or raw == "":
                continue
            try:
                cfg[key] = _clamp(key, parser(raw))
            except (TypeError, ValueError):
                logger.warning("Invalid %s=%r; using default %r", env_name, raw, DEFAULTS[key])

        return cfg

    def load_full_config(self) -> dict[str, Any]:
        """Load .env file and build configuration from environment.

        Returns:
            Configuration dictionary
        """
        self.load_env_file()
        return self.build_config_from_env()


def get_config_value(config: Any, key: str, default: Any = None) -> Any:
    """Get configuration value supporting both dict and attribute-style objects.

    Args:
        config: Configuration object (dict or object with attributes)
        key: Configuration key to retrieve
        default: Default value if key not found

    Returns:
        Configuration value or default
    """
    if isinstance(config, dict):
        return config.get(key, default)
    return getattr(config, key, default)
