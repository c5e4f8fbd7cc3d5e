"""calendarsync_lite - external calendar synchronization and merge engine.

Imports are kept light here so the package (and its version) can be inspected
without starting the aiohttp server.
"""

__version__ = "0.3.0"

from typing import Optional


def _init_logging(level_name: Optional[str]) -> None:
    """Initialize root logging to stream colored output to the console.

    Honors CALENDARSYNC_DEBUG (truthy values: "1", "true", "yes", "on"), which
    forces DEBUG verbosity so fetcher and normalizer diagnostics become visible.
    """
    import logging
    import os
    import sys

    from colorlog import ColoredFormatter

    debug_env = os.environ.get("CALENDARSYNC_DEBUG", "")
    if debug_env.strip().lower() in ("1", "true", "yes", "on"):
        level_name = "DEBUG"

    root = logging.getLogger()
    if not root.handlers:
        handler = logging.StreamHandler(stream=sys.stderr)
        # HH:MM:SS  LEVEL   logger.name: message (only the level is colorized)
        fmt = "%(asctime)s %(log_color)s%(levelname)-7s%(reset)s %(name)s: %(message)s"
        log_colors = {
            "DEBUG": "cyan",
            "INFO": "green",
            "WARNING": "yellow",
            "ERROR": "red",
            "CRITICAL": "bold_red",
        }
        handler.setFormatter(ColoredFormatter(fmt, datefmt="%H:%M:%S", log_colors=log_colors))
        root.addHandler(handler)

    level = logging.INFO
    if isinstance(level_name, str):
        level = getattr(logging, level_name.upper(), logging.INFO)
    root.setLevel(level)
    logging.getLogger(__name__).debug(
        "Logging initialized at level %s", logging.getLevelName(level)
    )


def run_server(args: Optional[object] = None) -> None:
    """Build configuration from the environment and run the API server.

    Args:
        args: Optional argparse namespace; ``port``, ``host`` and ``env_file``
            override values loaded from the environment.
    """
    import logging
    import os
    from pathlib import Path

    _init_logging(os.environ.get("CALENDARSYNC_LOG_LEVEL"))
    logger = logging.getLogger(__name__)

    from calendarsync_lite.api.server import start_server
    from calendarsync_lite.core.config_manager import ConfigManager

    env_file = getattr(args, "env_file", None)
    cfg = ConfigManager(Path(env_file) if env_file else None).load_full_config()

    port = getattr(args, "port", None)
    if port is not None:
        cfg["server_port"] = int(port)
        logger.debug("Applied command line port override: %d", cfg["server_port"])
    host = getattr(args, "host", None)
    if host:
        cfg["server_bind"] = host
    if getattr(args, "debug", False):
        cfg["debug_logging"] = True

    start_server(cfg)
