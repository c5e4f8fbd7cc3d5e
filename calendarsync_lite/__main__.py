"""Command-line entry for calendarsync_lite."""

from __future__ import annotations

import argparse
import sys
from typing import NoReturn

from . import run_server


def _create_parser() -> argparse.ArgumentParser:
    """Create argument parser for the calendarsync_lite CLI.

    Returns:
        Configured argument parser
    """
    parser = argparse.ArgumentParser(
        prog="calendarsync_lite",
        description="CalendarSync Lite - external calendar sync and merge server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m calendarsync_lite                    # Start server on default port (8080)
  python -m calendarsync_lite --port 3000        # Start server on port 3000
  python -m calendarsync_lite --env-file ./prod.env --debug
        """,
    )
    parser.add_argument(
        "--port",
        type=int,
        metavar="PORT",
        help="Port number for the web server (default: 8080, or CALENDARSYNC_SERVER_PORT)",
    )
    parser.add_argument(
        "--host",
        metavar="HOST",
        help="Interface to bind (default: 0.0.0.0, or CALENDARSYNC_SERVER_BIND)",
    )
    parser.add_argument(
        "--env-file",
        dest="env_file",
        metavar="PATH",
        help="Path to a .env file with CALENDARSYNC_* settings (default: ./.env)",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    return parser


def main() -> NoReturn:
    """Run the calendarsync_lite CLI."""
    args = _create_parser().parse_args()
    try:
        run_server(args)
    except KeyboardInterrupt:
        sys.exit(130)
    sys.exit(0)


if __name__ == "__main__":
    main()
